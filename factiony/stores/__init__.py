"""Backing-store adapters.

- postgres / relational: authoritative users, subscriptions, follow edges
- redis / documents: likes, comments, lists, API cache, activity logs
- errors: the failure taxonomy both adapters raise

No cross-store logic here - that belongs in services.
"""
