"""Domain services.

The Coordinator is the only entry point routes and scripts use; it owns
both store adapters and every operation that spans them.
"""
