"""SQLAlchemy ORM models.

Models represent relational (authoritative) tables:
- users: identity, account flags, profile fields
- subscriptions: plan history, at most one active row per user
- follows: social graph edges (follower -> followed)
"""

from factiony.models.follow import Follow
from factiony.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus
from factiony.models.user import PROFILE_FIELDS, User

__all__ = [
    "Follow",
    "PROFILE_FIELDS",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "User",
]
