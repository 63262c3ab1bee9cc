"""Alert registry — alert definitions, access policy and the activity log."""

from src.registry.activity import ActivityLog
from src.registry.alerts import AccessPolicy, AlertRegistry, owner_policy

__all__ = [
    "AccessPolicy",
    "ActivityLog",
    "AlertRegistry",
    "owner_policy",
]
