"""
Storage Models Package.

Shared ORM foundations. Domain tables live with their engine
(see exposure_engine.models) and inherit from Base here.
"""

from storage.models.base import AuditUserMixin, Base, TimestampMixin, utc_now

__all__ = [
    "Base",
    "TimestampMixin",
    "AuditUserMixin",
    "utc_now",
]
