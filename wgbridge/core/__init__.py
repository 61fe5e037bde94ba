"""
wgbridge Core Data Structures
"""

from wgbridge.core.types import (
    AccessRecord,
    AccessVerdict,
    HealthStatus,
    NetworkSettings,
    Peer,
    Registry,
    VerdictReason,
)
from wgbridge.core.cache import CacheEntry, TTLCache

__all__ = [
    # Types
    "AccessRecord",
    "AccessVerdict",
    "HealthStatus",
    "NetworkSettings",
    "Peer",
    "Registry",
    "VerdictReason",
    # Cache
    "CacheEntry",
    "TTLCache",
]
