"""
wgbridge Peer Registry
"""

from wgbridge.registry.store import RegistryStore
from wgbridge.registry.sync import (
    RegistrySync,
    SyncConflict,
    SyncResult,
    SyncState,
    SyncStatus,
    assign_address,
    derive_address,
)
from wgbridge.registry.registrar import NodeRegistrar, RegistrationResult

__all__ = [
    "RegistryStore",
    "RegistrySync",
    "SyncConflict",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "assign_address",
    "derive_address",
    "NodeRegistrar",
    "RegistrationResult",
]
