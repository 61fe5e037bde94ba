"""
wgbridge Ledger Access
"""

from wgbridge.ledger.backend import (
    LedgerBackend,
    LedgerEvent,
    LedgerEventType,
    Signer,
    TransactionReceipt,
)
from wgbridge.ledger.gateway import CallGateway, RetryPolicy
from wgbridge.ledger.events import EventBus, LedgerEventPoller
from wgbridge.ledger.mock import MockLedger
from wgbridge.ledger.rpc import JsonRpcLedger

__all__ = [
    # Backend
    "LedgerBackend",
    "LedgerEvent",
    "LedgerEventType",
    "Signer",
    "TransactionReceipt",
    "JsonRpcLedger",
    "MockLedger",
    # Gateway
    "CallGateway",
    "RetryPolicy",
    # Events
    "EventBus",
    "LedgerEventPoller",
]
