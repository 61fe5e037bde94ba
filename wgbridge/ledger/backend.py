"""
wgbridge Ledger Backend Interface

Raw access to the remote ledger. Backends perform exactly one remote
attempt per invocation; retry and caching live in the CallGateway.

Backends raise:
    RemoteCallFailedError: rejection (rpc_code carries the RPC error code,
        RATE_LIMIT_ERROR_CODE marks a rate-limited attempt)
    TokenNotFoundError: the token was never minted
    NetworkUnavailableError: transport failure
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from wgbridge.core.types import utc_now


class LedgerEventType(str, Enum):
    """Ledger mutation events."""
    ACCESS_GRANTED = "AccessGranted"
    ACCESS_REVOKED = "AccessRevoked"
    ACCESS_TRANSFERRED = "AccessTransferred"


@dataclass(frozen=True)
class LedgerEvent:
    """A mutation observed on the ledger."""
    type: LedgerEventType
    token_id: int
    fields: Dict[str, Any] = field(default_factory=dict)
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None
    observed_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "token_id": self.token_id,
            "fields": dict(self.fields),
            "block_number": self.block_number,
            "transaction_hash": self.transaction_hash,
            "observed_at": self.observed_at,
        }


@dataclass(frozen=True)
class Signer:
    """
    Account authorised to send ledger transactions.

    The account is held by the RPC node; password unlocks it for a
    single transaction and is never logged.
    """
    address: str
    password: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class TransactionReceipt:
    """Outcome of a mined ledger transaction."""
    transaction_hash: str
    block_number: Optional[int]
    status: bool
    events: List[LedgerEvent] = field(default_factory=list)

    @property
    def token_id(self) -> Optional[int]:
        """Token id announced by the transaction, if any."""
        for event in self.events:
            if event.type == LedgerEventType.ACCESS_GRANTED:
                return event.token_id
        return None


class LedgerBackend(ABC):
    """Single-attempt remote ledger access."""

    @abstractmethod
    async def call(self, operation: str, *args: Any) -> Any:
        """Execute a read-only operation."""

    @abstractmethod
    async def transact(self, operation: str, *args: Any, signer: Signer) -> TransactionReceipt:
        """Execute a state-changing operation and wait for its receipt."""

    @abstractmethod
    async def block_number(self) -> int:
        """Latest block number."""

    @abstractmethod
    async def get_events(self, from_block: int, to_block: int) -> List[LedgerEvent]:
        """Access events emitted in [from_block, to_block]."""

    async def close(self) -> None:
        """Release network resources."""

    def describe(self) -> Dict[str, Any]:
        """Connection details for status reports."""
        return {}
