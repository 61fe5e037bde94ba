"""
wgbridge Mock Ledger

In-memory ledger for testing and local development. Supports fault
injection (rate limiting, network outages, arbitrary errors).
"""

from __future__ import annotations
import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from wgbridge.constants import RATE_LIMIT_ERROR_CODE
from wgbridge.core.types import AccessRecord
from wgbridge.errors import (
    NetworkUnavailableError,
    RemoteCallFailedError,
    TokenNotFoundError,
    UnknownOperationError,
)
from wgbridge.ledger.backend import (
    LedgerBackend,
    LedgerEvent,
    LedgerEventType,
    Signer,
    TransactionReceipt,
)

logger = logging.getLogger(__name__)


@dataclass
class MockToken:
    """Token state held by the mock ledger."""
    token_id: int
    node_id: str
    public_key: str
    owner: str
    token_uri: str = ""
    created_at: int = 0
    is_active: bool = True


class MockLedger(LedgerBackend):
    """
    In-memory ledger implementing the backend interface.

    Every remote-style invocation is counted in `calls` so tests can assert
    how many lookups reached the ledger.
    """

    def __init__(self, contract_address: str = "0x" + "11" * 20):
        self.contract_address = contract_address
        self.tokens: Dict[int, MockToken] = {}
        self.node_index: Dict[str, int] = {}
        self.events: List[LedgerEvent] = []
        self.block = 1
        self.next_token_id = 1
        self.calls: Counter = Counter()

        self.offline = False
        self._failures: List[Exception] = []
        self._rate_limited = 0

    # ==========================================================================
    # Fault injection
    # ==========================================================================

    def rate_limit_next(self, count: int = 1) -> None:
        """Reject the next `count` invocations with the rate-limit code."""
        self._rate_limited += count

    def fail_next(self, error: Exception) -> None:
        """Raise `error` on the next invocation."""
        self._failures.append(error)

    def _before(self, operation: str) -> None:
        self.calls[operation] += 1

        if self.offline:
            raise NetworkUnavailableError(operation, "mock ledger offline")

        if self._rate_limited > 0:
            self._rate_limited -= 1
            raise RemoteCallFailedError(
                operation, "rate limit exceeded", rpc_code=RATE_LIMIT_ERROR_CODE
            )

        if self._failures:
            raise self._failures.pop(0)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    # ==========================================================================
    # Direct ledger manipulation
    # ==========================================================================

    def mint(
        self,
        owner: str,
        node_id: str,
        public_key: str,
        token_uri: str = "",
        token_id: Optional[int] = None,
    ) -> int:
        """Mint a token without going through the backend interface."""
        if token_id is None:
            token_id = self.next_token_id
        self.next_token_id = max(self.next_token_id, token_id + 1)

        self.tokens[token_id] = MockToken(
            token_id=token_id,
            node_id=node_id,
            public_key=public_key,
            owner=owner.lower(),
            token_uri=token_uri,
            created_at=int(time.time()),
        )
        self.node_index[node_id] = token_id
        self._emit(LedgerEventType.ACCESS_GRANTED, token_id, {
            "node_id": node_id,
            "owner": owner.lower(),
            "public_key": public_key,
        })
        return token_id

    def revoke(self, token_id: int) -> None:
        token = self._token("revoke_access", token_id)
        token.is_active = False
        self._emit(LedgerEventType.ACCESS_REVOKED, token_id, {"node_id": token.node_id})

    def transfer(self, token_id: int, new_owner: str) -> None:
        token = self._token("transfer", token_id)
        previous = token.owner
        token.owner = new_owner.lower()
        self._emit(LedgerEventType.ACCESS_TRANSFERRED, token_id, {
            "from": previous,
            "to": token.owner,
        })

    def _emit(self, event_type: LedgerEventType, token_id: int, fields: Dict[str, Any]) -> LedgerEvent:
        self.block += 1
        event = LedgerEvent(
            type=event_type,
            token_id=token_id,
            fields=dict(fields, token_id=token_id),
            block_number=self.block,
            transaction_hash="0x" + f"{self.block:064x}",
        )
        self.events.append(event)
        return event

    def _token(self, operation: str, token_id: int) -> MockToken:
        token = self.tokens.get(int(token_id))
        if token is None:
            raise TokenNotFoundError(operation, int(token_id))
        return token

    # ==========================================================================
    # LedgerBackend
    # ==========================================================================

    async def call(self, operation: str, *args: Any) -> Any:
        self._before(operation)

        if operation == "get_access_record":
            token = self._token(operation, args[0])
            return AccessRecord(
                node_id=token.node_id,
                public_key=token.public_key,
                created_at=token.created_at,
                is_active=token.is_active,
            )

        if operation == "has_access":
            owner, node_id = args
            token_id = self.node_index.get(node_id)
            token = self.tokens.get(token_id) if token_id else None
            return bool(token and token.is_active and token.owner == owner.lower())

        if operation == "token_id_for_node":
            return self.node_index.get(args[0], 0)

        if operation == "owner_of":
            return self._token(operation, args[0]).owner

        raise UnknownOperationError(operation)

    async def transact(self, operation: str, *args: Any, signer: Signer) -> TransactionReceipt:
        self._before(operation)

        if operation == "mint_access":
            owner, node_id, public_key, token_uri = args
            if node_id in self.node_index:
                raise RemoteCallFailedError(operation, f"node {node_id} already registered")
            token_id = self.mint(owner, node_id, public_key, token_uri)
            event = self.events[-1]
        elif operation == "revoke_access":
            self.revoke(args[0])
            event = self.events[-1]
        else:
            raise UnknownOperationError(operation)

        logger.debug(f"Mock ledger executed {operation} for {signer.address}")
        return TransactionReceipt(
            transaction_hash=event.transaction_hash,
            block_number=event.block_number,
            status=True,
            events=[event],
        )

    async def block_number(self) -> int:
        self._before("block_number")
        return self.block

    async def get_events(self, from_block: int, to_block: int) -> List[LedgerEvent]:
        self._before("get_events")
        return [
            e for e in self.events
            if e.block_number is not None and from_block <= e.block_number <= to_block
        ]

    def describe(self) -> Dict[str, Any]:
        return {
            "network": "mock",
            "contract_address": self.contract_address,
            "tokens": len(self.tokens),
        }
