"""
wgbridge JSON-RPC Ledger Backend

Binds the access ledger contract over Ethereum-style JSON-RPC using httpx.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from wgbridge.constants import (
    DEFAULT_RECEIPT_POLL_SEC,
    DEFAULT_RECEIPT_TIMEOUT_SEC,
    DEFAULT_RPC_TIMEOUT_SEC,
    HTTP_TOO_MANY_REQUESTS,
    RATE_LIMIT_ERROR_CODE,
)
from wgbridge.core.types import AccessRecord
from wgbridge.errors import (
    NetworkUnavailableError,
    RemoteCallFailedError,
    TokenNotFoundError,
    UnknownOperationError,
)
from wgbridge.ledger.abi import (
    EVENTS,
    EVENTS_BY_TOPIC,
    FUNCTIONS,
    LedgerFunction,
    decode_revert_reason,
    hex_to_bytes,
    is_nonexistent_token_reason,
)
from wgbridge.ledger.backend import (
    LedgerBackend,
    LedgerEvent,
    LedgerEventType,
    Signer,
    TransactionReceipt,
)

logger = logging.getLogger(__name__)


def _error_data(error: Dict[str, Any]) -> Optional[str]:
    """Revert data is either a hex string or nested one level deeper."""
    data = error.get("data")
    if isinstance(data, dict):
        data = data.get("data")
    return data if isinstance(data, str) else None


class JsonRpcLedger(LedgerBackend):
    """
    Ledger backend speaking JSON-RPC to an Ethereum-compatible node.

    Reads use eth_call. Writes use eth_sendTransaction (or
    personal_sendTransaction when the signer carries a password) followed
    by receipt polling. Events are pulled with eth_getLogs.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        chain_id: Optional[int] = None,
        network: Optional[str] = None,
        timeout: float = DEFAULT_RPC_TIMEOUT_SEC,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT_SEC,
        receipt_poll_interval: float = DEFAULT_RECEIPT_POLL_SEC,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.chain_id = chain_id
        self.network = network
        self.receipt_timeout = receipt_timeout
        self.receipt_poll_interval = receipt_poll_interval

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    # ==========================================================================
    # Transport
    # ==========================================================================

    async def _rpc(self, operation: str, method: str, params: list, token_id: Optional[int] = None) -> Any:
        """
        Perform one JSON-RPC request.

        Args:
            operation: Logical operation name (for error reporting)
            method: JSON-RPC method
            params: JSON-RPC params
            token_id: Token the call refers to, if any

        Returns:
            The "result" member of the response
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload)
        except httpx.TransportError as e:
            raise NetworkUnavailableError(operation, str(e) or type(e).__name__) from e

        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            raise RemoteCallFailedError(
                operation, "HTTP 429 Too Many Requests", rpc_code=RATE_LIMIT_ERROR_CODE
            )
        if response.status_code >= 500:
            raise NetworkUnavailableError(operation, f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise RemoteCallFailedError(operation, f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteCallFailedError(operation, f"invalid JSON-RPC response: {e}") from e

        error = body.get("error")
        if error:
            self._raise_rpc_error(operation, error, token_id)

        return body.get("result")

    def _raise_rpc_error(self, operation: str, error: Dict[str, Any], token_id: Optional[int]) -> None:
        code = error.get("code")
        message = str(error.get("message", "unknown error"))

        if code == RATE_LIMIT_ERROR_CODE:
            raise RemoteCallFailedError(operation, message, rpc_code=code)

        reason = decode_revert_reason(_error_data(error)) or message
        if token_id is not None and (
            is_nonexistent_token_reason(reason) or is_nonexistent_token_reason(message)
        ):
            raise TokenNotFoundError(operation, token_id)

        raise RemoteCallFailedError(operation, reason, rpc_code=code)

    def _function(self, operation: str) -> LedgerFunction:
        fn = FUNCTIONS.get(operation)
        if fn is None:
            raise UnknownOperationError(operation)
        return fn

    @staticmethod
    def _token_arg(fn: LedgerFunction, args: tuple) -> Optional[int]:
        if fn.inputs and fn.inputs[0] == "uint256" and args:
            return int(args[0])
        return None

    # ==========================================================================
    # LedgerBackend
    # ==========================================================================

    async def call(self, operation: str, *args: Any) -> Any:
        fn = self._function(operation)
        if fn.mutating:
            raise RemoteCallFailedError(operation, "state-changing operation requires a transaction")

        result = await self._rpc(
            operation,
            "eth_call",
            [{"to": self.contract_address, "data": fn.encode_call(args)}, "latest"],
            token_id=self._token_arg(fn, args),
        )

        raw = hex_to_bytes(result)
        if not raw and fn.outputs:
            raise RemoteCallFailedError(operation, "empty result (is the contract deployed?)")

        try:
            decoded = fn.decode_result(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise RemoteCallFailedError(operation, f"undecodable result: {e}") from e

        if operation == "get_access_record":
            node_id, public_key, created_at, is_active = decoded
            return AccessRecord(
                node_id=node_id,
                public_key=public_key,
                created_at=created_at,
                is_active=is_active,
            )

        return decoded

    async def transact(self, operation: str, *args: Any, signer: Signer) -> TransactionReceipt:
        fn = self._function(operation)
        if not fn.mutating:
            raise RemoteCallFailedError(operation, "read-only operation cannot be sent as a transaction")

        tx = {
            "from": signer.address,
            "to": self.contract_address,
            "data": fn.encode_call(args),
        }

        if signer.password is not None:
            tx_hash = await self._rpc(
                operation, "personal_sendTransaction", [tx, signer.password],
                token_id=self._token_arg(fn, args),
            )
        else:
            tx_hash = await self._rpc(
                operation, "eth_sendTransaction", [tx],
                token_id=self._token_arg(fn, args),
            )

        logger.info(f"Submitted {operation} transaction {tx_hash}")
        return await self._wait_for_receipt(operation, tx_hash)

    async def _wait_for_receipt(self, operation: str, tx_hash: str) -> TransactionReceipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.receipt_timeout

        while True:
            receipt = await self._rpc(operation, "eth_getTransactionReceipt", [tx_hash])
            if receipt is not None:
                break
            if loop.time() >= deadline:
                raise RemoteCallFailedError(
                    operation, f"no receipt for {tx_hash} after {self.receipt_timeout}s"
                )
            await asyncio.sleep(self.receipt_poll_interval)

        status = int(receipt.get("status", "0x1"), 16) == 1
        if not status:
            raise RemoteCallFailedError(operation, f"transaction {tx_hash} reverted")

        events = [
            event for event in (self._decode_log(log) for log in receipt.get("logs", []))
            if event is not None
        ]

        block = receipt.get("blockNumber")
        return TransactionReceipt(
            transaction_hash=tx_hash,
            block_number=int(block, 16) if block else None,
            status=status,
            events=events,
        )

    async def block_number(self) -> int:
        result = await self._rpc("block_number", "eth_blockNumber", [])
        return int(result, 16)

    async def get_events(self, from_block: int, to_block: int) -> List[LedgerEvent]:
        params = [{
            "address": self.contract_address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": [["0x" + spec.topic.hex() for spec in EVENTS.values()]],
        }]
        logs = await self._rpc("get_events", "eth_getLogs", params) or []

        events = []
        for log in logs:
            event = self._decode_log(log)
            if event is not None:
                events.append(event)
        return events

    def _decode_log(self, log: Dict[str, Any]) -> Optional[LedgerEvent]:
        """Decode a raw log entry, ignoring logs that are not access events."""
        if log.get("address", "").lower() != self.contract_address.lower():
            return None

        topics = [hex_to_bytes(t) for t in log.get("topics", [])]
        if not topics:
            return None

        spec = EVENTS_BY_TOPIC.get(topics[0])
        if spec is None:
            return None

        try:
            fields = spec.decode_log(topics, hex_to_bytes(log.get("data")))
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Undecodable {spec.name} log: {e}")
            return None

        block = log.get("blockNumber")
        return LedgerEvent(
            type=LedgerEventType(spec.name),
            token_id=int(fields.get("token_id", 0)),
            fields=fields,
            block_number=int(block, 16) if block else None,
            transaction_hash=log.get("transactionHash"),
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def describe(self) -> Dict[str, Any]:
        return {
            "network": self.network,
            "chain_id": self.chain_id,
            "rpc_url": self.rpc_url,
            "contract_address": self.contract_address,
        }
