"""
wgbridge Call Gateway

Every ledger read and write goes through here.

- Reads are cached for a short TTL, keyed "operation:arg1:arg2..."
- Rate-limited attempts are retried with exponential backoff (no jitter)
- Any successful invocation clears the whole result cache
- Writes require a configured signer and never touch the cache
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from wgbridge.constants import (
    GATEWAY_BACKOFF_MULTIPLIER,
    GATEWAY_BASE_DELAY_MS,
    GATEWAY_CACHE_TTL_SEC,
    GATEWAY_MAX_DELAY_MS,
    GATEWAY_MAX_RETRIES,
    RATE_LIMIT_ERROR_CODE,
)
from wgbridge.core.cache import TTLCache
from wgbridge.core.types import AccessRecord, HealthStatus
from wgbridge.errors import (
    LedgerError,
    NetworkUnavailableError,
    RateLimitExceededError,
    RemoteCallFailedError,
    SignerNotConfiguredError,
)
from wgbridge.ledger.backend import LedgerBackend, Signer, TransactionReceipt

logger = logging.getLogger(__name__)


def is_rate_limited(error: Exception) -> bool:
    """True if a backend failure is the ledger's rate-limit rejection."""
    return isinstance(error, RemoteCallFailedError) and error.rpc_code == RATE_LIMIT_ERROR_CODE


def cache_key(operation: str, args: tuple) -> str:
    return ":".join([operation, *(str(a) for a in args)])


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff parameters."""
    max_retries: int = GATEWAY_MAX_RETRIES
    base_delay_ms: int = GATEWAY_BASE_DELAY_MS
    max_delay_ms: int = GATEWAY_MAX_DELAY_MS
    multiplier: float = GATEWAY_BACKOFF_MULTIPLIER

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt `attempt` (0-indexed)."""
        ms = min(self.max_delay_ms, self.base_delay_ms * self.multiplier ** attempt)
        return ms / 1000.0


class CallGateway:
    """
    Retrying, caching front for a LedgerBackend.

    One instance per running node; owns its result cache and counters.
    """

    def __init__(
        self,
        backend: LedgerBackend,
        signer: Optional[Signer] = None,
        cache_ttl: float = GATEWAY_CACHE_TTL_SEC,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.backend = backend
        self.signer = signer
        self.retry = retry or RetryPolicy()
        self.cache: TTLCache[Any] = TTLCache(cache_ttl)
        self._sleep = sleep

        self.stats: Dict[str, int] = {
            "calls": 0,
            "mutations": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "retries": 0,
            "failures": 0,
            "stale_served": 0,
        }

    # ==========================================================================
    # Core
    # ==========================================================================

    async def call(self, operation: str, *args: Any, refresh: bool = False) -> Any:
        """
        Execute a read-only ledger operation.

        Args:
            operation: Logical operation name (e.g. "owner_of")
            *args: Operation arguments
            refresh: Skip the cache read and always go to the ledger

        Returns:
            Decoded operation result

        Raises:
            RateLimitExceededError: Rate limited on every attempt
            RemoteCallFailedError: Non-retryable rejection
            NetworkUnavailableError: Ledger unreachable and nothing cached
        """
        self.stats["calls"] += 1
        key = cache_key(operation, args)

        cached = self.cache.get(key)
        if cached is not None and not refresh:
            self.stats["cache_hits"] += 1
            logger.debug(f"Cache hit: {key}")
            return cached

        self.stats["cache_misses"] += 1

        try:
            result = await self._with_retry(operation, lambda: self.backend.call(operation, *args))
        except NetworkUnavailableError as e:
            if cached is not None:
                self.stats["stale_served"] += 1
                logger.warning(f"Ledger unreachable, serving cached {key}: {e.message}")
                return cached
            raise

        self.cache.clear()
        self.cache.set(key, result)
        return result

    async def mutate(self, operation: str, *args: Any) -> TransactionReceipt:
        """
        Execute a state-changing ledger operation.

        Raises:
            SignerNotConfiguredError: No signer configured
            RateLimitExceededError / RemoteCallFailedError / NetworkUnavailableError
        """
        if self.signer is None:
            raise SignerNotConfiguredError(operation)

        self.stats["mutations"] += 1
        receipt = await self._with_retry(
            operation,
            lambda: self.backend.transact(operation, *args, signer=self.signer),
        )

        cleared = self.cache.clear()
        logger.info(
            f"Ledger {operation} confirmed in block {receipt.block_number} "
            f"(tx {receipt.transaction_hash}, {cleared} cached results dropped)"
        )
        return receipt

    async def _with_retry(self, operation: str, attempt_fn: Callable[[], Awaitable[Any]]) -> Any:
        attempts = 0
        while True:
            try:
                return await attempt_fn()
            except LedgerError as e:
                attempts += 1
                if not is_rate_limited(e):
                    self.stats["failures"] += 1
                    raise

                if attempts > self.retry.max_retries:
                    self.stats["failures"] += 1
                    raise RateLimitExceededError(operation, attempts, e.message) from e

                delay = self.retry.delay(attempts - 1)
                self.stats["retries"] += 1
                logger.warning(
                    f"Rate limited on {operation} (attempt {attempts}), "
                    f"retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

    def clear_cache(self) -> int:
        """Drop every cached result."""
        count = self.cache.clear()
        if count:
            logger.debug(f"Gateway cache cleared ({count} entries)")
        return count

    # ==========================================================================
    # Typed helpers
    # ==========================================================================

    async def get_access_record(self, token_id: int, refresh: bool = False) -> AccessRecord:
        return await self.call("get_access_record", token_id, refresh=refresh)

    async def has_access(self, owner_address: str, node_id: str) -> bool:
        return await self.call("has_access", owner_address, node_id)

    async def token_id_for_node(self, node_id: str) -> int:
        """Token id for a node, 0 when the node has never been registered."""
        return await self.call("token_id_for_node", node_id)

    async def owner_of(self, token_id: int) -> str:
        return await self.call("owner_of", token_id)

    async def mint_access(
        self,
        owner_address: str,
        node_id: str,
        public_key: str,
        token_uri: str,
    ) -> TransactionReceipt:
        return await self.mutate("mint_access", owner_address, node_id, public_key, token_uri)

    async def revoke_access(self, token_id: int) -> TransactionReceipt:
        return await self.mutate("revoke_access", token_id)

    # ==========================================================================
    # Status
    # ==========================================================================

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "cache_size": len(self.cache),
            "signer_configured": self.signer is not None,
            "backend": self.backend.describe(),
        }

    async def health_check(self) -> Dict[str, Any]:
        """Probe the ledger with a block number query."""
        try:
            block = await self.backend.block_number()
        except NetworkUnavailableError as e:
            return {"status": HealthStatus.UNHEALTHY.value, "error": e.message}
        except LedgerError as e:
            status = HealthStatus.DEGRADED if is_rate_limited(e) else HealthStatus.UNHEALTHY
            return {"status": status.value, "error": e.message}

        return {
            "status": HealthStatus.HEALTHY.value,
            "block_number": block,
            "cache_size": len(self.cache),
        }
