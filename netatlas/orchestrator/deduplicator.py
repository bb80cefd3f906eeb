"""
RequestDeduplicator - collapses concurrent identical requests.

While a request for a key is in flight, later callers for the same key
await the same task instead of starting a new one. The entry is removed
as soon as the task settles, so the next call starts fresh.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

from netatlas.normalizer.schemas import QueryParams

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async requests.

    All callers sharing a key observe the same settled result, value or
    exception. A caller being cancelled does not cancel the shared task.

    Usage:
        dedup = RequestDeduplicator()
        key = RequestDeduplicator.make_key("GET", "/ix", {"country": "DE"})
        data = await dedup.deduplicate(key, lambda: client.fetch("/ix"))
    """

    def __init__(self, name: str = "default"):
        self.name = name
        self._pending: dict[str, asyncio.Task[Any]] = {}
        self._stats = {
            "total": 0,
            "deduplicated": 0,
        }

    @staticmethod
    def make_key(
        method: str,
        endpoint: str,
        params: Optional[Union[Mapping[str, Any], QueryParams]] = None,
    ) -> str:
        """
        Build a deduplication key from method, normalized endpoint and
        sorted query parameters.
        """
        normalized = endpoint.strip()
        if len(normalized) > 1:
            normalized = normalized.rstrip("/")
        serialized = QueryParams.from_options(params).serialize()
        return f"{method.upper()}:{normalized or '/'}?{serialized}"

    async def deduplicate(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Execute operation unless a request for key is already in flight.

        Args:
            key: Unique identifier for this request
            operation: No-argument callable returning an awaitable

        Returns:
            Result shared by every caller of this key
        """
        task = self._pending.get(key)
        if task is not None:
            self._stats["deduplicated"] += 1
            logger.debug(f"Deduplicator {self.name}: joining in-flight request", extra={"key": key})
        else:
            self._stats["total"] += 1
            task = asyncio.ensure_future(operation())
            self._pending[key] = task
            task.add_done_callback(lambda done, k=key: self._cleanup(k, done))

        return await asyncio.shield(task)

    def _cleanup(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def get_pending_count(self) -> int:
        return len(self._pending)

    def cancel_all(self) -> int:
        """Cancel all in-flight requests; waiters receive CancelledError."""
        count = len(self._pending)
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()
        return count

    def get_stats(self) -> dict[str, Any]:
        total = self._stats["total"] + self._stats["deduplicated"]
        return {
            "total_requests": self._stats["total"],
            "deduplicated": self._stats["deduplicated"],
            "in_flight": len(self._pending),
            "dedup_rate_pct": round(self._stats["deduplicated"] / total * 100, 2) if total else 0.0,
        }
