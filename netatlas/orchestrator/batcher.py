"""
RequestBatcher - coalesces requests issued within a short window.

Requests for the same service arriving within batch_window seconds are
collected into one batch and grouped by (method, endpoint). Each group
is currently executed as individual calls; every caller still receives
its own result or exception.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class BatchRequest:
    """One queued request and the future its caller awaits."""

    method: str
    endpoint: str
    executor: Callable[[], Awaitable[Any]]
    future: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def group_key(self) -> tuple[str, str]:
        return (self.method.upper(), self.endpoint)


class RequestBatcher:
    """
    Per-service request coalescing.

    Usage:
        batcher = RequestBatcher(batch_window=0.1)
        result = await batcher.add("peeringdb", BatchRequest("GET", "/ix", fetch_ix))
    """

    def __init__(self, batch_window: float = 0.1):
        self.batch_window = batch_window
        self._batches: dict[str, list[BatchRequest]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._running: set[asyncio.Task] = set()
        self._stats = {
            "requests": 0,
            "batches": 0,
        }

    async def add(self, service_id: str, request: BatchRequest) -> Any:
        """
        Queue a request and wait for its result.

        Args:
            service_id: Upstream service the request belongs to
            request: Method, endpoint and executor of the request

        Returns:
            The executor's result
        """
        loop = asyncio.get_running_loop()
        request.future = loop.create_future()
        self._stats["requests"] += 1

        batch = self._batches.setdefault(service_id, [])
        batch.append(request)

        if service_id not in self._timers:
            self._timers[service_id] = loop.call_later(self.batch_window, self._flush, service_id)

        return await request.future

    def _flush(self, service_id: str) -> None:
        self._timers.pop(service_id, None)
        batch = self._batches.pop(service_id, [])
        if not batch:
            return
        task = asyncio.ensure_future(self._execute_batch(service_id, batch))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _execute_batch(self, service_id: str, batch: list[BatchRequest]) -> None:
        self._stats["batches"] += 1

        groups: dict[tuple[str, str], list[BatchRequest]] = defaultdict(list)
        for request in batch:
            groups[request.group_key].append(request)

        logger.debug(
            f"Executing batch for {service_id}",
            extra={"service": service_id, "requests": len(batch), "groups": len(groups)},
        )

        for requests in groups.values():
            results = await asyncio.gather(
                *(request.executor() for request in requests),
                return_exceptions=True,
            )
            for request, result in zip(requests, results):
                if request.future.done():
                    continue
                if isinstance(result, BaseException):
                    request.future.set_exception(result)
                else:
                    request.future.set_result(result)

    def get_pending_count(self, service_id: Optional[str] = None) -> int:
        if service_id is not None:
            return len(self._batches.get(service_id, []))
        return sum(len(batch) for batch in self._batches.values())

    def close(self) -> None:
        """Cancel pending timers and fail queued requests."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for batch in self._batches.values():
            for request in batch:
                if request.future is not None and not request.future.done():
                    request.future.cancel()
        self._batches.clear()

    def get_stats(self) -> dict[str, int]:
        return {**self._stats, "pending": self.get_pending_count()}
