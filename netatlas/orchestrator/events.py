"""
Event channel for orchestrator notifications.

An explicit observer object is created with (or injected into) the
orchestrator and shared with its cache; there is no process-wide
dispatcher. UI layers subscribe to events such as "cache-revalidated"
to refresh freshness badges.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

CACHE_REVALIDATED = "cache-revalidated"


@dataclass(frozen=True)
class CacheRevalidatedEvent:
    """Payload of CACHE_REVALIDATED: the key and its fresh value."""

    key: str
    data: Any


class EventChannel:
    """
    Minimal publish/subscribe channel.

    Synchronous callbacks run inline; coroutine callbacks are scheduled
    as tasks on the running loop. A failing subscriber is logged and
    does not prevent delivery to the others.
    """

    def __init__(self):
        self._subscribers: dict[str, list[Callable[[Any], Any]]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def subscribe(self, event: str, callback: Callable[[Any], Any]) -> Callable[[], None]:
        """
        Register a callback for an event.

        Returns:
            A function that removes the subscription
        """
        self._subscribers[event].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers.get(event, []):
                self._subscribers[event].remove(callback)

        return unsubscribe

    def emit(self, event: str, payload: Any = None) -> int:
        """
        Deliver payload to every subscriber of event.

        Returns:
            Number of subscribers notified
        """
        if self._closed:
            logger.debug(f"Event channel closed, dropping {event}")
            return 0

        delivered = 0
        for callback in list(self._subscribers.get(event, [])):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._on_task_done)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Event subscriber failed for {event}",
                    extra={"event": event, "error": str(e)},
                )
        return delivered

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Async event subscriber failed",
                extra={"error": str(task.exception())},
            )

    def subscriber_count(self, event: str) -> int:
        return len(self._subscribers.get(event, []))

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Drop all subscribers and cancel pending async deliveries."""
        self._closed = True
        self._subscribers.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
