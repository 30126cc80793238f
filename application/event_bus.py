from __future__ import annotations

import logging
import threading
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Type

from domain.events import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class EventBus:
    """
    Dispatches committed domain events to handlers registered per event type.

    One instance is built at start-up and passed to whatever publishes
    events, so tests can build isolated buses. Handlers for a publish run
    concurrently on a thread pool; a handler that raises is logged and does
    not stop the other handlers, and the failure never reaches the caller.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = defaultdict(list)
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="event-bus")
        self._enabled = True
        self._closed = False

    def __enter__(self) -> EventBus:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)

    # Registration

    def register(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)
        logger.debug("Registered %s for %s", getattr(handler, "__name__", handler), event_type.__name__)

    def unregister(self, event_type: Type[DomainEvent], handler: EventHandler) -> bool:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
            return False

    def clear_handlers(self) -> None:
        with self._lock:
            self._handlers.clear()

    def handler_count(self, event_type: Type[DomainEvent]) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, []))

    # Global switch, mostly for suppressing side effects in tests

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    # Publishing

    def publish(self, event: DomainEvent) -> int:
        """Deliver one event. Returns the number of handlers that failed."""

        return self.publish_all([event])

    def publish_all(self, events: Iterable[DomainEvent]) -> int:
        """
        Deliver a batch of events, running every handler invocation of the
        batch concurrently. Returns the number of handlers that failed.
        """

        if not self._enabled:
            return 0

        with self._lock:
            if self._closed:
                logger.warning("Event bus is closed; dropping published events")
                return 0
            # close() takes the lock, so the pool stays open for every submit below.
            submitted: List[Tuple[DomainEvent, EventHandler, Future]] = [
                (event, handler, self._executor.submit(handler, event))
                for event in events
                for handler in list(self._handlers.get(type(event), []))
            ]
        if not submitted:
            return 0

        wait([future for _, _, future in submitted])

        failures = 0
        for event, handler, future in submitted:
            error: Optional[BaseException] = future.exception()
            if error is None:
                continue
            failures += 1
            logger.error(
                "Error handling event %s (%s) in %s",
                event.event_name,
                event.event_id,
                getattr(handler, "__name__", repr(handler)),
                exc_info=(type(error), error, error.__traceback__),
            )
        return failures
