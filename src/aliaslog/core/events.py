"""Change notifications and best-effort fan-out to live subscribers."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Protocol

logger = logging.getLogger(__name__)


class EventType(Enum):
    FILE_ADDED = "FILE_ADDED"
    FILE_CHANGED = "FILE_CHANGED"
    FILE_REMOVED = "FILE_REMOVED"
    ANALYSIS_UPDATE = "ANALYSIS_UPDATE"
    CRITICAL_ERROR_ALERT = "CRITICAL_ERROR_ALERT"
    PATH_NOT_FOUND = "PATH_NOT_FOUND"
    WATCHER_FAILED = "WATCHER_FAILED"


# Events after which previously aggregated results may be stale.
CHANGE_EVENTS = frozenset({EventType.FILE_ADDED, EventType.FILE_CHANGED, EventType.FILE_REMOVED})


@dataclass(frozen=True)
class WatchEvent:
    type: EventType
    context: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "context": dict(self.context),
            "timestamp": self.timestamp.isoformat(),
            "payload": dict(self.payload),
        }


class Broadcaster(Protocol):
    def publish(self, event: WatchEvent) -> None:
        ...


Subscriber = Callable[[WatchEvent], None]


class InMemoryBroadcaster:
    """
    Fans events out to in-process subscriber callbacks.

    Delivery is best effort: a subscriber that raises is skipped for that
    event and stays subscribed.
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: WatchEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Subscriber failed on {event.type.value}: {e}")

        if event.type in (EventType.CRITICAL_ERROR_ALERT, EventType.WATCHER_FAILED, EventType.PATH_NOT_FOUND):
            logger.info(f"Sent {event.type.value} to {len(subscribers)} subscribers")
