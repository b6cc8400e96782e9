import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .codec import MutableRecordValue

logger = logging.getLogger(__name__)


UPDATE_AVAILABLE = "UpdateAvailable"


@dataclass
class UpdateAvailable:
    """A subscribed record has a newer validated version."""

    record_id: str
    public_key: bytes
    salt: bytes
    old_sequence: int
    new_sequence: int
    value: MutableRecordValue
    authoritative: bool = False
    timestamp: float = field(default_factory=time.time, compare=False)

    @property
    def name(self) -> str:
        return UPDATE_AVAILABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": UPDATE_AVAILABLE,
            "record_id": self.record_id,
            "public_key": self.public_key.hex(),
            "salt": self.salt.hex(),
            "old_sequence": self.old_sequence,
            "new_sequence": self.new_sequence,
            "value": self.value.to_dict(),
            "authoritative": self.authoritative,
        }


Callback = Callable[[Any], None]


class EventBus:
    """Minimal synchronous event bus for in-process notifications."""

    def __init__(self):
        self._subscribers: Dict[str, List[Callback]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, callback: Callback) -> None:
        with self._lock:
            self._subscribers.setdefault(event_name, []).append(callback)

    def unsubscribe(self, event_name: str, callback: Callback) -> None:
        with self._lock:
            if event_name in self._subscribers:
                self._subscribers[event_name] = [cb for cb in self._subscribers[event_name] if cb != callback]

    def broadcast(self, event_name: str, payload: Any) -> int:
        """Deliver payload to every listener; returns how many were called."""
        with self._lock:
            callbacks = list(self._subscribers.get(event_name, [])) + list(self._subscribers.get("*", []))
        for cb in callbacks:
            try:
                cb(payload)
            except Exception:
                # one broken listener must not starve the others
                logger.exception(f"[EVENTS] Listener for {event_name} failed")
        return len(callbacks)

    def listener_count(self, event_name: Optional[str] = None) -> int:
        with self._lock:
            if event_name is None:
                return sum(len(v) for v in self._subscribers.values())
            return len(self._subscribers.get(event_name, []))


# Global singleton
event_bus = EventBus()
