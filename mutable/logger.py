import logging
from collections import deque
from typing import Deque, Optional

from .events import EventBus, event_bus


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogTailHandler(logging.Handler):
    """Logging handler that keeps a bounded tail and pushes lines to the event bus."""

    def __init__(
        self,
        buffer: Optional[Deque[str]] = None,
        maxlen: int = 1000,
        bus: Optional[EventBus] = None,
    ):
        super().__init__()
        self.buffer: Deque[str] = buffer if buffer is not None else deque(maxlen=maxlen)
        self.bus = bus if bus is not None else event_bus
        self._emitting = False

    def emit(self, record: logging.LogRecord) -> None:
        if self._emitting:
            # a listener logged while handling activity_log
            return
        self._emitting = True
        try:
            msg = self.format(record)
            self.buffer.append(msg)
            self.bus.broadcast("activity_log", {"message": msg, "level": record.levelname})
        except Exception:
            self.handleError(record)
        finally:
            self._emitting = False


def configure_logging(
    level: str = "INFO",
    tail_size: int = 0,
    bus: Optional[EventBus] = None,
) -> Optional[LogTailHandler]:
    """Set up root logging; optionally attach a LogTailHandler of tail_size lines."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )
    if tail_size <= 0:
        return None
    handler = LogTailHandler(maxlen=tail_size, bus=bus)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logging.getLogger().addHandler(handler)
    return handler
