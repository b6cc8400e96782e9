"""
Events and Logging Unit Tests
=============================

[UNIT] Tests for mutable/events.py and mutable/logger.py.
"""

import logging

import pytest


def _update():
    from mutable.codec import MutableRecordValue
    from mutable.events import UpdateAvailable

    return UpdateAvailable(
        record_id="rid",
        public_key=b"\x01" * 32,
        salt=b"s",
        old_sequence=1,
        new_sequence=2,
        value=MutableRecordValue("def456"),
        authoritative=True,
    )


class TestUpdateAvailable:

    def test_to_dict(self):
        """Test to_dict hex-encodes keys and nests the value."""
        data = _update().to_dict()

        assert data["type"] == "UpdateAvailable"
        assert data["public_key"] == "01" * 32
        assert data["salt"] == "73"
        assert data["new_sequence"] == 2
        assert data["value"]["content"] == "def456"

    def test_name(self):
        """Test event name matches the class name."""
        assert _update().name == "UpdateAvailable"


class TestEventBus:

    def test_broadcast(self, event_bus):
        """Test listener receives payload and the call count is returned."""
        received = []
        event_bus.subscribe("UpdateAvailable", received.append)

        assert event_bus.broadcast("UpdateAvailable", 42) == 1
        assert received == [42]

    def test_wildcard(self, event_bus):
        """Test "*" listener receives every event."""
        received = []
        event_bus.subscribe("*", received.append)

        event_bus.broadcast("a", 1)
        event_bus.broadcast("b", 2)
        assert received == [1, 2]

    def test_unsubscribe(self, event_bus):
        """Test removed listener is no longer called."""
        received = []
        event_bus.subscribe("a", received.append)
        event_bus.unsubscribe("a", received.append)

        assert event_bus.broadcast("a", 1) == 0
        assert event_bus.listener_count() == 0

    def test_failing_listener_does_not_block_others(self, event_bus):
        """A raising listener does not stop delivery to others."""
        received = []

        def broken(payload):
            raise RuntimeError("boom")

        event_bus.subscribe("a", broken)
        event_bus.subscribe("a", received.append)

        assert event_bus.broadcast("a", 1) == 2
        assert received == [1]

    def test_listener_count(self, event_bus):
        """Test per-event and total listener counts."""
        event_bus.subscribe("a", print)
        event_bus.subscribe("b", print)
        assert event_bus.listener_count("a") == 1
        assert event_bus.listener_count() == 2


class TestLogTailHandler:

    @pytest.fixture
    def tail_logger(self, event_bus):
        from mutable.logger import LogTailHandler

        handler = LogTailHandler(maxlen=3, bus=event_bus)
        handler.setFormatter(logging.Formatter("%(message)s"))
        log = logging.getLogger("mutable.test.tail")
        log.setLevel(logging.INFO)
        log.propagate = False
        log.addHandler(handler)
        yield log, handler
        log.removeHandler(handler)

    def test_buffer_is_bounded(self, tail_logger):
        """Tail keeps only the last maxlen lines."""
        log, handler = tail_logger
        for i in range(5):
            log.info(f"line {i}")
        assert list(handler.buffer) == ["line 2", "line 3", "line 4"]

    def test_broadcasts_activity_log(self, tail_logger, event_bus):
        """Each formatted line is broadcast as activity_log."""
        log, _ = tail_logger
        received = []
        event_bus.subscribe("activity_log", received.append)

        log.warning("[PUBLISH] seq=2")
        assert received == [{"message": "[PUBLISH] seq=2", "level": "WARNING"}]

    def test_listener_logging_does_not_recurse(self, tail_logger, event_bus):
        """Logging from an activity_log listener does not recurse."""
        log, handler = tail_logger
        event_bus.subscribe("activity_log", lambda payload: log.info("echo"))

        log.info("first")
        assert list(handler.buffer) == ["first"]


class TestConfigureLogging:

    def test_without_tail(self):
        """No handler is created without tail_size."""
        from mutable.logger import configure_logging
        assert configure_logging("DEBUG") is None

    def test_with_tail(self, event_bus):
        """tail_size attaches a LogTailHandler to the root logger."""
        from mutable.logger import LogTailHandler, configure_logging

        handler = configure_logging("INFO", tail_size=10, bus=event_bus)
        try:
            assert isinstance(handler, LogTailHandler)
            assert handler.buffer.maxlen == 10
            assert handler in logging.getLogger().handlers
        finally:
            logging.getLogger().removeHandler(handler)
