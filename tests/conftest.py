"""
Mutable Torrents Test Configuration
===================================

[QA] Central pytest configuration with fixtures for all test types:
- Unit tests: Isolated, no I/O, fast
- Integration tests: Real async I/O, temp databases
- E2E tests: Several sessions sharing one in-memory DHT

[FIXTURES]
- keys / key_pair: fresh Ed25519 key material
- network / engine: MemoryDHT and a MemoryEngine attached to it
- fake_clock: manually advanced monotonic clock for UpdatePoller
- session_factory: MutableTorrentSession bound to the shared network
- record_store: isolated in-memory RecordStore

Usage:
    pytest tests/unit/          # Fast unit tests
    pytest tests/integration/   # Integration tests
    pytest tests/e2e/           # End-to-end tests
"""

import sys
import shutil
import tempfile
import logging
from pathlib import Path
from typing import Callable, Generator, List

import pytest
import pytest_asyncio

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (I/O, slower)")
    config.addinivalue_line("markers", "e2e: End-to-end tests (full stack)")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their path."""
    for item in items:
        path = str(item.fspath)
        if "/unit/" in path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in path:
            item.add_marker(pytest.mark.e2e)


# ============================================================================
# Logging Configuration
# ============================================================================

@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


# ============================================================================
# Temporary Directory Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp(prefix="mutable_test_"))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


# ============================================================================
# Crypto Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def keys():
    """Create fresh sign-capable key material for each test."""
    from mutable.keys import KeyMaterial
    return KeyMaterial.generate()


@pytest.fixture(scope="function")
def key_pair():
    """Create two independent key materials."""
    from mutable.keys import KeyMaterial
    return KeyMaterial.generate(), KeyMaterial.generate()


@pytest.fixture(scope="function")
def fixed_seed() -> bytes:
    return bytes(range(32))


# ============================================================================
# Engine Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def network():
    """Shared in-memory DHT."""
    from engine.memory import MemoryDHT
    return MemoryDHT()


@pytest.fixture(scope="function")
def engine(network):
    """MemoryEngine attached to the shared network."""
    from engine.memory import MemoryEngine
    return MemoryEngine(network)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="function")
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="function")
def test_config(temp_dir: Path):
    """Config isolated from environment and global state."""
    from config import Config
    cfg = Config()
    cfg.dht.poll_interval = 300.0
    cfg.torrent.save_path = str(temp_dir / "downloads")
    cfg.torrent.auto_download = False
    return cfg


@pytest.fixture(scope="function")
def event_bus():
    from mutable.events import EventBus
    return EventBus()


@pytest.fixture(scope="function")
def session_factory(network, fake_clock, test_config, event_bus) -> Callable:
    """
    Factory for sessions that share one network.

    [USAGE]
        publisher = session_factory()
        subscriber = session_factory()
    """
    from engine.memory import MemoryEngine
    from mutable.session import MutableTorrentSession

    sessions: List[MutableTorrentSession] = []

    def _create(**engine_kwargs) -> MutableTorrentSession:
        session = MutableTorrentSession(
            MemoryEngine(network, **engine_kwargs),
            config=test_config,
            bus=event_bus,
            clock=fake_clock,
        )
        sessions.append(session)
        return session

    yield _create

    for session in sessions:
        session.close()


# ============================================================================
# Persistence Fixtures
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def record_store():
    """Create isolated in-memory RecordStore."""
    from mutable.persistence import RecordStore

    store = RecordStore(":memory:")
    await store.initialize()
    yield store
    await store.close()
