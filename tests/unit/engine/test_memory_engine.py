"""
Memory Engine Unit Tests
========================

[UNIT] Tests for engine/memory.py storage rules and event queue.
"""

import time

import pytest


def _signed(keys, value: bytes, sequence: int, salt: bytes = b""):
    from engine.base import SignedItem
    from mutable.codec import signing_payload

    return SignedItem(value, sequence, keys.sign(signing_payload(value, sequence, salt)))


class TestMemoryDHT:
    """Test BEP 44 acceptance rules."""

    def test_store_and_current(self, network, keys):
        """Stored item is returned as current."""
        item = _signed(keys, b"value", 1)

        assert network.store(keys.public_key, b"", *item) is True
        stored = network.current(keys.public_key, b"")
        assert stored.sequence == 1
        assert stored.value == b"value"
        assert len(network) == 1

    def test_rejects_bad_signature(self, network, key_pair):
        """Items signed by another key are refused."""
        owner, attacker = key_pair
        item = _signed(attacker, b"value", 1)

        assert network.store(owner.public_key, b"", *item) is False
        assert network.current(owner.public_key, b"") is None

    def test_rejects_stale_sequence(self, network, keys):
        """Older sequence does not replace a newer item."""
        network.store(keys.public_key, b"", *_signed(keys, b"v2", 2))

        assert network.store(keys.public_key, b"", *_signed(keys, b"v1", 1)) is False
        assert network.store(keys.public_key, b"", *_signed(keys, b"v2b", 2)) is False
        assert network.current(keys.public_key, b"").value == b"v2"

    def test_rejects_oversize(self, keys):
        """Values over the size limit are refused."""
        from engine.memory import MemoryDHT

        network = MemoryDHT(max_value_size=10)
        assert network.store(keys.public_key, b"", *_signed(keys, b"x" * 11, 1)) is False

    def test_salt_separates_items(self, network, keys):
        """Different salts are different slots."""
        network.store(keys.public_key, b"a", *_signed(keys, b"A", 1, b"a"))
        network.store(keys.public_key, b"b", *_signed(keys, b"B", 1, b"b"))

        assert network.current(keys.public_key, b"a").value == b"A"
        assert network.current(keys.public_key, b"b").value == b"B"

    def test_expiry(self, keys):
        """Items expire after the TTL."""
        from engine.memory import MemoryDHT

        network = MemoryDHT(ttl=0)
        network.store(keys.public_key, b"", *_signed(keys, b"v", 1))
        time.sleep(0.01)

        assert network.cleanup() == 1
        assert network.current(keys.public_key, b"") is None


class TestMemoryEngine:
    """Test engine operations and event queue."""

    def test_put_then_get(self, engine, keys):
        """A put item is delivered on get."""
        from engine.base import DHTPutCompleted, MutableItemReceived

        item = _signed(keys, b"value", 1)
        engine.dht_put(keys.public_key, b"", lambda value, seq: item)
        engine.dht_get(keys.public_key, b"")

        events = engine.poll_events()
        assert isinstance(events[0], DHTPutCompleted)
        assert events[0].num_success == 1
        assert isinstance(events[1], MutableItemReceived)
        assert events[1].sequence == 1
        assert events[1].signature == item.signature
        assert events[1].authoritative is True
        assert engine.poll_events() == []

    def test_signer_sees_current_item(self, engine, keys):
        """Signer receives the stored value and sequence."""
        seen = []
        first = _signed(keys, b"v1", 1)
        second = _signed(keys, b"v2", 2)

        def signer(item):
            def _sign(value, seq):
                seen.append((value, seq))
                return item
            return _sign

        engine.dht_put(keys.public_key, b"", signer(first))
        engine.dht_put(keys.public_key, b"", signer(second))

        assert seen == [(None, 0), (b"v1", 1)]
        assert engine.put_count == 2

    def test_rejected_put_reports_zero(self, engine, keys):
        """A refused put reports num_success 0."""
        bad = _signed(keys, b"value", 1)._replace(signature=b"\x00" * 64)
        engine.dht_put(keys.public_key, b"", lambda value, seq: bad)

        events = engine.poll_events()
        assert events[0].num_success == 0

    def test_get_missing(self, engine, keys):
        """Get for an empty slot emits nothing."""
        engine.dht_get(keys.public_key, b"")
        assert engine.poll_events() == []
        assert engine.get_count == 1

    def test_non_authoritative(self, network, keys):
        """Authoritative flag follows the engine setting."""
        from engine.memory import MemoryEngine

        engine = MemoryEngine(network, authoritative=False)
        network.store(keys.public_key, b"", *_signed(keys, b"v", 1))
        engine.dht_get(keys.public_key, b"")

        assert engine.poll_events()[0].authoritative is False

    def test_add_torrent_once(self, engine):
        """The same descriptor is added only once."""
        from engine.base import TorrentAdded

        first = engine.add_torrent("magnet:?xt=urn:btih:abc", "/tmp/x")
        second = engine.add_torrent("magnet:?xt=urn:btih:abc", "/tmp/x")

        assert first is second
        events = engine.poll_events()
        assert len(events) == 1
        assert isinstance(events[0], TorrentAdded)
        assert events[0].name == "TorrentAdded"

    def test_engines_share_network(self, network, keys):
        """Two engines see each other's items."""
        from engine.memory import MemoryEngine

        alice = MemoryEngine(network)
        bob = MemoryEngine(network)
        item = _signed(keys, b"value", 1)

        alice.dht_put(keys.public_key, b"", lambda value, seq: item)
        bob.dht_get(keys.public_key, b"")

        received = bob.poll_events()
        assert len(received) == 1
        assert received[0].value_bytes == b"value"

    def test_is_engine(self, engine):
        """MemoryEngine implements DHTEngine."""
        from engine.base import DHTEngine

        assert isinstance(engine, DHTEngine)
        assert engine.validates_signatures is False

    def test_contract_is_abstract(self):
        """DHTEngine cannot be instantiated."""
        from engine.base import DHTEngine

        with pytest.raises(TypeError):
            DHTEngine()
