"""
Subscription Coordinator Unit Tests
===================================

[UNIT] Tests for mutable/subscriber.py: ordering and authentication of
incoming DHT items.
"""

import pytest


@pytest.fixture
def registry():
    from mutable.registry import MutableRecordRegistry
    return MutableRecordRegistry()


@pytest.fixture
def updates():
    return []


@pytest.fixture
def subscriber(registry, engine, updates):
    from mutable.subscriber import SubscriptionCoordinator
    return SubscriptionCoordinator(registry, engine, emit=updates.append)


def signed(keys, content: str, sequence: int, salt: bytes = b""):
    """Encode and sign a record value the way a publisher does."""
    from mutable.codec import MutableRecordValue, encode, signing_payload

    value = encode(MutableRecordValue(content=content, version=1))
    return value, keys.sign(signing_payload(value, sequence, salt))


class TestOrdering:
    """Test sequence comparison."""

    def test_newer_item_accepted(self, registry, subscriber, updates, keys):
        """Test newer sequence is applied and emitted once."""
        rid = registry.register_subscriber(keys.public_key)
        value, signature = signed(keys, "abc123", 1)

        update = subscriber.handle_incoming_record(keys.public_key, b"", 1, value, signature=signature)

        assert update is not None
        assert update.record_id == rid
        assert update.old_sequence == 0
        assert update.new_sequence == 1
        assert update.value.content == "abc123"
        assert updates == [update]
        assert registry.get(rid).sequence_number == 1
        assert registry.get(rid).last_value.content == "abc123"

    def test_stale_item_ignored(self, registry, subscriber, updates, keys):
        """Test older sequence is dropped and counted as stale."""
        rid = registry.register_subscriber(keys.public_key, sequence_number=5)

        value, signature = signed(keys, "old", 3)
        assert subscriber.handle_incoming_record(keys.public_key, b"", 3, value, signature=signature) is None
        assert registry.get(rid).sequence_number == 5
        assert updates == []
        assert subscriber.dropped_stale == 1

        value, signature = signed(keys, "new", 6)
        update = subscriber.handle_incoming_record(keys.public_key, b"", 6, value, signature=signature)
        assert update.old_sequence == 5
        assert update.new_sequence == 6
        assert registry.get(rid).sequence_number == 6

    def test_replay_emits_once(self, registry, subscriber, updates, keys):
        """Replayed item produces a single UpdateAvailable."""
        registry.register_subscriber(keys.public_key)
        value, signature = signed(keys, "abc", 2)

        for _ in range(3):
            subscriber.handle_incoming_record(keys.public_key, b"", 2, value, signature=signature)

        assert len(updates) == 1

    def test_skipped_sequences_accepted(self, registry, subscriber, keys):
        """Gaps in the sequence are allowed."""
        rid = registry.register_subscriber(keys.public_key, sequence_number=1)
        value, signature = signed(keys, "abc", 10)

        assert subscriber.handle_incoming_record(keys.public_key, b"", 10, value, signature=signature)
        assert registry.get(rid).sequence_number == 10

    def test_untracked_key_ignored(self, subscriber, updates, key_pair):
        """Items for unknown keys are ignored."""
        first, second = key_pair
        value, signature = signed(first, "abc", 1)

        assert subscriber.handle_incoming_record(first.public_key, b"", 1, value, signature=signature) is None
        assert updates == []

    def test_salt_distinguishes_records(self, registry, subscriber, keys):
        """Salt selects the record under a shared key."""
        rid_a = registry.register_subscriber(keys.public_key, b"a")
        rid_b = registry.register_subscriber(keys.public_key, b"b")
        value, signature = signed(keys, "abc", 1, b"a")

        update = subscriber.handle_incoming_record(keys.public_key, b"a", 1, value, signature=signature)

        assert update.record_id == rid_a
        assert registry.get(rid_b).sequence_number == 0

    @pytest.mark.parametrize("sequence", [2 ** 63, "7", None])
    def test_out_of_range_sequence(self, registry, subscriber, keys, sequence):
        """Non-int64 sequences are ignored."""
        registry.register_subscriber(keys.public_key)
        value, signature = signed(keys, "abc", 1)

        assert subscriber.handle_incoming_record(keys.public_key, b"", sequence, value, signature=signature) is None


class TestAuthentication:
    """Test signature and decode failures are dropped silently."""

    def test_forged_signature(self, registry, subscriber, updates, key_pair):
        """Signature from another key is dropped and counted."""
        owner, attacker = key_pair
        rid = registry.register_subscriber(owner.public_key)
        value, signature = signed(attacker, "evil", 10)

        assert subscriber.handle_incoming_record(owner.public_key, b"", 10, value, signature=signature) is None
        assert registry.get(rid).sequence_number == 0
        assert updates == []
        assert subscriber.dropped_invalid_signature == 1

    def test_signature_for_other_sequence(self, registry, subscriber, keys):
        """Signature over a different sequence does not verify."""
        registry.register_subscriber(keys.public_key)
        value, signature = signed(keys, "abc", 1)

        assert subscriber.handle_incoming_record(keys.public_key, b"", 2, value, signature=signature) is None

    def test_signature_for_other_salt(self, registry, subscriber, keys):
        """Signature over a different salt does not verify."""
        registry.register_subscriber(keys.public_key, b"mine")
        value, signature = signed(keys, "abc", 1, b"theirs")

        assert subscriber.handle_incoming_record(keys.public_key, b"mine", 1, value, signature=signature) is None

    def test_truncated_signature(self, registry, subscriber, keys):
        """Short signature counts as invalid."""
        registry.register_subscriber(keys.public_key)
        value, signature = signed(keys, "abc", 1)

        assert subscriber.handle_incoming_record(keys.public_key, b"", 1, value, signature=signature[:63]) is None
        assert subscriber.dropped_invalid_signature == 1

    def test_missing_signature_rejected(self, registry, subscriber, keys):
        """Unsigned item is rejected from a non-validating engine."""
        registry.register_subscriber(keys.public_key)
        value, _ = signed(keys, "abc", 1)

        assert subscriber.handle_incoming_record(keys.public_key, b"", 1, value, signature=None) is None

    def test_missing_signature_trusted_from_validating_engine(self, registry, engine, keys):
        """Unsigned item is accepted when the engine validates signatures."""
        from mutable.subscriber import SubscriptionCoordinator

        engine.validates_signatures = True
        subscriber = SubscriptionCoordinator(registry, engine)
        registry.register_subscriber(keys.public_key)
        value, _ = signed(keys, "abc", 1)

        update = subscriber.handle_incoming_record(keys.public_key, b"", 1, value, signature=None)
        assert update is not None
        assert update.new_sequence == 1

    def test_undecodable_value(self, registry, subscriber, updates, keys):
        """Signed but undecodable value is dropped without bumping the counter."""
        from mutable.codec import signing_payload

        rid = registry.register_subscriber(keys.public_key)
        garbage = b"not bencode at all"
        signature = keys.sign(signing_payload(garbage, 1, b""))

        assert subscriber.handle_incoming_record(keys.public_key, b"", 1, garbage, signature=signature) is None
        assert registry.get(rid).sequence_number == 0
        assert updates == []
        assert subscriber.dropped_decode_error == 1

    @pytest.mark.parametrize("authoritative", [True, False])
    def test_authoritative_passthrough(self, registry, subscriber, keys, authoritative):
        """Authoritative flag is carried into the event."""
        registry.register_subscriber(keys.public_key)
        value, signature = signed(keys, "abc", 1)

        update = subscriber.handle_incoming_record(
            keys.public_key, b"", 1, value, authoritative=authoritative, signature=signature
        )
        assert update.authoritative is authoritative


class TestPublisherRecords:
    """Items for records this process publishes do not move the counter."""

    def test_publisher_record_not_bumped(self, registry, subscriber, updates, keys):
        """Incoming items never move a publisher's counter."""
        rid = registry.register_publisher(keys)
        value, signature = signed(keys, "abc", 7)

        assert subscriber.handle_incoming_record(keys.public_key, b"", 7, value, signature=signature) is None
        assert registry.get(rid).sequence_number == 0
        assert updates == []


class TestRequests:
    """Test dht_get requests and engine event handling."""

    def test_request_latest(self, registry, subscriber, engine, keys):
        """Test request_latest issues a dht_get."""
        rid = registry.register_subscriber(keys.public_key)
        subscriber.request_latest(rid)
        assert engine.get_count == 1

    def test_request_latest_unknown(self, subscriber):
        """Test unknown record id raises RecordNotFoundError."""
        from mutable.errors import RecordNotFoundError

        with pytest.raises(RecordNotFoundError):
            subscriber.request_latest("missing")

    def test_handle_event(self, registry, subscriber, keys):
        """Test MutableItemReceived is handled like a direct call."""
        from engine.base import MutableItemReceived

        registry.register_subscriber(keys.public_key)
        value, signature = signed(keys, "abc", 4)
        event = MutableItemReceived(
            public_key=keys.public_key,
            salt=b"",
            sequence=4,
            value_bytes=value,
            authoritative=True,
            signature=signature,
        )

        update = subscriber.handle_event(event)
        assert update.new_sequence == 4
        assert update.authoritative is True
