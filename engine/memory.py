"""
Memory DHT - Внутрипроцессная DHT для mutable-записей
=====================================================

[DHT] Имитирует сеть узлов, хранящих подписанные mutable-записи:
- MemoryDHT: общее хранилище "сети" с правилами приёма BEP 44
- MemoryEngine: движок одного участника со своей очередью событий

[STORAGE] Правила приёма записи:
- Подпись должна сойтись с public_key
- sequence строго больше уже сохранённого
- Значение не больше MAX_VALUE_SIZE
- TTL = время жизни (по умолчанию 2 часа, как у узлов BEP 44)

Используется в тестах и хостами без сетевого движка.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from mutable.codec import MAX_VALUE_SIZE, signing_payload
from mutable.keys import KeyMaterial

from .base import (
    DHTEngine,
    DHTPutCompleted,
    EngineEvent,
    MutableItemReceived,
    Signer,
    TorrentAdded,
)

logger = logging.getLogger(__name__)


DEFAULT_TTL = 7200  # 2 часа


@dataclass
class StoredItem:
    """Запись, хранящаяся в MemoryDHT."""

    public_key: bytes
    salt: bytes
    value: bytes
    sequence: int
    signature: bytes
    timestamp: float = field(default_factory=time.time)
    ttl: int = DEFAULT_TTL

    @property
    def is_expired(self) -> bool:
        return time.time() > self.timestamp + self.ttl


@dataclass
class MemoryTorrentHandle:
    """Handle торрента, добавленного в MemoryEngine."""

    descriptor: str
    save_path: str
    added_at: float = field(default_factory=time.time)


class MemoryDHT:
    """
    Общее хранилище "сети".

    [USAGE]
    ```python
    network = MemoryDHT()
    alice = MemoryEngine(network)
    bob = MemoryEngine(network)
    ```
    """

    def __init__(self, ttl: int = DEFAULT_TTL, max_value_size: int = MAX_VALUE_SIZE):
        self.ttl = ttl
        self.max_value_size = max_value_size
        self._items: Dict[Tuple[bytes, bytes], StoredItem] = {}
        self._lock = threading.Lock()

    def current(self, public_key: bytes, salt: bytes) -> Optional[StoredItem]:
        """Текущая запись или None если нет/истекла."""
        with self._lock:
            item = self._items.get((bytes(public_key), bytes(salt)))
            if item and item.is_expired:
                del self._items[(item.public_key, item.salt)]
                return None
            return item

    def store(
        self,
        public_key: bytes,
        salt: bytes,
        value: bytes,
        sequence: int,
        signature: bytes,
    ) -> bool:
        """
        Сохранить запись, если она проходит правила BEP 44.

        Returns:
            True если запись принята
        """
        if len(value) > self.max_value_size:
            logger.warning(f"[DHT] Value too large: {len(value)} > {self.max_value_size}")
            return False

        if not KeyMaterial.verify(signature, signing_payload(value, sequence, salt), public_key):
            logger.warning(f"[DHT] Rejected item with invalid signature: {bytes(public_key).hex()[:16]}...")
            return False

        key = (bytes(public_key), bytes(salt))
        with self._lock:
            existing = self._items.get(key)
            if existing and not existing.is_expired and sequence <= existing.sequence:
                logger.debug(
                    f"[DHT] Rejected stale item seq={sequence} <= {existing.sequence} "
                    f"for {key[0].hex()[:16]}..."
                )
                return False

            self._items[key] = StoredItem(
                public_key=key[0],
                salt=key[1],
                value=bytes(value),
                sequence=sequence,
                signature=bytes(signature),
                ttl=self.ttl,
            )

        logger.debug(f"[DHT] Stored: {key[0].hex()[:16]}... seq={sequence} ({len(value)} bytes)")
        return True

    def cleanup(self) -> int:
        """Удалить истёкшие записи."""
        with self._lock:
            expired = [key for key, item in self._items.items() if item.is_expired]
            for key in expired:
                del self._items[key]
        if expired:
            logger.info(f"[DHT] Cleanup: removed {len(expired)} expired entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class MemoryEngine(DHTEngine):
    """Движок одного участника поверх MemoryDHT."""

    validates_signatures = False

    def __init__(self, network: Optional[MemoryDHT] = None, authoritative: bool = True):
        self.network = network if network is not None else MemoryDHT()
        self.authoritative = authoritative
        self.torrents: Dict[str, MemoryTorrentHandle] = {}
        self.put_count = 0
        self.get_count = 0
        self._events: Deque[EngineEvent] = deque()
        self._lock = threading.Lock()

    def add_torrent(self, descriptor: str, save_path: str) -> Any:
        handle = self.torrents.get(descriptor)
        if handle is None:
            handle = MemoryTorrentHandle(descriptor=descriptor, save_path=save_path)
            self.torrents[descriptor] = handle
            self._enqueue(TorrentAdded(descriptor=descriptor, save_path=save_path))
            logger.info(f"[TORRENT] Added {descriptor[:60]} -> {save_path}")
        return handle

    def dht_put(self, public_key: bytes, salt: bytes, signer: Signer) -> None:
        current = self.network.current(public_key, salt)
        item = signer(
            current.value if current else None,
            current.sequence if current else 0,
        )
        self.put_count += 1
        accepted = self.network.store(public_key, salt, item.value, item.sequence, item.signature)
        self._enqueue(
            DHTPutCompleted(
                public_key=bytes(public_key),
                salt=bytes(salt),
                sequence=item.sequence,
                num_success=1 if accepted else 0,
            )
        )

    def dht_get(self, public_key: bytes, salt: bytes) -> None:
        self.get_count += 1
        item = self.network.current(public_key, salt)
        if item is None:
            logger.debug(f"[DHT] No item for {bytes(public_key).hex()[:16]}...")
            return
        self.deliver(
            public_key=item.public_key,
            salt=item.salt,
            sequence=item.sequence,
            value_bytes=item.value,
            signature=item.signature,
            authoritative=self.authoritative,
        )

    def deliver(
        self,
        public_key: bytes,
        salt: bytes,
        sequence: int,
        value_bytes: bytes,
        signature: Optional[bytes],
        authoritative: bool = True,
    ) -> None:
        """Поставить в очередь ответ так, как если бы он пришёл из сети."""
        self._enqueue(
            MutableItemReceived(
                public_key=bytes(public_key),
                salt=bytes(salt),
                sequence=sequence,
                value_bytes=bytes(value_bytes),
                authoritative=authoritative,
                signature=signature,
            )
        )

    def poll_events(self) -> List[EngineEvent]:
        with self._lock:
            events = list(self._events)
            self._events.clear()
        return events

    def _enqueue(self, event: EngineEvent) -> None:
        with self._lock:
            self._events.append(event)
