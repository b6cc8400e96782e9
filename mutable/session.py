"""
Mutable Torrent Session
=======================

Фасад подсистемы для хоста: ключи, публикация, подписки и выкачивание
событий движка.

[CONCURRENCY] Одна грубая блокировка (RLock) на всё состояние сессии;
реестр получает её же. Своих потоков нет: всё происходит в вызовах хоста.

[USAGE]
```python
session = MutableTorrentSession(MemoryEngine())
keys = session.generate_keypair()
rid = session.create_publisher(keys)
session.publish(rid, MutableRecordValue("abc123"))

for event in session.poll_events():
    if isinstance(event, UpdateAvailable):
        ...
```
"""

import logging
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from config import Config, config as default_config
from engine.base import DHTEngine, DHTPutCompleted, EngineEvent, MutableItemReceived

from .codec import MutableRecordValue
from .errors import MutableRecordError
from .events import UPDATE_AVAILABLE, EventBus, UpdateAvailable, event_bus
from .keys import KeyMaterial
from .persistence import RecordStore
from .poller import UpdatePoller
from .publisher import PublishCoordinator
from .registry import MutableRecordRegistry, RecordId, Role, TrackedRecord
from .subscriber import SubscriptionCoordinator

logger = logging.getLogger(__name__)


class MutableTorrentSession:
    """Публикация и подписка на mutable-записи поверх DHT-движка."""

    def __init__(
        self,
        engine: DHTEngine,
        config: Optional[Config] = None,
        bus: Optional[EventBus] = None,
        clock=None,
    ):
        """
        Args:
            engine: DHT-движок (MemoryEngine, LibtorrentEngine, ...)
            config: Конфигурация (глобальная по умолчанию)
            bus: Шина событий для уведомления слушателей
            clock: Монотонные часы для UpdatePoller (подменяются в тестах)
        """
        self.engine = engine
        self.config = config or default_config
        self.bus = bus if bus is not None else event_bus

        self._lock = threading.RLock()
        self._updates: Deque[UpdateAvailable] = deque()

        self.registry = MutableRecordRegistry(lock=self._lock)
        self.publisher = PublishCoordinator(
            self.registry,
            engine,
            max_value_size=self.config.dht.max_value_size,
        )
        self.subscriber = SubscriptionCoordinator(
            self.registry,
            engine,
            emit=self._updates.append,
            max_value_size=self.config.dht.max_value_size,
        )
        poller_kwargs: Dict[str, Any] = {"interval": self.config.dht.poll_interval}
        if clock is not None:
            poller_kwargs["clock"] = clock
        self.poller = UpdatePoller(self.registry, self.subscriber, **poller_kwargs)

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def generate_keypair() -> KeyMaterial:
        return KeyMaterial.generate()

    @staticmethod
    def keypair_from_seed(seed: bytes) -> KeyMaterial:
        return KeyMaterial.from_seed(seed)

    @staticmethod
    def keypair_from_raw(public_key: bytes, private_key: bytes) -> KeyMaterial:
        return KeyMaterial.from_keys(public_key, private_key)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def create_publisher(
        self,
        key_material: KeyMaterial,
        salt: bytes = b"",
        save_path: str = "",
        sequence_number: int = 0,
    ) -> RecordId:
        """Начать публиковать запись этим ключом. Реестр становится владельцем ключа."""
        return self.registry.register_publisher(
            key_material,
            salt,
            save_path or self.config.torrent.save_path,
            sequence_number=sequence_number,
        )

    def publish(self, record_id: RecordId, value: MutableRecordValue) -> int:
        """Опубликовать новую версию. Возвращает новый sequence."""
        return self.publisher.publish(record_id, value)

    def subscribe(
        self,
        public_key: bytes,
        salt: bytes = b"",
        save_path: str = "",
        auto_update: bool = True,
        fetch_now: bool = False,
        sequence_number: int = 0,
    ) -> RecordId:
        """
        Подписаться на запись.

        Args:
            public_key: 32 байта ключа публикатора
            salt: Соль записи
            save_path: Куда загружать контент
            auto_update: Опрашивать запись в UpdatePoller
            fetch_now: Сразу запросить текущую версию
            sequence_number: Последний известный sequence (при восстановлении)
        """
        record_id = self.registry.register_subscriber(
            public_key,
            salt,
            save_path or self.config.torrent.save_path,
            sequence_number=sequence_number,
            auto_update=auto_update,
        )
        if fetch_now:
            self.subscriber.request_latest(record_id)
        return record_id

    def set_auto_update(self, record_id: RecordId, enabled: bool) -> None:
        self.registry.set_auto_update(record_id, enabled)

    def check_for_update(self, record_id: RecordId) -> None:
        """Ручной запрос текущей версии записи, вне расписания опроса."""
        self.subscriber.request_latest(record_id)

    def remove(self, record_id: RecordId) -> bool:
        return self.registry.remove(record_id)

    def lookup(self, public_key: bytes, salt: bytes = b"") -> Optional[TrackedRecord]:
        return self.registry.lookup(public_key, salt)

    def get_record(self, record_id: RecordId) -> TrackedRecord:
        return self.registry.get(record_id)

    # ------------------------------------------------------------------
    # Torrents
    # ------------------------------------------------------------------

    def download(self, record_id: RecordId) -> Any:
        """
        Добавить в движок торрент, на который указывает последняя версия записи.

        Returns:
            handle движка или None, если значение ещё неизвестно
        """
        with self._lock:
            record = self.registry.get(record_id)
            value = record.last_value
            if value is None:
                logger.debug(f"[SESSION] Nothing to download yet for {record_id}")
                return None
            handle = self.engine.add_torrent(value.magnet_uri, record.save_path)
            record.torrent_handle = handle
        logger.info(f"[SESSION] Download requested: {value.content[:40]} -> {record.save_path}")
        return handle

    # ------------------------------------------------------------------
    # Event pump
    # ------------------------------------------------------------------

    def poll_events(self) -> List[Any]:
        """
        Выкачать события движка.

        MutableItemReceived обрабатываются здесь и превращаются в
        UpdateAvailable; DHTPutCompleted сверяется со счётчиком публикатора;
        остальные события движка передаются хосту как есть.
        Затем делается один тик UpdatePoller.

        [SAFETY] Ошибки движка в тике и в автозагрузке только логируются:
        уже принятые обновления всегда возвращаются хосту.
        """
        host_events: List[Any] = []
        with self._lock:
            for event in self.engine.poll_events():
                if isinstance(event, MutableItemReceived):
                    self.subscriber.handle_event(event)
                    while self._updates:
                        host_events.append(self._updates.popleft())
                else:
                    if isinstance(event, DHTPutCompleted):
                        self.publisher.handle_put_completed(event)
                    host_events.append(event)
            # Обновления, пришедшие через handle_incoming_record напрямую
            while self._updates:
                host_events.append(self._updates.popleft())

            try:
                self.poller.tick()
            except Exception as e:
                logger.error(f"[SESSION] Poller tick failed: {e}")

        for event in host_events:
            if isinstance(event, UpdateAvailable):
                if self.config.torrent.auto_download:
                    self._auto_download(event)
                self.bus.broadcast(UPDATE_AVAILABLE, event)
            elif isinstance(event, EngineEvent):
                self.bus.broadcast(event.name, event)
        return host_events

    def _auto_download(self, event: UpdateAvailable) -> None:
        try:
            self.download(event.record_id)
        except MutableRecordError as e:
            logger.warning(f"[SESSION] Auto download skipped: {e.message}")
        except Exception as e:
            logger.error(f"[SESSION] Auto download failed for {event.value.content[:40]}: {e}")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save_state(self, store: RecordStore) -> int:
        """Сохранить все отслеживаемые записи."""
        return await store.save_registry(self.registry)

    async def restore_state(self, store: RecordStore) -> List[RecordId]:
        """
        Восстановить записи из хранилища.

        Returns:
            record_id восстановленных записей
        """
        restored: List[RecordId] = []
        for item in await store.load_records():
            if item.role is Role.PUBLISHER:
                keys = item.to_key_material()
                if keys is None:
                    logger.warning(f"[STATE] Publisher {item.public_key.hex()[:16]}... has no key, skipped")
                    continue
                record_id = self.create_publisher(
                    keys,
                    item.salt,
                    item.save_path,
                    sequence_number=item.sequence_number,
                )
            else:
                record_id = self.subscribe(
                    item.public_key,
                    item.salt,
                    item.save_path,
                    auto_update=item.auto_update,
                    sequence_number=item.sequence_number,
                )
            restored.append(record_id)
        logger.info(f"[STATE] Restored {len(restored)} tracked records")
        return restored

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        records = self.registry.records()
        return {
            "records": len(records),
            "publishers": sum(1 for r in records if r.role is Role.PUBLISHER),
            "subscribers": sum(1 for r in records if r.role is Role.SUBSCRIBER),
            "auto_update": sum(1 for r in records if r.auto_update_enabled),
            "poll_interval": self.poller.interval,
            "next_poll_in": self.poller.seconds_until_due,
            "sweeps": self.poller.sweep_count,
            "dropped_invalid_signature": self.subscriber.dropped_invalid_signature,
            "dropped_decode_error": self.subscriber.dropped_decode_error,
            "dropped_stale": self.subscriber.dropped_stale,
            "sequence_mismatches": self.publisher.sequence_mismatches,
        }

    def close(self) -> None:
        """Обнулить все ключи и забыть записи."""
        self.registry.clear()
