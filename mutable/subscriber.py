"""
Subscription Coordinator
========================

Роль подписчика: запросить запись из DHT, разобрать асинхронный ответ и
решить, появилась ли новая версия.

[PROTOCOL] handle_incoming_record(public_key, salt, sequence, value, ...):
1. Запись не отслеживается -> игнор
2. sequence <= sequence_number -> no-op (устаревшая или повтор)
3. Подпись над signing_payload(value, sequence, salt) должна сойтись
4. Значение должно декодироваться
5. sequence_number = sequence, UpdateAvailable отправляется хосту ровно один раз

[SECURITY] Ошибки сетевых данных (DecodeError, SignatureInvalidError) не
доходят до хоста: они только логируются. Снаружи "плохая подпись"
неотличима от "нет ответа".

[TRUST] authoritative передаётся хосту, но не влияет на приём: границей
доверия является подпись, а не топология сети.
"""

import logging
import time
from typing import Callable, Optional

from engine.base import DHTEngine, MutableItemReceived

from .codec import MAX_VALUE_SIZE, decode, signing_payload
from .errors import DecodeError, InvalidKeyLengthError, SignatureInvalidError
from .events import UpdateAvailable
from .keys import KeyMaterial
from .registry import MutableRecordRegistry, RecordId, Role

logger = logging.getLogger(__name__)


INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class SubscriptionCoordinator:
    """Обработка ответов DHT для подписок."""

    def __init__(
        self,
        registry: MutableRecordRegistry,
        engine: DHTEngine,
        emit: Optional[Callable[[UpdateAvailable], None]] = None,
        max_value_size: int = MAX_VALUE_SIZE,
    ):
        """
        Args:
            registry: Реестр записей
            engine: DHT-движок
            emit: Куда отдавать UpdateAvailable (очередь событий сессии)
            max_value_size: Максимальный размер значения
        """
        self.registry = registry
        self.engine = engine
        self.emit = emit
        self.max_value_size = max_value_size

        # Статистика отброшенных ответов
        self.dropped_invalid_signature = 0
        self.dropped_decode_error = 0
        self.dropped_stale = 0

    def request_latest(self, record_id: RecordId) -> None:
        """Запросить текущую версию записи. Не блокирует."""
        record = self.registry.get(record_id)
        self.engine.dht_get(record.public_key, record.salt)
        logger.debug(f"[SUBSCRIBE] dht_get {record.public_key.hex()[:16]}... (have seq={record.sequence_number})")

    def handle_event(self, event: MutableItemReceived) -> Optional[UpdateAvailable]:
        return self.handle_incoming_record(
            public_key=event.public_key,
            salt=event.salt,
            sequence=event.sequence,
            value=event.value_bytes,
            authoritative=event.authoritative,
            signature=event.signature,
        )

    def handle_incoming_record(
        self,
        public_key: bytes,
        salt: bytes,
        sequence: int,
        value: bytes,
        authoritative: bool = False,
        signature: Optional[bytes] = None,
    ) -> Optional[UpdateAvailable]:
        """
        Обработать полученную из DHT запись.

        Returns:
            UpdateAvailable если принята новая версия, иначе None
        """
        with self.registry.lock:
            record = self.registry.lookup(public_key, salt)
            if record is None:
                logger.debug(f"[SUBSCRIBE] Ignoring untracked key {bytes(public_key).hex()[:16]}...")
                return None

            if not isinstance(sequence, int) or not INT64_MIN <= sequence <= INT64_MAX:
                logger.debug(f"[SUBSCRIBE] Ignoring out-of-range sequence {sequence!r}")
                return None

            if sequence <= record.sequence_number:
                self.dropped_stale += 1
                logger.debug(
                    f"[SUBSCRIBE] Stale item seq={sequence} <= {record.sequence_number} "
                    f"for {record.public_key.hex()[:16]}..."
                )
                return None

            try:
                self._verify(record.public_key, record.salt, sequence, value, signature)
                decoded = decode(value, max_size=self.max_value_size)
            except (InvalidKeyLengthError, SignatureInvalidError) as e:
                self.dropped_invalid_signature += 1
                logger.debug(f"[SUBSCRIBE] Dropped item seq={sequence}: {e.message}")
                return None
            except DecodeError as e:
                self.dropped_decode_error += 1
                logger.debug(f"[SUBSCRIBE] Dropped undecodable item seq={sequence}: {e.message}")
                return None

            if record.role is Role.PUBLISHER:
                # Публикатор единственный источник своего счётчика
                logger.warning(
                    f"[SUBSCRIBE] Published record {record.public_key.hex()[:16]}... "
                    f"seen at seq={sequence} > local {record.sequence_number}: another writer holds this key"
                )
                return None

            old_sequence = record.sequence_number
            record.sequence_number = sequence
            record.last_value = decoded
            record.last_updated = time.time()

            update = UpdateAvailable(
                record_id=record.record_id,
                public_key=record.public_key,
                salt=record.salt,
                old_sequence=old_sequence,
                new_sequence=sequence,
                value=decoded,
                authoritative=bool(authoritative),
            )

        logger.info(
            f"[SUBSCRIBE] Update {record.public_key.hex()[:16]}... "
            f"seq {old_sequence} -> {sequence} (authoritative={bool(authoritative)})"
        )
        if self.emit is not None:
            self.emit(update)
        return update

    def _verify(
        self,
        public_key: bytes,
        salt: bytes,
        sequence: int,
        value: bytes,
        signature: Optional[bytes],
    ) -> None:
        if signature is None:
            if self.engine.validates_signatures:
                return
            raise SignatureInvalidError("Item carries no signature", context="subscribe")

        KeyMaterial.check_lengths(signature, public_key)
        if not value:
            raise SignatureInvalidError("Item carries no value", context="subscribe")
        if not KeyMaterial.verify(signature, signing_payload(value, sequence, salt), public_key):
            raise SignatureInvalidError("Signature verification failed", context="subscribe")
