"""
Publish Coordinator
===================

Роль публикатора: собрать новую подписанную версию записи, увеличить
sequence и отдать её в dht_put.

[PROTOCOL] publish(record_id, value):
1. Найти запись; подписчик или запись без ключа -> NotPublisherError
2. next_seq = sequence_number + 1
3. encode(value), signing_payload(encoded, next_seq, salt), подпись
4. engine.dht_put(public_key, salt, signer)
5. После успешной отправки sequence_number = next_seq

[DESIGN] sequence увеличивается в момент отправки, а не по подтверждению
из DHT: публикатор единственный источник своего счётчика и не должен
ходить в сеть, чтобы узнать следующее значение.

[WIRE] Движки, которые сами назначают sequence (libtorrent берёт значение
из DHT плюс 1), сообщают реальный номер в DHTPutCompleted.
handle_put_completed() сверяет его с отправленными номерами: больший номер
принимается, неизвестный меньший логируется и считается в sequence_mismatches.
"""

import logging
from collections import deque
from typing import Deque, Dict, Optional, Tuple

from engine.base import DHTEngine, DHTPutCompleted, SignedItem

from .codec import MAX_VALUE_SIZE, MutableRecordValue, encode, signing_payload
from .errors import KeyMismatchError, MutableRecordError, NotPublisherError, PublishError
from .keys import KeyMaterial
from .registry import MutableRecordRegistry, RecordId, Role

logger = logging.getLogger(__name__)


MAX_IN_FLIGHT = 64          # неподтверждённых dht_put на запись


class RecordSigner:
    """
    Signer для dht_put: отдаёт заранее подписанную версию записи.

    Движки, которые подписывают сами (libtorrent), получают приватный
    ключ через secret_key() только на время вызова dht_put.
    """

    def __init__(self, item: SignedItem, key_material: KeyMaterial):
        self.item = item
        self._key_material = key_material

    def __call__(self, current_value: Optional[bytes], current_sequence: int) -> SignedItem:
        if current_sequence >= self.item.sequence:
            logger.warning(
                f"[PUBLISH] DHT already holds seq={current_sequence}, "
                f"publishing seq={self.item.sequence} will be rejected by storing nodes"
            )
        return self.item

    def secret_key(self) -> bytes:
        secret = self._key_material.private_key
        if secret is None:
            raise NotPublisherError("Key material was wiped", context="RecordSigner")
        return secret


class PublishCoordinator:
    """Публикация новых версий mutable-записей."""

    def __init__(
        self,
        registry: MutableRecordRegistry,
        engine: DHTEngine,
        max_value_size: int = MAX_VALUE_SIZE,
    ):
        self.registry = registry
        self.engine = engine
        self.max_value_size = max_value_size
        self.sequence_mismatches = 0
        self._in_flight: Dict[Tuple[bytes, bytes], Deque[int]] = {}

    def publish(self, record_id: RecordId, new_value: MutableRecordValue) -> int:
        """
        Опубликовать новую версию записи.

        Returns:
            Новый sequence_number

        Raises:
            RecordNotFoundError: record_id неизвестен
            NotPublisherError: запись подписчика или нет приватного ключа
            KeyMismatchError: ключ не соответствует записи
            EmptyPayloadError: пустой content
            EncodeError: значение не кодируется или слишком большое
            PublishError: движок отклонил dht_put
        """
        with self.registry.lock:
            record = self.registry.get(record_id)

            if record.role is not Role.PUBLISHER:
                raise NotPublisherError(
                    f"Record {record_id} is tracked as {record.role.value}",
                    context="publish",
                )
            keys = record.key_material
            if keys is None or not keys.can_sign:
                raise NotPublisherError(
                    f"Record {record_id} has no signing key",
                    context="publish",
                )
            if keys.public_key != record.public_key:
                raise KeyMismatchError(
                    f"Key material does not match record {record_id}",
                    context="publish",
                )

            next_seq = record.sequence_number + 1
            encoded = encode(new_value, max_size=self.max_value_size)
            signature = keys.sign(signing_payload(encoded, next_seq, record.salt))
            signer = RecordSigner(SignedItem(encoded, next_seq, signature), keys)

            try:
                self.engine.dht_put(record.public_key, record.salt, signer)
            except MutableRecordError:
                raise
            except Exception as e:
                logger.error(f"[PUBLISH] dht_put failed for {record.public_key.hex()[:16]}...: {e}")
                raise PublishError(str(e), context="publish") from e

            record.sequence_number = next_seq
            record.last_value = new_value
            self._in_flight.setdefault(record.key, deque(maxlen=MAX_IN_FLIGHT)).append(next_seq)

        logger.info(
            f"[PUBLISH] {record.public_key.hex()[:16]}... seq={next_seq} "
            f"content={new_value.content[:40]}"
        )
        return next_seq

    def handle_put_completed(self, event: DHTPutCompleted) -> Optional[int]:
        """
        Сверить sequence, который движок реально записал в DHT, с локальным.

        Returns:
            sequence_number записи после сверки или None для чужих записей
        """
        with self.registry.lock:
            record = self.registry.lookup(event.public_key, event.salt)
            if record is None or record.role is not Role.PUBLISHER:
                return None

            local = record.sequence_number
            if event.num_success == 0:
                logger.warning(
                    f"[PUBLISH] Put seq={event.sequence} for {record.public_key.hex()[:16]}... "
                    f"was not stored on any node"
                )
            in_flight = self._in_flight.get(record.key)
            if in_flight and event.sequence in in_flight:
                in_flight.remove(event.sequence)
                return local
            if in_flight:
                # подтверждение самой старой отправки с другим seq
                in_flight.popleft()
            if event.sequence == local:
                return local

            self.sequence_mismatches += 1
            if event.sequence > local:
                # sequence не уменьшается: догоняем значение в DHT
                record.sequence_number = event.sequence
                logger.warning(
                    f"[PUBLISH] Wire sequence {event.sequence} is ahead of local {local} "
                    f"for {record.public_key.hex()[:16]}..., adopted"
                )
            else:
                logger.warning(
                    f"[PUBLISH] Wire sequence {event.sequence} differs from local {local} "
                    f"for {record.public_key.hex()[:16]}...: subscribers at seq >= "
                    f"{event.sequence} will ignore this version"
                )
            return record.sequence_number
