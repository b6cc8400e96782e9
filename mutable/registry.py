"""
Mutable Record Registry
=======================

Каталог отслеживаемых mutable-записей в памяти процесса.

[REGISTRY] Запись адресуется двумя способами:
- непрозрачным record_id (его получает хост)
- парой (public_key, salt) (так приходят ответы из DHT)

[INVARIANTS]
- sequence_number записи никогда не уменьшается
- KeyMaterial принадлежит только записи реестра и обнуляется при remove()
- Все изменения идут под одной блокировкой, общей с сессией
- Реестр не делает I/O
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .codec import MutableRecordValue
from .errors import (
    InvalidKeyLengthError,
    NotPublisherError,
    RecordConflictError,
    RecordNotFoundError,
)
from .keys import PUBLIC_KEY_SIZE, KeyMaterial

logger = logging.getLogger(__name__)


RecordId = str


class Role(Enum):
    """Роль процесса по отношению к записи."""

    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"


@dataclass
class TrackedRecord:
    """Запись реестра."""

    record_id: RecordId
    role: Role
    public_key: bytes
    salt: bytes = b""
    save_path: str = ""
    key_material: Optional[KeyMaterial] = None
    sequence_number: int = 0
    auto_update_enabled: bool = False

    last_value: Optional[MutableRecordValue] = None
    last_updated: float = 0.0
    torrent_handle: Any = None
    created_at: float = field(default_factory=time.time)

    @property
    def key(self) -> Tuple[bytes, bytes]:
        return (self.public_key, self.salt)

    @property
    def is_publisher(self) -> bool:
        return self.role is Role.PUBLISHER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "role": self.role.value,
            "public_key": self.public_key.hex(),
            "salt": self.salt.hex(),
            "save_path": self.save_path,
            "sequence_number": self.sequence_number,
            "auto_update_enabled": self.auto_update_enabled,
            "can_sign": bool(self.key_material and self.key_material.can_sign),
            "last_value": self.last_value.to_dict() if self.last_value else None,
            "last_updated": self.last_updated,
        }


class MutableRecordRegistry:
    """
    Реестр записей: единственный владелец TrackedRecord и KeyMaterial.

    [USAGE]
    ```python
    registry = MutableRecordRegistry(lock=session_lock)
    rid = registry.register_subscriber(public_key, b"", "downloads/")
    registry.set_auto_update(rid, True)
    ```
    """

    def __init__(self, lock: Optional[threading.RLock] = None):
        """
        Args:
            lock: Общая блокировка сессии (создаётся своя, если не передана)
        """
        self.lock = lock if lock is not None else threading.RLock()
        self._records: Dict[RecordId, TrackedRecord] = {}
        self._index: Dict[Tuple[bytes, bytes], RecordId] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_publisher(
        self,
        key_material: KeyMaterial,
        salt: bytes = b"",
        save_path: str = "",
        sequence_number: int = 0,
    ) -> RecordId:
        """
        Зарегистрировать запись, которую публикует этот процесс.

        Args:
            key_material: Ключ, умеющий подписывать
            salt: Соль (несколько записей под одним ключом)
            save_path: Куда сохранять связанный контент
            sequence_number: Последний опубликованный sequence (при восстановлении)

        [SECURITY] Если запись уже есть, новый экземпляр того же ключа
        обнуляется: в памяти остаётся одна копия секрета.

        Raises:
            NotPublisherError: ключ не умеет подписывать
            RecordConflictError: запись уже отслеживается как подписка
        """
        if key_material is None or not key_material.can_sign:
            raise NotPublisherError(
                "Publisher key material must hold a private key",
                context="register_publisher",
            )
        return self._register(
            Role.PUBLISHER,
            key_material.public_key,
            salt,
            save_path,
            key_material=key_material,
            sequence_number=sequence_number,
        )

    def register_subscriber(
        self,
        public_key: bytes,
        salt: bytes = b"",
        save_path: str = "",
        sequence_number: int = 0,
        auto_update: bool = False,
    ) -> RecordId:
        """
        Зарегистрировать подписку на чужую запись.

        Raises:
            InvalidKeyLengthError: public_key не 32 байта
            RecordConflictError: запись уже отслеживается как публикуемая
        """
        if not isinstance(public_key, (bytes, bytearray)) or len(public_key) != PUBLIC_KEY_SIZE:
            raise InvalidKeyLengthError(
                f"Public key must be exactly {PUBLIC_KEY_SIZE} bytes",
                context="register_subscriber",
            )
        return self._register(
            Role.SUBSCRIBER,
            bytes(public_key),
            salt,
            save_path,
            sequence_number=sequence_number,
            auto_update=auto_update,
        )

    def _register(
        self,
        role: Role,
        public_key: bytes,
        salt: bytes,
        save_path: str,
        key_material: Optional[KeyMaterial] = None,
        sequence_number: int = 0,
        auto_update: bool = False,
    ) -> RecordId:
        salt = bytes(salt or b"")
        with self.lock:
            existing_id = self._index.get((public_key, salt))
            if existing_id is not None:
                existing = self._records[existing_id]
                if existing.role is not role:
                    raise RecordConflictError(
                        f"{public_key.hex()[:16]}... already tracked as {existing.role.value}",
                        context="registry",
                    )
                # Повторная регистрация: sequence только растёт
                existing.sequence_number = max(existing.sequence_number, sequence_number)
                if key_material is not None and key_material is not existing.key_material:
                    if existing.key_material is None or not existing.key_material.can_sign:
                        existing.key_material = key_material
                    else:
                        # второй копии секрета в памяти быть не должно
                        key_material.wipe()
                return existing_id

            record_id = uuid.uuid4().hex
            record = TrackedRecord(
                record_id=record_id,
                role=role,
                public_key=public_key,
                salt=salt,
                save_path=save_path,
                key_material=key_material,
                sequence_number=max(0, int(sequence_number)),
                auto_update_enabled=auto_update if role is Role.SUBSCRIBER else False,
            )
            self._records[record_id] = record
            self._index[record.key] = record_id

        logger.info(
            f"[REGISTRY] Tracking {role.value} {public_key.hex()[:16]}... "
            f"salt={salt.hex() or '-'} seq={record.sequence_number}"
        )
        return record_id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def lookup(self, public_key: bytes, salt: bytes = b"") -> Optional[TrackedRecord]:
        with self.lock:
            record_id = self._index.get((bytes(public_key), bytes(salt or b"")))
            return self._records.get(record_id) if record_id else None

    def get(self, record_id: RecordId) -> TrackedRecord:
        """
        Raises:
            RecordNotFoundError: record_id неизвестен
        """
        with self.lock:
            record = self._records.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Unknown record id: {record_id}", context="registry")
        return record

    def records(self) -> List[TrackedRecord]:
        with self.lock:
            return list(self._records.values())

    def subscribers(self, auto_update_only: bool = False) -> List[TrackedRecord]:
        with self.lock:
            return [
                r for r in self._records.values()
                if r.role is Role.SUBSCRIBER and (r.auto_update_enabled or not auto_update_only)
            ]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_auto_update(self, record_id: RecordId, enabled: bool) -> None:
        with self.lock:
            record = self.get(record_id)
            record.auto_update_enabled = bool(enabled)
        logger.debug(f"[REGISTRY] auto_update={bool(enabled)} for {record_id}")

    def remove(self, record_id: RecordId) -> bool:
        """
        Перестать отслеживать запись и обнулить её ключ.

        Returns:
            True если запись была удалена
        """
        with self.lock:
            record = self._records.pop(record_id, None)
            if record is None:
                return False
            self._index.pop(record.key, None)
            if record.key_material is not None:
                record.key_material.wipe()
                record.key_material = None
        logger.info(f"[REGISTRY] Removed {record.role.value} {record.public_key.hex()[:16]}...")
        return True

    def clear(self) -> None:
        for record_id in [r.record_id for r in self.records()]:
            self.remove(record_id)

    def __len__(self) -> int:
        with self.lock:
            return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        with self.lock:
            return record_id in self._records

    def __iter__(self) -> Iterator[TrackedRecord]:
        return iter(self.records())
