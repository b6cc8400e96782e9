"""
Mutable Records Module (BEP 46)
===============================
Публикация и подписка на mutable-записи в DHT:
- KeyMaterial: Ed25519 ключи, подпись и проверка
- codec: каноническое кодирование значения и подписываемых байт
- MutableRecordRegistry: каталог отслеживаемых записей
- PublishCoordinator: публикация новых версий
- SubscriptionCoordinator: приём и проверка версий из DHT
- UpdatePoller: кооперативный опрос подписок
- MutableTorrentSession: фасад для хоста
- RecordStore: сохранение записей между перезапусками
"""

from .errors import (
    DecodeError,
    EmptyPayloadError,
    EncodeError,
    ErrorCategory,
    ErrorCode,
    InvalidKeyLengthError,
    KeyMismatchError,
    MissingPrivateKeyError,
    MutableRecordError,
    NotPublisherError,
    PublishError,
    RecordConflictError,
    RecordNotFoundError,
    SignatureInvalidError,
)
from .codec import (
    MAX_VALUE_SIZE,
    MutableRecordValue,
    bdecode,
    bencode,
    decode,
    encode,
    signing_payload,
)
from .keys import KeyMaterial
from .registry import MutableRecordRegistry, RecordId, Role, TrackedRecord
from .events import EventBus, UpdateAvailable, event_bus
from .publisher import PublishCoordinator, RecordSigner
from .subscriber import SubscriptionCoordinator
from .poller import PollerState, UpdatePoller
from .persistence import PersistedRecord, RecordStore
from .session import MutableTorrentSession

__all__ = [
    # Errors
    "MutableRecordError",
    "ErrorCategory",
    "ErrorCode",
    "InvalidKeyLengthError",
    "NotPublisherError",
    "MissingPrivateKeyError",
    "EmptyPayloadError",
    "EncodeError",
    "DecodeError",
    "SignatureInvalidError",
    "KeyMismatchError",
    "RecordNotFoundError",
    "RecordConflictError",
    "PublishError",
    # Codec
    "MAX_VALUE_SIZE",
    "MutableRecordValue",
    "bencode",
    "bdecode",
    "encode",
    "decode",
    "signing_payload",
    # Keys
    "KeyMaterial",
    # Registry
    "MutableRecordRegistry",
    "RecordId",
    "Role",
    "TrackedRecord",
    # Events
    "EventBus",
    "UpdateAvailable",
    "event_bus",
    # Coordinators
    "PublishCoordinator",
    "RecordSigner",
    "SubscriptionCoordinator",
    "UpdatePoller",
    "PollerState",
    # Persistence
    "RecordStore",
    "PersistedRecord",
    # Session
    "MutableTorrentSession",
]
