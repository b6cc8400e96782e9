"""
Mutable Record Errors
=====================

Единая иерархия ошибок подсистемы mutable-записей.

[ERRORS] Каждая ошибка несёт:
- code: стабильный числовой код
- category: категория (валидация, разбор, криптография, реестр, DHT)
- message / context: человекочитаемое описание и место возникновения
- recoverable: можно ли повторить операцию после исправления входных данных

[PROPAGATION]
- Ошибки построения ключей и публикации поднимаются вызывающему коду.
- DecodeError и SignatureInvalidError от сетевых данных гасятся внутри
  SubscriptionCoordinator и только логируются.
"""

from enum import IntEnum
from typing import Any, Dict


class ErrorCategory(IntEnum):
    """Категории ошибок."""

    NONE = 0
    PARSE_ERROR = 5
    VALIDATION_ERROR = 6
    DHT_ERROR = 8
    CRYPTO_ERROR = 11
    REGISTRY_ERROR = 12


class ErrorCode(IntEnum):
    """
    Коды ошибок.

    [ERRORS] Значения стабильны: новые коды добавляются, старые не удаляются.
    """

    OK = 0

    # Parse errors (500-599)
    ENCODE_ERROR = 510
    DECODE_ERROR = 511

    # Validation errors (600-699)
    INVALID_KEY_LENGTH = 610
    EMPTY_PAYLOAD = 611

    # DHT errors (800-899)
    PUBLISH_FAILED = 810

    # Crypto errors (1100-1199)
    NOT_PUBLISHER = 1100
    MISSING_PRIVATE_KEY = 1101
    SIGNATURE_INVALID = 1102
    KEY_MISMATCH = 1103

    # Registry errors (1200-1299)
    RECORD_NOT_FOUND = 1200
    RECORD_CONFLICT = 1201


class MutableRecordError(Exception):
    """Базовая ошибка подсистемы mutable-записей."""

    code: ErrorCode = ErrorCode.OK
    category: ErrorCategory = ErrorCategory.NONE
    recoverable: bool = False

    def __init__(self, message: str = "", context: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Сериализация для передачи хосту."""
        return {
            "code": int(self.code),
            "category": self.category.name,
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "recoverable": self.recoverable,
        }


class InvalidKeyLengthError(MutableRecordError):
    """Ключ, seed или подпись неверной длины."""

    code = ErrorCode.INVALID_KEY_LENGTH
    category = ErrorCategory.VALIDATION_ERROR
    recoverable = True


class EmptyPayloadError(MutableRecordError):
    """Подпись или проверка над пустыми данными."""

    code = ErrorCode.EMPTY_PAYLOAD
    category = ErrorCategory.VALIDATION_ERROR
    recoverable = True


class EncodeError(MutableRecordError):
    """Значение не может быть закодировано (неподдерживаемый тип, размер)."""

    code = ErrorCode.ENCODE_ERROR
    category = ErrorCategory.PARSE_ERROR
    recoverable = True


class DecodeError(MutableRecordError):
    """Некорректные байты, полученные из DHT."""

    code = ErrorCode.DECODE_ERROR
    category = ErrorCategory.PARSE_ERROR


class NotPublisherError(MutableRecordError):
    """Публикация через запись подписчика или ключ без приватной части."""

    code = ErrorCode.NOT_PUBLISHER
    category = ErrorCategory.CRYPTO_ERROR


class MissingPrivateKeyError(NotPublisherError):
    """У ключевой пары нет приватного ключа."""

    code = ErrorCode.MISSING_PRIVATE_KEY


class SignatureInvalidError(MutableRecordError):
    """Подпись не прошла проверку."""

    code = ErrorCode.SIGNATURE_INVALID
    category = ErrorCategory.CRYPTO_ERROR


class KeyMismatchError(MutableRecordError):
    """Публичный ключ не соответствует приватному или записи реестра."""

    code = ErrorCode.KEY_MISMATCH
    category = ErrorCategory.CRYPTO_ERROR


class RecordNotFoundError(MutableRecordError):
    """Запись с таким record_id не отслеживается."""

    code = ErrorCode.RECORD_NOT_FOUND
    category = ErrorCategory.REGISTRY_ERROR
    recoverable = True


class RecordConflictError(MutableRecordError):
    """(public_key, salt) уже отслеживается в другой роли."""

    code = ErrorCode.RECORD_CONFLICT
    category = ErrorCategory.REGISTRY_ERROR


class PublishError(MutableRecordError):
    """Движок отклонил dht_put."""

    code = ErrorCode.PUBLISH_FAILED
    category = ErrorCategory.DHT_ERROR
    recoverable = True
