"""
Mutable Record Codec
====================

Каноническое кодирование значения mutable-записи (BEP 46).

Формат значения (bencode, ключи отсортированы побайтно):

| Key       | Type    | Description                                 |
|-----------|---------|---------------------------------------------|
| content   | bytes   | Указатель на контент (info-hash, UTF-8)     |
| extra     | dict    | str -> str (UTF-8) или int, если не пусто   |
| version   | int     | Версия формата записи                       |

Подписываемые байты (протокольный контракт, порядок фиксирован):

    encoded_value ‖ int64_be(sequence) ‖ salt

[SECURITY] decode() принимает данные из сети: любые некорректные байты
приводят только к DecodeError, никаких других исключений.
"""

import struct
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple, Union

from .errors import DecodeError, EmptyPayloadError, EncodeError

logger = logging.getLogger(__name__)


MAX_VALUE_SIZE = 1000              # BEP 44: максимальный размер v
SEQUENCE_FORMAT = '>q'             # signed 64-bit, Big-Endian
MAX_NESTING = 32

ExtraValue = Union[str, int]


@dataclass(frozen=True)
class MutableRecordValue:
    """
    Логическое значение mutable-записи.

    Одно и то же значение всегда кодируется в одни и те же байты.
    """

    content: str
    version: int = 1
    # hash только по content и version
    extra: Dict[str, ExtraValue] = field(default_factory=dict, hash=False)

    @property
    def magnet_uri(self) -> str:
        """Magnet-ссылка для content, если это info-hash."""
        return f"magnet:?xt=urn:btih:{self.content}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "version": self.version,
            "extra": dict(self.extra),
        }


# ============================================================================
# Bencode
# ============================================================================

def bencode(obj: Any) -> bytes:
    """
    Закодировать объект в каноническую bencode-форму.

    Поддерживаются int, bytes, str (UTF-8), list/tuple, dict
    (ключи str или bytes, сортируются по байтам).

    Raises:
        EncodeError: неподдерживаемый тип
    """
    out: List[bytes] = []
    _bencode_into(obj, out, 0)
    return b"".join(out)


def _bencode_into(obj: Any, out: List[bytes], depth: int) -> None:
    if depth > MAX_NESTING:
        raise EncodeError("Nesting too deep", context="bencode")
    if isinstance(obj, bool):
        raise EncodeError("Booleans are not bencodable", context="bencode")
    if isinstance(obj, int):
        out.append(b"i%de" % obj)
    elif isinstance(obj, (bytes, bytearray)):
        out.append(b"%d:" % len(obj))
        out.append(bytes(obj))
    elif isinstance(obj, str):
        raw = obj.encode("utf-8")
        out.append(b"%d:" % len(raw))
        out.append(raw)
    elif isinstance(obj, (list, tuple)):
        out.append(b"l")
        for item in obj:
            _bencode_into(item, out, depth + 1)
        out.append(b"e")
    elif isinstance(obj, dict):
        items = []
        for key, value in obj.items():
            if isinstance(key, str):
                key = key.encode("utf-8")
            elif not isinstance(key, (bytes, bytearray)):
                raise EncodeError(f"Dict key must be str or bytes, got {type(key).__name__}", context="bencode")
            items.append((bytes(key), value))
        items.sort(key=lambda kv: kv[0])
        out.append(b"d")
        for key, value in items:
            _bencode_into(key, out, depth + 1)
            _bencode_into(value, out, depth + 1)
        out.append(b"e")
    else:
        raise EncodeError(f"Unsupported type: {type(obj).__name__}", context="bencode")


def bdecode(data: bytes) -> Any:
    """
    Разобрать bencode. Строки возвращаются как bytes, ключи словарей тоже.

    [SECURITY] Строгий разбор: запрещены хвостовые байты, ведущие нули
    в числах, "-0" и неотсортированные/повторяющиеся ключи.

    Raises:
        DecodeError: любые некорректные данные
    """
    if not isinstance(data, (bytes, bytearray)):
        raise DecodeError(f"Expected bytes, got {type(data).__name__}", context="bdecode")
    data = bytes(data)
    try:
        value, pos = _bdecode_at(data, 0, 0)
    except (IndexError, ValueError) as e:
        raise DecodeError(f"Malformed bencode: {e}", context="bdecode") from e
    if pos != len(data):
        raise DecodeError(f"Trailing data at offset {pos}", context="bdecode")
    return value


def _bdecode_at(data: bytes, pos: int, depth: int) -> Tuple[Any, int]:
    if depth > MAX_NESTING:
        raise DecodeError("Nesting too deep", context="bdecode")
    if pos >= len(data):
        raise DecodeError("Unexpected end of data", context="bdecode")

    lead = data[pos:pos + 1]

    if lead == b"i":
        end = data.index(b"e", pos + 1)
        raw = data[pos + 1:end]
        digits = raw[1:] if raw.startswith(b"-") else raw
        if not digits.isdigit() or raw == b"-0" or (digits.startswith(b"0") and digits != b"0"):
            raise DecodeError(f"Invalid integer: {raw!r}", context="bdecode")
        return int(raw), end + 1

    if lead == b"l":
        pos += 1
        items = []
        while data[pos:pos + 1] != b"e":
            item, pos = _bdecode_at(data, pos, depth + 1)
            items.append(item)
        return items, pos + 1

    if lead == b"d":
        pos += 1
        result: Dict[bytes, Any] = {}
        previous = None
        while data[pos:pos + 1] != b"e":
            key, pos = _bdecode_at(data, pos, depth + 1)
            if not isinstance(key, bytes):
                raise DecodeError("Dict key must be a byte string", context="bdecode")
            if previous is not None and key <= previous:
                raise DecodeError("Dict keys are not in canonical order", context="bdecode")
            value, pos = _bdecode_at(data, pos, depth + 1)
            result[key] = value
            previous = key
        return result, pos + 1

    if lead.isdigit():
        colon = data.index(b":", pos)
        raw_len = data[pos:colon]
        if not raw_len.isdigit() or (raw_len.startswith(b"0") and raw_len != b"0"):
            raise DecodeError(f"Invalid string length: {raw_len!r}", context="bdecode")
        length = int(raw_len)
        start = colon + 1
        end = start + length
        if end > len(data):
            raise DecodeError("String exceeds data length", context="bdecode")
        return data[start:end], end

    raise DecodeError(f"Unexpected byte {lead!r} at offset {pos}", context="bdecode")


# ============================================================================
# Record Codec
# ============================================================================

def encode(value: MutableRecordValue, max_size: int = MAX_VALUE_SIZE) -> bytes:
    """
    Каноническая сериализация значения записи.

    Raises:
        EmptyPayloadError: пустой content
        EncodeError: неподдерживаемые поля или превышение размера
    """
    if not value.content:
        raise EmptyPayloadError("Record content must not be empty", context="codec.encode")
    if isinstance(value.version, bool) or not isinstance(value.version, int):
        raise EncodeError("Record version must be an integer", context="codec.encode")

    document: Dict[str, Any] = {
        "content": value.content,
        "version": value.version,
    }
    if value.extra:
        for key, item in value.extra.items():
            if isinstance(item, bool) or not isinstance(item, (str, int)):
                raise EncodeError(
                    f"Extra field {key!r} has unsupported type {type(item).__name__}",
                    context="codec.encode",
                )
        document["extra"] = dict(value.extra)

    encoded = bencode(document)
    if len(encoded) > max_size:
        raise EncodeError(
            f"Encoded value too large: {len(encoded)} > {max_size}",
            context="codec.encode",
        )
    return encoded


def decode(data: bytes, max_size: int = MAX_VALUE_SIZE) -> MutableRecordValue:
    """
    Обратное преобразование для encode().

    Raises:
        DecodeError: любые некорректные данные
    """
    if not isinstance(data, (bytes, bytearray)):
        raise DecodeError(f"Expected bytes, got {type(data).__name__}", context="codec.decode")
    if not data:
        raise DecodeError("Empty value", context="codec.decode")
    if len(data) > max_size:
        raise DecodeError(f"Value too large: {len(data)} > {max_size}", context="codec.decode")

    document = bdecode(data)
    if not isinstance(document, dict):
        raise DecodeError("Record value must be a dictionary", context="codec.decode")

    unknown = set(document) - {b"content", b"version", b"extra"}
    if unknown:
        raise DecodeError(f"Unknown fields: {sorted(unknown)!r}", context="codec.decode")

    content = document.get(b"content")
    version = document.get(b"version")
    if not isinstance(content, bytes) or not content:
        raise DecodeError("Field 'content' missing or not a string", context="codec.decode")
    if not isinstance(version, int):
        raise DecodeError("Field 'version' missing or not an integer", context="codec.decode")

    try:
        content_text = content.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError("Field 'content' is not UTF-8", context="codec.decode") from e

    extra: Dict[str, ExtraValue] = {}
    if b"extra" in document:
        raw_extra = document[b"extra"]
        if not isinstance(raw_extra, dict) or not raw_extra:
            raise DecodeError("Field 'extra' must be a non-empty dictionary", context="codec.decode")
        for key, item in raw_extra.items():
            if not isinstance(item, (bytes, int)):
                raise DecodeError(f"Extra field {key!r} has unsupported type", context="codec.decode")
            if isinstance(item, bytes):
                try:
                    item = item.decode("utf-8")
                except UnicodeDecodeError as e:
                    raise DecodeError(f"Extra field {key!r} is not UTF-8", context="codec.decode") from e
            try:
                name = key.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DecodeError("Extra field name is not UTF-8", context="codec.decode") from e
            extra[name] = item

    return MutableRecordValue(content=content_text, version=version, extra=extra)


def signing_payload(encoded_value: bytes, sequence: int, salt: bytes = b"") -> bytes:
    """
    Байты, которые подписываются и проверяются.

    [WIRE] encoded_value ‖ int64_be(sequence) ‖ salt. Порядок является
    частью протокола: любое отклонение ломает совместимость.
    """
    return bytes(encoded_value) + struct.pack(SEQUENCE_FORMAT, sequence) + bytes(salt)
