"""
DHT Engine Contract
===================

Абстракция внешнего BitTorrent-движка, которую потребляет подсистема
mutable-записей:

- add_torrent(descriptor, save_path) -> handle
- dht_put(public_key, salt, signer)
- dht_get(public_key, salt)          (ответ приходит позже событием)
- poll_events() -> [Event]

[ASYNC] dht_put/dht_get не блокируют: результат приходит через
poll_events(), который хост и так периодически вызывает.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, List, NamedTuple, Optional
import time


class SignedItem(NamedTuple):
    """Что движок кладёт в DHT: значение, его sequence и подпись."""

    value: bytes
    sequence: int
    signature: bytes


# signer(current_value, current_sequence) -> SignedItem
#
# Движок вызывает signer, чтобы получить байты для сохранения. current_value
# и current_sequence описывают то, что движок уже видит в DHT (None/0 если
# ничего), и используются только для диагностики.
Signer = Callable[[Optional[bytes], int], SignedItem]


@dataclass
class EngineEvent:
    """Базовое событие движка."""

    timestamp: float = field(default_factory=time.time, init=False, compare=False)

    @property
    def name(self) -> str:
        return self.__class__.__name__


@dataclass
class MutableItemReceived(EngineEvent):
    """
    Ответ на dht_get.

    signature может быть None, если движок сам проверил подпись
    (см. DHTEngine.validates_signatures).
    """

    public_key: bytes = b""
    salt: bytes = b""
    sequence: int = 0
    value_bytes: bytes = b""
    authoritative: bool = False
    signature: Optional[bytes] = None


@dataclass
class DHTPutCompleted(EngineEvent):
    """Движок завершил dht_put (num_success узлов приняли запись)."""

    public_key: bytes = b""
    salt: bytes = b""
    sequence: int = 0
    num_success: int = 0


@dataclass
class TorrentAdded(EngineEvent):
    """Торрент добавлен в движок."""

    descriptor: str = ""
    save_path: str = ""


class DHTEngine(ABC):
    """Коллаборатор, через который идут все сетевые операции."""

    # True, если движок сам проверяет подписи BEP 44 и может отдавать
    # MutableItemReceived без signature.
    validates_signatures: bool = False

    @abstractmethod
    def add_torrent(self, descriptor: str, save_path: str) -> Any:
        """Добавить торрент (magnet URI или info-hash) и вернуть handle."""

    @abstractmethod
    def dht_put(self, public_key: bytes, salt: bytes, signer: Signer) -> None:
        """Опубликовать mutable-запись. Fire-and-forget."""

    @abstractmethod
    def dht_get(self, public_key: bytes, salt: bytes) -> None:
        """Запросить mutable-запись. Ответ придёт как MutableItemReceived."""

    @abstractmethod
    def poll_events(self) -> List[EngineEvent]:
        """Забрать накопившиеся события."""
