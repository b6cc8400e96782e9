"""
DHT Engine Module
=================

Коллабораторы, через которые подсистема mutable-записей работает с сетью:
- DHTEngine: контракт (add_torrent, dht_put, dht_get, poll_events)
- MemoryEngine / MemoryDHT: внутрипроцессная сеть для тестов и offline
- LibtorrentEngine: адаптер над libtorrent (опциональная зависимость)
"""

from .base import (
    DHTEngine,
    DHTPutCompleted,
    EngineEvent,
    MutableItemReceived,
    SignedItem,
    Signer,
    TorrentAdded,
)
from .memory import MemoryDHT, MemoryEngine, MemoryTorrentHandle, StoredItem
from .libtorrent_client import LibtorrentEngine

__all__ = [
    # Contract
    "DHTEngine",
    "EngineEvent",
    "MutableItemReceived",
    "DHTPutCompleted",
    "TorrentAdded",
    "SignedItem",
    "Signer",
    # Memory
    "MemoryDHT",
    "MemoryEngine",
    "MemoryTorrentHandle",
    "StoredItem",
    # libtorrent
    "LibtorrentEngine",
]
