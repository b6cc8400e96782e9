"""
Persistence Module - Сохранение отслеживаемых записей
=====================================================

[COMPONENTS]
- RecordStore: SQLite-хранилище (aiosqlite)
- PersistedRecord: запись в сохранённом виде
"""

from .state_store import PersistedRecord, RecordStore

__all__ = [
    "PersistedRecord",
    "RecordStore",
]
