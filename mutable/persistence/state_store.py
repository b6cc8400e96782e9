"""
Record Store - Сохранение отслеживаемых записей между перезапусками
===================================================================

[PERSISTENCE] Для каждой записи хранится ровно то, что нужно, чтобы
продолжить работу в любой роли без обращения к сети:
- public_key, salt, role
- seed (или private_key, если seed отсутствует)
- последний sequence_number
- save_path, auto_update

[PERSISTENCE] SQLite таблица tracked_records:
- public_key: BLOB (32 байта)
- salt: BLOB
- role: TEXT
- seed: BLOB NULL
- private_key: BLOB NULL
- sequence_number: INTEGER
- save_path: TEXT
- auto_update: INTEGER
- updated_at: REAL
PRIMARY KEY (public_key, salt)

[SECURITY] Секреты лежат в базе как есть: защищайте файл правами ОС.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from ..keys import KeyMaterial
from ..registry import MutableRecordRegistry, Role, TrackedRecord

logger = logging.getLogger(__name__)


@dataclass
class PersistedRecord:
    """Запись в том виде, в каком она лежит в базе."""

    public_key: bytes
    salt: bytes
    role: Role
    sequence_number: int = 0
    save_path: str = ""
    auto_update: bool = False
    seed: Optional[bytes] = None
    private_key: Optional[bytes] = None
    updated_at: float = 0.0

    @classmethod
    def from_tracked(cls, record: TrackedRecord) -> "PersistedRecord":
        keys = record.key_material
        seed = keys.seed if keys is not None else None
        return cls(
            public_key=record.public_key,
            salt=record.salt,
            role=record.role,
            sequence_number=record.sequence_number,
            save_path=record.save_path,
            auto_update=record.auto_update_enabled,
            seed=seed,
            private_key=keys.private_key if keys is not None and seed is None else None,
            updated_at=time.time(),
        )

    def to_key_material(self) -> Optional[KeyMaterial]:
        """Восстановить ключ публикатора (None для подписок)."""
        if self.seed is not None:
            return KeyMaterial.from_seed(self.seed)
        if self.private_key is not None:
            return KeyMaterial.from_keys(self.public_key, self.private_key)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "public_key": self.public_key.hex(),
            "salt": self.salt.hex(),
            "role": self.role.value,
            "sequence_number": self.sequence_number,
            "save_path": self.save_path,
            "auto_update": self.auto_update,
            "has_secret": self.seed is not None or self.private_key is not None,
            "updated_at": self.updated_at,
        }


class RecordStore:
    """
    Хранилище отслеживаемых записей в SQLite.

    [USAGE]
    ```python
    store = RecordStore("mutable_state.db")
    await store.initialize()
    await store.save_registry(registry)
    records = await store.load_records()
    await store.close()
    ```
    """

    def __init__(self, db_path: str = "mutable_state.db"):
        """
        Args:
            db_path: Путь к файлу базы данных (или ":memory:")
        """
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Открыть базу и создать таблицы."""
        if self._initialized:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS tracked_records (
                public_key BLOB NOT NULL,
                salt BLOB NOT NULL,
                role TEXT NOT NULL,
                seed BLOB,
                private_key BLOB,
                sequence_number INTEGER NOT NULL DEFAULT 0,
                save_path TEXT NOT NULL DEFAULT '',
                auto_update INTEGER NOT NULL DEFAULT 0,
                updated_at REAL,
                PRIMARY KEY (public_key, salt)
            )
        """)
        await self._db.commit()
        self._initialized = True

        logger.info(f"[STATE] Initialized: {self.db_path}")

    async def close(self) -> None:
        """Закрыть соединение с базой данных."""
        if self._db:
            await self._db.close()
            self._db = None
            self._initialized = False

    async def save_record(self, record: TrackedRecord) -> None:
        """
        Сохранить одну запись.

        [INVARIANT] sequence_number в базе никогда не уменьшается.
        """
        item = PersistedRecord.from_tracked(record)
        async with self._lock:
            await self._upsert(item)
            await self._db.commit()

    async def save_registry(self, registry: MutableRecordRegistry) -> int:
        """
        Сохранить все записи реестра.

        Returns:
            Количество сохранённых записей
        """
        items = [PersistedRecord.from_tracked(r) for r in registry.records()]
        async with self._lock:
            for item in items:
                await self._upsert(item)
            await self._db.commit()
        logger.info(f"[STATE] Saved {len(items)} tracked records")
        return len(items)

    async def _upsert(self, item: PersistedRecord) -> None:
        await self._db.execute(
            """
            INSERT INTO tracked_records
            (public_key, salt, role, seed, private_key, sequence_number, save_path, auto_update, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(public_key, salt) DO UPDATE SET
                role = excluded.role,
                seed = excluded.seed,
                private_key = excluded.private_key,
                sequence_number = MAX(tracked_records.sequence_number, excluded.sequence_number),
                save_path = excluded.save_path,
                auto_update = excluded.auto_update,
                updated_at = excluded.updated_at
            """,
            (
                item.public_key,
                item.salt,
                item.role.value,
                item.seed,
                item.private_key,
                item.sequence_number,
                item.save_path,
                int(item.auto_update),
                item.updated_at,
            ),
        )

    async def load_records(self) -> List[PersistedRecord]:
        """Загрузить все сохранённые записи."""
        async with self._lock:
            cursor = await self._db.execute(
                "SELECT * FROM tracked_records ORDER BY updated_at"
            )
            rows = await cursor.fetchall()

        return [
            PersistedRecord(
                public_key=bytes(row["public_key"]),
                salt=bytes(row["salt"]),
                role=Role(row["role"]),
                sequence_number=row["sequence_number"],
                save_path=row["save_path"],
                auto_update=bool(row["auto_update"]),
                seed=bytes(row["seed"]) if row["seed"] is not None else None,
                private_key=bytes(row["private_key"]) if row["private_key"] is not None else None,
                updated_at=row["updated_at"] or 0.0,
            )
            for row in rows
        ]

    async def delete_record(self, public_key: bytes, salt: bytes = b"") -> bool:
        """
        Удалить запись.

        Returns:
            True если удалено
        """
        async with self._lock:
            cursor = await self._db.execute(
                "DELETE FROM tracked_records WHERE public_key = ? AND salt = ?",
                (bytes(public_key), bytes(salt)),
            )
            await self._db.commit()
            return cursor.rowcount > 0

    async def count(self) -> int:
        async with self._lock:
            cursor = await self._db.execute("SELECT COUNT(*) AS count FROM tracked_records")
            row = await cursor.fetchone()
            return row["count"]
