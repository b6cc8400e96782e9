"""
Mutable Torrent Configuration
=============================
Централизованная конфигурация для подсистемы mutable-записей (BEP 46).
"""

from dataclasses import dataclass, field

import os


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


# Environment overrides (.env)
POLL_INTERVAL: float = _env_float("MUTABLE_POLL_INTERVAL", 300.0)
STATE_DB_PATH: str = os.getenv("MUTABLE_STATE_DB", "mutable_state.db")
LISTEN_PORT: int = _env_int("TORRENT_LISTEN_PORT", 6881)
AUTO_DOWNLOAD: bool = os.getenv("TORRENT_AUTO_DOWNLOAD", "False").lower() == "true"
LOG_LEVEL: str = os.getenv("MUTABLE_LOG_LEVEL", "INFO").upper()


@dataclass
class DHTConfig:
    """Настройки работы с DHT."""

    # Интервал автоматического опроса подписок (секунды)
    poll_interval: float = POLL_INTERVAL

    # Максимальный размер закодированного значения (BEP 44: 1000 байт)
    max_value_size: int = 1000


@dataclass
class TorrentConfig:
    """Настройки торрент-движка."""

    listen_port: int = LISTEN_PORT

    # Директория по умолчанию для загрузок
    save_path: str = "storage/torrents"

    # Добавлять торрент сразу при получении новой версии записи
    auto_download: bool = AUTO_DOWNLOAD


@dataclass
class PersistenceConfig:
    """Настройки сохранения отслеживаемых записей."""

    # Путь к базе состояния
    state_db_path: str = STATE_DB_PATH


@dataclass
class LoggingConfig:
    """Настройки логирования."""

    level: str = LOG_LEVEL

    # Сколько последних строк лога держать в памяти для хоста
    tail_size: int = 1000


@dataclass
class Config:
    """Главный конфигурационный класс."""

    dht: DHTConfig = field(default_factory=DHTConfig)
    torrent: TorrentConfig = field(default_factory=TorrentConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Глобальный экземпляр конфигурации
config = Config()
