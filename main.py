#!/usr/bin/env python3
"""
Mutable Torrents Host
=====================

[HOST] Запускает сессию mutable-записей поверх libtorrent (или поверх
MemoryEngine, если libtorrent не установлен):
- keygen: создать или загрузить seed публикатора
- publish: опубликовать новую версию записи
- watch: подписаться на запись и следить за обновлениями

[PERSISTENCE] Отслеживаемые записи (sequence, подписки, ключи публикатора)
сохраняются в config.persistence.state_db_path и восстанавливаются при
следующем запуске.

Использование:
    python main.py keygen --seed-file keys/show.seed
    python main.py publish --seed-file keys/show.seed --content <info-hash> [--salt season-2]
    python main.py watch --public-key <hex> [--salt season-2] [--download]
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from config import config
from engine import DHTEngine, DHTPutCompleted, LibtorrentEngine, MemoryEngine
from mutable import (
    KeyMaterial,
    MutableRecordError,
    MutableRecordValue,
    MutableTorrentSession,
    RecordStore,
    UpdateAvailable,
)
from mutable.logger import configure_logging

logger = logging.getLogger("mutable")


POLL_PERIOD = 1.0          # как часто хост выкачивает события движка (секунды)
PUBLISH_SETTLE = 30.0      # сколько ждать подтверждения dht_put


def load_or_create_keys(seed_file: str) -> KeyMaterial:
    """
    Загрузить seed публикатора или создать новый.
    """
    path = Path(seed_file)

    if path.exists():
        logger.info(f"[KEYS] Loading seed from {seed_file}")
        keys = KeyMaterial.from_seed(path.read_bytes())
    else:
        logger.info("[KEYS] Generating new key pair...")
        keys = KeyMaterial.generate()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(keys.seed)
        logger.info(f"[KEYS] Saved seed to {seed_file}")

    logger.info(f"[KEYS] Public key: {keys.public_key_hex}")
    return keys


def parse_public_key(value: str) -> bytes:
    """Парсить hex публичного ключа из командной строки."""
    try:
        raw = bytes.fromhex(value.strip())
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a hex string: {value!r}")
    if len(raw) != 32:
        raise argparse.ArgumentTypeError(f"public key must be 32 bytes, got {len(raw)}")
    return raw


def create_engine() -> DHTEngine:
    engine = LibtorrentEngine(
        listen_port=config.torrent.listen_port,
        save_path=config.torrent.save_path,
    )
    if engine.available:
        return engine
    logger.warning("[MAIN] Falling back to in-process MemoryEngine: records stay local")
    return MemoryEngine()


def cmd_keygen(args: argparse.Namespace) -> int:
    try:
        keys = load_or_create_keys(args.seed_file)
    except MutableRecordError as e:
        logger.error(f"[MAIN] {e.__class__.__name__}: {e.message}")
        return 1
    print(keys.public_key_hex)
    return 0


async def pump_events(
    session: MutableTorrentSession,
    store: RecordStore,
    shutdown: asyncio.Event,
    stop_on_put: Optional[bytes] = None,
    timeout: Optional[float] = None,
) -> None:
    """
    Выкачивать события сессии до сигнала завершения.

    Args:
        stop_on_put: Остановиться после DHTPutCompleted для этого public_key
        timeout: Максимальное время работы (секунды)
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout else None

    while not shutdown.is_set():
        for event in session.poll_events():
            if isinstance(event, UpdateAvailable):
                print(
                    f"{event.public_key.hex()} seq={event.new_sequence} "
                    f"content={event.value.content}"
                )
                await session.save_state(store)
            elif isinstance(event, DHTPutCompleted):
                logger.info(
                    f"[DHT] Put seq={event.sequence} stored on {event.num_success} nodes"
                )
                if stop_on_put is not None and event.public_key == stop_on_put:
                    return

        if deadline is not None and loop.time() >= deadline:
            logger.warning("[MAIN] Timed out waiting for DHT")
            return
        try:
            await asyncio.wait_for(shutdown.wait(), POLL_PERIOD)
        except asyncio.TimeoutError:
            pass


async def cmd_publish(
    args: argparse.Namespace,
    session: MutableTorrentSession,
    store: RecordStore,
    shutdown: asyncio.Event,
) -> None:
    keys = load_or_create_keys(args.seed_file)
    public_key = keys.public_key

    record_id = session.create_publisher(keys, args.salt.encode("utf-8"))
    sequence = session.publish(
        record_id,
        MutableRecordValue(content=args.content, version=args.version),
    )
    await session.save_state(store)
    print(f"{public_key.hex()} seq={sequence}")

    await pump_events(session, store, shutdown, stop_on_put=public_key, timeout=PUBLISH_SETTLE)


async def cmd_watch(
    args: argparse.Namespace,
    session: MutableTorrentSession,
    store: RecordStore,
    shutdown: asyncio.Event,
) -> None:
    public_key = args.public_key
    session.subscribe(
        public_key,
        args.salt.encode("utf-8"),
        save_path=args.save_path or "",
        auto_update=True,
        fetch_now=True,
    )
    logger.info(f"[MAIN] Watching {public_key.hex()[:16]}... Press Ctrl+C to stop.")
    await pump_events(session, store, shutdown)


async def main() -> int:
    """
    Главная функция - точка входа.
    """
    parser = argparse.ArgumentParser(
        description="BEP 46 mutable torrent host",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Publisher
  python main.py publish --seed-file keys/show.seed --content 0123abcd...

  # Subscriber (second machine)
  python main.py watch --public-key <hex printed by publish> --download
""",
    )
    parser.add_argument(
        "--state-db",
        default=config.persistence.state_db_path,
        help=f"State database (default: {config.persistence.state_db_path})",
    )
    parser.add_argument(
        "--log-level",
        default=config.logging.level,
        help=f"Log level (default: {config.logging.level})",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=config.dht.poll_interval,
        help=f"Seconds between subscription polls (default: {config.dht.poll_interval:g})",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    keygen = commands.add_parser("keygen", help="Create or show a publisher key")
    keygen.add_argument("--seed-file", required=True)

    publish = commands.add_parser("publish", help="Publish a new record version")
    publish.add_argument("--seed-file", required=True)
    publish.add_argument("--content", required=True, help="Info-hash or other content pointer")
    publish.add_argument("--version", type=int, default=1)
    publish.add_argument("--salt", default="")

    watch = commands.add_parser("watch", help="Follow a record")
    watch.add_argument("--public-key", required=True, type=parse_public_key, help="Publisher public key (hex)")
    watch.add_argument("--salt", default="")
    watch.add_argument("--save-path", default=None)
    watch.add_argument("--download", action="store_true", help="Add each new version to the engine")

    args = parser.parse_args()

    configure_logging(args.log_level, tail_size=config.logging.tail_size)

    if args.command == "keygen":
        return cmd_keygen(args)

    config.dht.poll_interval = args.poll_interval
    if args.command == "watch" and args.download:
        config.torrent.auto_download = True

    store = RecordStore(args.state_db)
    await store.initialize()
    session = MutableTorrentSession(create_engine(), config=config)
    restored = await session.restore_state(store)
    logger.info(f"[MAIN] Restored {len(restored)} records from {args.state_db}")

    # Graceful shutdown
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("[MAIN] Received shutdown signal")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            pass

    try:
        if args.command == "publish":
            await cmd_publish(args, session, store, shutdown_event)
        else:
            await cmd_watch(args, session, store, shutdown_event)
        return 0
    except MutableRecordError as e:
        logger.error(f"[MAIN] {e.__class__.__name__}: {e.message}")
        return 1
    finally:
        logger.info("[PERSISTENCE] Saving state...")
        await session.save_state(store)
        session.close()
        await store.close()
        logger.info("[MAIN] Shutdown complete")


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass
