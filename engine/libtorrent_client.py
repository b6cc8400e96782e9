import hashlib
import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import time

from mutable.codec import bencode
from mutable.errors import EncodeError

from .base import (
    DHTEngine,
    DHTPutCompleted,
    EngineEvent,
    MutableItemReceived,
    Signer,
    TorrentAdded,
)

try:
    import libtorrent as lt  # type: ignore
    _LT_AVAILABLE = True
except Exception:  # pragma: no cover
    lt = None  # type: ignore
    _LT_AVAILABLE = False

logger = logging.getLogger(__name__)


def libtorrent_secret(private_key: bytes) -> bytes:
    """
    Convert a libsodium secret key (seed || public key) into the expanded
    form libtorrent's ed25519 expects: clamped SHA-512 of the seed.
    """
    expanded = bytearray(hashlib.sha512(bytes(private_key[:32])).digest())
    expanded[0] &= 248
    expanded[31] &= 63
    expanded[31] |= 64
    return bytes(expanded)


@dataclass
class TorrentItem:
    descriptor: str
    handle: Any
    save_path: Path
    added_at: float = field(default_factory=time.time)


class LibtorrentEngine(DHTEngine):
    """DHT engine backed by a libtorrent session.

    libtorrent validates BEP 44 signatures and picks the wire sequence number
    itself, so items it reports carry no signature of their own.
    """

    validates_signatures = True

    def __init__(
        self,
        listen_port: int = 6881,
        save_path: str = "storage/torrents",
        session: Optional[Any] = None,
    ):
        self.listen_port = listen_port
        self.save_path = Path(save_path)
        self._lock = threading.Lock()
        self._items: Dict[str, TorrentItem] = {}
        self._pending: List[EngineEvent] = []

        self._session = session
        if self._session is None and _LT_AVAILABLE:
            self._session = lt.session()
            self._configure_session()
        elif self._session is None:
            logger.warning("[TORRENT] libtorrent not available")

    @property
    def available(self) -> bool:
        return self._session is not None

    def add_torrent(self, descriptor: str, save_path: str) -> Any:
        if not descriptor:
            return None
        if not self._session:
            logger.warning("[TORRENT] Session unavailable; cannot add torrent")
            return None
        with self._lock:
            existing = self._items.get(descriptor)
        if existing:
            return existing.handle

        uri = descriptor if descriptor.startswith("magnet:") else f"magnet:?xt=urn:btih:{descriptor}"
        target = Path(save_path or self.save_path)
        target.mkdir(parents=True, exist_ok=True)

        params = lt.parse_magnet_uri(uri)
        params.save_path = str(target)
        handle = self._session.add_torrent(params)

        with self._lock:
            self._items[descriptor] = TorrentItem(descriptor=descriptor, handle=handle, save_path=target)
            self._pending.append(TorrentAdded(descriptor=descriptor, save_path=str(target)))
        logger.info(f"[TORRENT] Added {self._extract_info_hash(uri) or descriptor[:40]}")
        return handle

    def dht_put(self, public_key: bytes, salt: bytes, signer: Signer) -> None:
        if not self._session:
            raise RuntimeError("libtorrent session unavailable")
        secret_key = getattr(signer, "secret_key", None)
        if secret_key is None:
            raise RuntimeError("Signer does not expose a secret key for libtorrent")

        item = signer(None, 0)
        # seq назначает libtorrent; реальный номер приходит в dht_put_alert
        self._session.dht_put_mutable_item(
            libtorrent_secret(secret_key()),
            bytes(public_key),
            item.value,
            bytes(salt),
        )
        logger.debug(f"[DHT] Put submitted for {bytes(public_key).hex()[:16]}...")

    def dht_get(self, public_key: bytes, salt: bytes) -> None:
        if not self._session:
            logger.warning("[TORRENT] Session unavailable; cannot query DHT")
            return
        self._session.dht_get_mutable_item(bytes(public_key), bytes(salt))

    def poll_events(self) -> List[EngineEvent]:
        with self._lock:
            events: List[EngineEvent] = list(self._pending)
            self._pending.clear()
        if not self._session:
            return events
        try:
            alerts = self._session.pop_alerts()
        except Exception as e:
            logger.warning(f"[TORRENT] Alert poll error: {e}")
            return events
        for alert in alerts:
            event = self._convert_alert(alert)
            if event is not None:
                events.append(event)
        return events

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            values = list(self._items.values())
        return {
            "available": self.available,
            "torrent_count": len(values),
            "torrents": [item.descriptor for item in values],
        }

    # ------------------------------------------------------------------
    # Internal handlers
    # ------------------------------------------------------------------

    def _configure_session(self) -> None:
        try:
            self._session.apply_settings(
                {
                    "listen_interfaces": f"0.0.0.0:{self.listen_port}",
                    "enable_dht": True,
                    "alert_mask": lt.alert.category_t.all_categories,
                }
            )
        except Exception as e:
            logger.warning(f"[TORRENT] Failed to apply settings: {e}")

    def _convert_alert(self, alert: Any) -> Optional[EngineEvent]:
        name = alert.__class__.__name__
        if name == "dht_mutable_item_alert":
            return MutableItemReceived(
                public_key=bytes(alert.key),
                salt=bytes(alert.salt or b""),
                sequence=int(alert.seq),
                value_bytes=self._item_bytes(alert.item),
                authoritative=bool(alert.authoritative),
                signature=None,
            )
        if name == "dht_put_alert":
            return DHTPutCompleted(
                public_key=bytes(alert.public_key),
                salt=bytes(alert.salt or b""),
                sequence=int(alert.seq),
                num_success=int(getattr(alert, "num_success", 0)),
            )
        return None

    @staticmethod
    def _item_bytes(item: Any) -> bytes:
        if isinstance(item, (bytes, bytearray)):
            return bytes(item)
        if isinstance(item, str):
            return item.encode("utf-8")
        # Anything else was stored by a foreign publisher as a structured entry
        try:
            return bencode(item)
        except EncodeError:
            return b""

    def _extract_info_hash(self, magnet_uri: str) -> str:
        match = re.search(r"xt=urn:btih:([A-Za-z0-9]+)", magnet_uri)
        return match.group(1) if match else ""
