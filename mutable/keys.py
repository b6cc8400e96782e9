"""
Key Material - Ed25519 ключи для mutable-записей
================================================

[SECURITY] Ключевая пара BEP 46 состоит из:
- public_key: 32 байта, идентификатор записи (можно публиковать)
- private_key: 64 байта (seed ‖ public_key, формат libsodium), СЕКРЕТ
- seed: 32 байта, из него восстанавливается вся пара, СЕКРЕТ

[SECURITY] Приватный ключ и seed хранятся в bytearray и обнуляются
при wipe() и при уничтожении объекта. Возможность подписывать
фиксируется при создании экземпляра.
"""

import logging
from typing import Any, Dict, Optional

import nacl.bindings
import nacl.utils
from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import VerifyKey

from .errors import (
    EmptyPayloadError,
    InvalidKeyLengthError,
    KeyMismatchError,
    MissingPrivateKeyError,
)

logger = logging.getLogger(__name__)


PUBLIC_KEY_SIZE = 32
PRIVATE_KEY_SIZE = 64
SEED_SIZE = 32
SIGNATURE_SIZE = 64


def _require_length(name: str, value: bytes, size: int) -> None:
    if not isinstance(value, (bytes, bytearray)) or len(value) != size:
        length = len(value) if isinstance(value, (bytes, bytearray)) else type(value).__name__
        raise InvalidKeyLengthError(
            f"{name} must be exactly {size} bytes (got {length})",
            context="KeyMaterial",
        )


class KeyMaterial:
    """
    Ed25519 ключевая пара для подписи mutable-записей.

    [USAGE]
    ```python
    keys = KeyMaterial.generate()
    signature = keys.sign(b"payload")
    assert KeyMaterial.verify(signature, b"payload", keys.public_key)
    ```
    """

    __slots__ = ("_public_key", "_private_key", "_seed", "__weakref__")

    def __init__(
        self,
        public_key: bytes,
        private_key: Optional[bytes] = None,
        seed: Optional[bytes] = None,
    ):
        """
        Используйте фабрики generate() / from_seed() / from_keys() / public_only().

        Args:
            public_key: 32 байта
            private_key: 64 байта или None (только проверка подписей)
            seed: 32 байта или None
        """
        _require_length("Public key", public_key, PUBLIC_KEY_SIZE)
        if private_key is not None:
            _require_length("Private key", private_key, PRIVATE_KEY_SIZE)
        if seed is not None:
            _require_length("Seed", seed, SEED_SIZE)

        self._public_key = bytes(public_key)
        self._private_key: Optional[bytearray] = (
            bytearray(private_key) if private_key is not None else None
        )
        self._seed: Optional[bytearray] = bytearray(seed) if seed is not None else None

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def generate(cls) -> "KeyMaterial":
        """Сгенерировать новую пару из криптографически случайного seed."""
        return cls.from_seed(nacl.utils.random(SEED_SIZE))

    @classmethod
    def from_seed(cls, seed: bytes) -> "KeyMaterial":
        """
        Детерминированно получить пару из seed (32 байта).

        [SECURITY] Один и тот же seed всегда даёт одну и ту же пару.
        """
        _require_length("Seed", seed, SEED_SIZE)
        public_key, private_key = nacl.bindings.crypto_sign_seed_keypair(bytes(seed))
        return cls(public_key, private_key, seed)

    @classmethod
    def from_keys(cls, public_key: bytes, private_key: bytes) -> "KeyMaterial":
        """
        Загрузить ранее сохранённые ключи.

        Seed у такого экземпляра отсутствует.

        Raises:
            InvalidKeyLengthError: неверный размер ключей
            KeyMismatchError: приватный ключ принадлежит другой паре
        """
        _require_length("Public key", public_key, PUBLIC_KEY_SIZE)
        _require_length("Private key", private_key, PRIVATE_KEY_SIZE)
        if bytes(private_key[SEED_SIZE:]) != bytes(public_key):
            raise KeyMismatchError(
                "Private key does not belong to the given public key",
                context="KeyMaterial.from_keys",
            )
        return cls(public_key, private_key)

    @classmethod
    def public_only(cls, public_key: bytes) -> "KeyMaterial":
        """Экземпляр без приватного ключа: умеет только проверять."""
        return cls(public_key)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def public_key(self) -> bytes:
        return self._public_key

    @property
    def public_key_hex(self) -> str:
        return self._public_key.hex()

    @property
    def private_key(self) -> Optional[bytes]:
        """Копия приватного ключа (СЕКРЕТ) или None."""
        if self._private_key is None:
            return None
        return bytes(self._private_key)

    @property
    def seed(self) -> Optional[bytes]:
        """Копия seed (СЕКРЕТ) или None для ключей из from_keys()."""
        if self._seed is None:
            return None
        return bytes(self._seed)

    @property
    def can_sign(self) -> bool:
        return self._private_key is not None

    # ------------------------------------------------------------------
    # Crypto
    # ------------------------------------------------------------------

    def sign(self, data: bytes) -> bytes:
        """
        Подписать данные приватным ключом.

        Returns:
            64 байта подписи

        Raises:
            MissingPrivateKeyError: ключ не умеет подписывать
            EmptyPayloadError: пустые данные
        """
        if self._private_key is None:
            raise MissingPrivateKeyError(
                "Cannot sign: key material has no private key",
                context="KeyMaterial.sign",
            )
        if not data:
            raise EmptyPayloadError("Cannot sign empty data", context="KeyMaterial.sign")

        signed = nacl.bindings.crypto_sign(bytes(data), bytes(self._private_key))
        return signed[:SIGNATURE_SIZE]

    @staticmethod
    def verify(signature: bytes, data: bytes, public_key: bytes) -> bool:
        """
        Проверить подпись.

        [SECURITY] Никогда не бросает исключений: неверная длина подписи
        или ключа, пустые данные и плохая подпись дают False.
        """
        if not isinstance(signature, (bytes, bytearray)) or len(signature) != SIGNATURE_SIZE:
            return False
        if not isinstance(public_key, (bytes, bytearray)) or len(public_key) != PUBLIC_KEY_SIZE:
            return False
        if not isinstance(data, (bytes, bytearray)) or not data:
            return False

        try:
            VerifyKey(bytes(public_key)).verify(bytes(data), bytes(signature))
            return True
        except (BadSignatureError, CryptoError, ValueError, TypeError):
            return False

    @staticmethod
    def check_lengths(signature: bytes, public_key: bytes) -> None:
        """
        Отклонить входные данные неверной длины до проверки подписи.

        Позволяет отличить "неверный формат" от "подпись не сошлась".
        """
        _require_length("Signature", signature, SIGNATURE_SIZE)
        _require_length("Public key", public_key, PUBLIC_KEY_SIZE)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def wipe(self) -> None:
        """Обнулить секретные байты. После этого подписывать нельзя."""
        if self._private_key is not None:
            for i in range(len(self._private_key)):
                self._private_key[i] = 0
            self._private_key = None
        if self._seed is not None:
            for i in range(len(self._seed)):
                self._seed[i] = 0
            self._seed = None

    def __del__(self):
        try:
            self.wipe()
        except AttributeError:
            pass

    def to_dict(self) -> Dict[str, Any]:
        """Публичное описание без секретов."""
        return {
            "public_key": self.public_key_hex,
            "can_sign": self.can_sign,
            "has_seed": self._seed is not None,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyMaterial):
            return NotImplemented
        return self._public_key == other._public_key

    def __hash__(self) -> int:
        return hash(self._public_key)

    def __repr__(self) -> str:
        return f"KeyMaterial(public_key={self.public_key_hex[:16]}..., can_sign={self.can_sign})"
