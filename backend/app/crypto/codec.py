"""
Field Encryption Codec

Seals individual ledger values (amounts, descriptions, titles) with
AES-256-GCM. Each blob is self-describing::

    v<key version>.<nonce>.<ciphertext>.<tag>      (segments urlsafe base64)

so decryption picks the key by the version it was sealed with, and the active
key can change without rewriting existing records.
"""

from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.config import get_settings
from app.core.exceptions import ConfigurationError, DecryptionError

Number = Union[int, float, Decimal]

NONCE_SIZE = 12
TAG_SIZE = 16

_NUMBER_TAG = "n:"
_STRING_TAG = "s:"
_MISSING = object()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("Booleans are not monetary values")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # repr() is the shortest string that round-trips the float
        result = Decimal(repr(value))
    else:
        raise TypeError(f"Unsupported numeric type: {type(value).__name__}")
    if not result.is_finite():
        raise ValueError("Monetary values must be finite")
    return result


@dataclass(frozen=True)
class KeyRegistry:
    """Symmetric keys indexed by version, one of which seals new values."""

    keys: dict[int, bytes]
    active_version: int

    def __post_init__(self) -> None:
        if self.active_version not in self.keys:
            raise ConfigurationError(f"No key registered for active version {self.active_version}")
        for version, key in self.keys.items():
            if len(key) != 32:
                raise ConfigurationError(f"Key version {version} must be 32 bytes")

    def key_for(self, version: int) -> Optional[bytes]:
        return self.keys.get(version)


class FieldCodec:
    """Encrypts and decrypts single scalar field values."""

    def __init__(self, registry: KeyRegistry) -> None:
        self.registry = registry

    @property
    def active_version(self) -> int:
        return self.registry.active_version

    # =========================================================================
    # Generic encrypt / decrypt
    # =========================================================================

    def encrypt(self, value: Union[str, Number]) -> str:
        """Seal a string or number under the active key."""
        if isinstance(value, str):
            plaintext = _STRING_TAG + value
        else:
            plaintext = _NUMBER_TAG + str(_to_decimal(value))
        return self._seal(plaintext.encode("utf-8"), self.registry.active_version)

    def decrypt(self, blob: Optional[str], default: Any = _MISSING) -> Union[str, Decimal, Any]:
        """Open a blob produced by ``encrypt``.

        Numbers come back as ``Decimal``. When ``default`` is given, a missing,
        blank or unreadable blob yields the default instead of raising.
        """
        try:
            if not blob:
                raise DecryptionError("Ciphertext is empty")
            plaintext = self._open(blob)
            return self._decode(plaintext)
        except DecryptionError:
            if default is _MISSING:
                raise
            return default

    # =========================================================================
    # Typed helpers
    # =========================================================================

    def encrypt_number(self, value: Number) -> str:
        return self.encrypt(_to_decimal(value))

    def decrypt_number(self, blob: Optional[str], default: Any = _MISSING) -> Decimal:
        value = self.decrypt(blob, default)
        if isinstance(value, str):
            if default is _MISSING:
                raise DecryptionError("Ciphertext holds text, expected a number")
            return default
        return value

    def encrypt_string(self, value: str) -> str:
        return self.encrypt(str(value))

    def decrypt_string(self, blob: Optional[str], default: Any = _MISSING) -> str:
        value = self.decrypt(blob, default)
        if isinstance(value, Decimal):
            return str(value)
        return value

    def encrypt_optional(self, value: Optional[str]) -> Optional[str]:
        """Encrypt text when present; ``None`` and empty strings stay ``None``."""
        if value is None or value == "":
            return None
        return self.encrypt_string(value)

    # =========================================================================
    # Key rotation
    # =========================================================================

    @staticmethod
    def key_version(blob: str) -> int:
        """Read the key version embedded in a blob without decrypting it."""
        head = blob.split(".", 1)[0]
        if not head.startswith("v"):
            raise DecryptionError("Ciphertext is missing its key version")
        try:
            return int(head[1:])
        except ValueError as exc:
            raise DecryptionError("Ciphertext has a malformed key version") from exc

    def reencrypt(self, blob: Optional[str]) -> Optional[str]:
        """Return ``blob`` sealed under the active key, or unchanged if already current."""
        if not blob:
            return blob
        if self.key_version(blob) == self.registry.active_version:
            return blob
        return self._seal(self._open(blob), self.registry.active_version)

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _aad(version: int) -> bytes:
        return f"expenseflow:v{version}".encode("ascii")

    def _seal(self, plaintext: bytes, version: int) -> str:
        key = self.registry.key_for(version)
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(key).encrypt(nonce, plaintext, self._aad(version))
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return ".".join(
            [f"v{version}", _b64encode(nonce), _b64encode(ciphertext), _b64encode(tag)]
        )

    def _open(self, blob: str) -> bytes:
        parts = blob.split(".")
        if len(parts) != 4:
            raise DecryptionError("Ciphertext is malformed")
        version = self.key_version(blob)
        key = self.registry.key_for(version)
        if key is None:
            raise DecryptionError(f"No key registered for version {version}")
        try:
            nonce = _b64decode(parts[1])
            ciphertext = _b64decode(parts[2])
            tag = _b64decode(parts[3])
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Ciphertext is not valid base64") from exc
        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise DecryptionError("Ciphertext is malformed")
        try:
            return AESGCM(key).decrypt(nonce, ciphertext + tag, self._aad(version))
        except InvalidTag as exc:
            raise DecryptionError("Ciphertext failed authentication") from exc

    @staticmethod
    def _decode(plaintext: bytes) -> Union[str, Decimal]:
        try:
            text = plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Plaintext is not valid UTF-8") from exc
        if text.startswith(_STRING_TAG):
            return text[len(_STRING_TAG):]
        if text.startswith(_NUMBER_TAG):
            try:
                return Decimal(text[len(_NUMBER_TAG):])
            except InvalidOperation as exc:
                raise DecryptionError("Plaintext holds a malformed number") from exc
        raise DecryptionError("Plaintext has an unknown type tag")


_codec: Optional[FieldCodec] = None


def get_codec() -> FieldCodec:
    """Get the singleton FieldCodec built from application settings."""
    global _codec
    if _codec is None:
        settings = get_settings()
        _codec = FieldCodec(
            KeyRegistry(
                keys=dict(settings.encryption_keys),
                active_version=settings.encryption_active_version,
            )
        )
    return _codec
