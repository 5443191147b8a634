"""Fernet field encryption for the health log.

Episode details and daily check-ins are stored as encrypted JSON. Only the
columns needed for ordering and lookup (episode start time, check-in day)
stay in plaintext.

Keys can be rotated: the primary key encrypts, retired keys listed after it
still decrypt until the log has been re-encrypted.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


def _fernet(key: str) -> Fernet:
    if not key or not key.strip():
        raise EncryptionError("Encryption key must not be empty")
    try:
        return Fernet(key.strip().encode("utf-8"))
    except ValueError as exc:
        raise EncryptionError(f"Invalid encryption key: {exc}") from exc


class FieldEncryptor:
    """Encrypts JSON-serializable values with a primary Fernet key.

    Usage::

        encryptor = FieldEncryptor(new_key, retired_keys=[old_key])
        token = encryptor.encrypt({"severity": 7})
        encryptor.decrypt(old_token)      # still readable
        encryptor.rotate(old_token)       # re-encrypted under new_key
    """

    def __init__(self, key: str, retired_keys: Iterable[str] = ()) -> None:
        """Raises EncryptionError if any key is empty or not a Fernet key."""
        self._primary = _fernet(key)
        self._retired = [_fernet(k) for k in retired_keys]
        self._multi = MultiFernet([self._primary, *self._retired])

    @classmethod
    def ephemeral(cls) -> FieldEncryptor:
        """Encryptor with a throwaway key. Data is unreadable after restart."""
        logger.warning(
            "No ENCRYPTION_KEY configured; using an ephemeral key. "
            "Logged episodes will not survive a restart."
        )
        return cls(cls.generate_key())

    @property
    def has_retired_keys(self) -> bool:
        return bool(self._retired)

    def encrypt(self, data: Any) -> str:
        """Encrypt a JSON-serializable value under the primary key.

        ``None`` is stored as the empty string.
        """
        if data is None:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc
        return self._primary.encrypt(plaintext).decode("utf-8")

    def decrypt(self, token: str) -> Any:
        """Decrypt a token made with the primary or any retired key."""
        if not token:
            return None
        try:
            plaintext = self._multi.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        try:
            return json.loads(plaintext)
        except ValueError as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

    def rotate(self, token: str) -> str:
        """Re-encrypt a token under the primary key."""
        if not token:
            return token
        try:
            return self._multi.rotate(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Rotation failed: invalid token or wrong key") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64 Fernet key."""
        return Fernet.generate_key().decode("utf-8")
