"""Fernet-based field encryption for clinical record PHI at rest.

Diagnosis text, vitals blobs, lab result maps and medication names are
encrypted before writing to SQLite. Timestamps, lab status and the
dispensed flag stay in plaintext so reads can be ordered and filtered.

Retired keys can be supplied alongside the current one; tokens they
produced still decrypt, and :meth:`FieldEncryptor.rotate` re-encrypts them
under the current key.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

from cryptography.fernet import Fernet, InvalidToken, MultiFernet


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


def _fernet(key: str) -> Fernet:
    if not key or not key.strip():
        raise EncryptionError("Encryption key must not be empty")
    try:
        return Fernet(key.strip().encode())
    except ValueError as exc:
        raise EncryptionError(f"Invalid encryption key: {exc}") from exc


class FieldEncryptor:
    """Encrypts and decrypts JSON-serializable values.

    Usage::

        encryptor = FieldEncryptor(key="...", previous_keys=["<retired key>"])
        token = encryptor.encrypt({"bp": "120/80", "pulse": 72})
        encryptor.decrypt(token)  # {"bp": "120/80", "pulse": 72}
    """

    def __init__(self, key: str, *, previous_keys: Iterable[str] = ()) -> None:
        """
        Args:
            key: Current Fernet key; all new tokens use it.
            previous_keys: Retired keys, tried in order when decrypting.

        Raises:
            EncryptionError: If any key is empty or invalid.
        """
        self._fernet = MultiFernet([_fernet(key), *(_fernet(k) for k in previous_keys)])

    def encrypt(self, data: Any) -> str:
        """Encrypt a JSON-serializable value; ``None`` is stored as ``""``.

        Raises:
            EncryptionError: If the value is not JSON-serializable.
        """
        if data is None:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc
        return self._fernet.encrypt(plaintext).decode("utf-8")

    def decrypt(self, token: str | None) -> Any:
        """Decrypt a token produced by :meth:`encrypt`; empty tokens give ``None``.

        Raises:
            EncryptionError: If no configured key can decrypt the token.
        """
        if not token:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        return json.loads(plaintext)

    def rotate(self, token: str) -> str:
        """Re-encrypt ``token`` under the current key (empty stays empty)."""
        if not token:
            return token
        try:
            return self._fernet.rotate(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Rotation failed: invalid token or wrong key") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")
