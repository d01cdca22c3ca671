"""Fernet sealing for the cold audit tier. Key is injected; fail if missing. No global state."""

import base64
import json
import os
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from phi_guard.security.exceptions import EncryptionError

DEFAULT_SALT = b"phi_guard_cold_tier_v1"


def _derive_key(secret: str, salt: bytes = DEFAULT_SALT) -> bytes:
    """Derive a 32-byte Fernet key from a variable-length secret."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=480000,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class EncryptionService:
    """
    Seals structured records for cold storage (Fernet: AES-128-CBC + HMAC-SHA256).
    Fernet tokens are authenticated, so a tampered cold blob fails to unseal.
    """

    def __init__(self, key: Optional[str] = None) -> None:
        """
        key: raw secret (settings.encryption_key). If None/empty, read from
        os.environ["ENCRYPTION_KEY"]. Raises EncryptionError if key missing.
        """
        raw = key or os.environ.get("ENCRYPTION_KEY")
        if not raw or not raw.strip():
            raise EncryptionError(
                "Encryption key is required. Set ENCRYPTION_KEY in environment."
            )
        self._fernet = Fernet(_derive_key(raw.strip()))

    def seal(self, payload: Dict[str, Any]) -> bytes:
        try:
            body = json.dumps(payload, sort_keys=True, separators=(",", ":"))
            return self._fernet.encrypt(body.encode("utf-8"))
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Sealing failed: {e}") from e

    def unseal(self, token: bytes) -> Dict[str, Any]:
        """Raises EncryptionError if the key is wrong or the blob was altered."""
        try:
            return json.loads(self._fernet.decrypt(token).decode("utf-8"))
        except InvalidToken as e:
            raise EncryptionError("Unsealing failed: invalid key or tampered blob") from e
