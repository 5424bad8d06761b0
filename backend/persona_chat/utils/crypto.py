from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken


class SecretCipher:
    """Encrypt and decrypt provider API keys using a key derived from APP_SECRET_KEY."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("APP_SECRET_KEY is required for encryption.")
        self._fernet = Fernet(self._derive_key(secret))

    def encrypt(self, value: str) -> str:
        """Encrypt a plain API key into a URL-safe token."""

        return self._fernet.encrypt(value.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str) -> str:
        """Decrypt a stored API key token."""

        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Failed to decrypt stored API key.") from exc

    @staticmethod
    def _derive_key(secret: str) -> bytes:
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        return base64.urlsafe_b64encode(digest)


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Return a display-safe hint such as ``sk-a…wxyz`` for a stored key."""

    if not value:
        return ""
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}…{value[-visible:]}"
