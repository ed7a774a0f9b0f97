"""
Secret codec: authenticated encryption of credential blobs at rest.

Fernet gives AES-128-CBC with an HMAC-SHA256 tag and a fresh random IV per
token, so encrypting the same plaintext twice never yields the same
ciphertext. Plaintext only exists inside the sync task that decrypts it.
"""
import json
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from laneshare.config import get_settings
from laneshare.errors import ConfigurationError, DecryptionError


def generate_key() -> str:
    """Return a new urlsafe-base64 Fernet key as text."""
    return Fernet.generate_key().decode("utf-8")


class SecretCodec:
    """Encrypt and decrypt small secret payloads with a single process key."""

    def __init__(self, key: str):
        if not key:
            raise ConfigurationError(
                "LANESHARE_ENCRYPTION_KEY is not set. "
                "Run `python -m laneshare keygen` to create one."
            )
        try:
            self._fernet = Fernet(key.encode("utf-8"))
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(
                "LANESHARE_ENCRYPTION_KEY must be a 32-byte urlsafe-base64 Fernet key"
            ) from exc

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """
        Raises:
            DecryptionError: if the token is malformed, was produced with a
                different key, or has been tampered with.
        """
        try:
            raw = self._fernet.decrypt(ciphertext.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError, TypeError, AttributeError) as exc:
            raise DecryptionError(
                "Stored credentials could not be decrypted (corrupted or key mismatch)"
            ) from exc
        return raw.decode("utf-8")

    def encrypt_json(self, payload: Dict[str, Any]) -> str:
        return self.encrypt(json.dumps(payload, ensure_ascii=False))

    def decrypt_json(self, ciphertext: str) -> Dict[str, Any]:
        plaintext = self.decrypt(ciphertext)
        try:
            payload = json.loads(plaintext)
        except ValueError as exc:
            raise DecryptionError("Decrypted credentials are not valid JSON") from exc
        if not isinstance(payload, dict):
            raise DecryptionError("Decrypted credentials are not a JSON object")
        return payload


_codec: Optional[SecretCodec] = None


def get_codec() -> SecretCodec:
    """Return the process-wide codec built from settings, creating it on first call."""
    global _codec
    if _codec is None:
        _codec = SecretCodec(get_settings().encryption_key)
    return _codec
