"""Credential encryption for stored provider credentials (Fernet)."""

import base64
import json
from typing import Any, cast

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from mailsync.core.config import Settings, get_settings
from mailsync.domain.exceptions import CredentialException

DECRYPTION_ERROR_MSG = "Failed to decrypt credentials - invalid or corrupted data"


class CredentialEncryptor:
    """Encrypt/decrypt the account credential blob.

    The Fernet key is derived from CREDENTIAL_ENCRYPTION_SECRET and
    ENCRYPTION_SALT with PBKDF2-HMAC-SHA256.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._fernet = Fernet(self._derive_key(settings or get_settings()))

    @staticmethod
    def _derive_key(settings: Settings) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=settings.encryption_salt.get_secret_value().encode(),
            iterations=100_000,
        )
        secret = settings.credential_encryption_secret.get_secret_value().encode()
        return base64.urlsafe_b64encode(kdf.derive(secret))

    def encrypt(self, credentials: dict[str, Any]) -> str:
        """Encrypt a credentials dict to a string safe for storage."""
        return self._fernet.encrypt(json.dumps(credentials).encode()).decode()

    def decrypt(self, encrypted: str) -> dict[str, Any]:
        """Decrypt a stored string back to the credentials dict.

        Raises:
            CredentialException: Token invalid or payload is not a JSON object.
        """
        try:
            payload = json.loads(self._fernet.decrypt(encrypted.encode()).decode())
        except InvalidToken as e:
            raise CredentialException(DECRYPTION_ERROR_MSG) from e
        except json.JSONDecodeError as e:
            raise CredentialException("Decrypted credentials are not valid JSON") from e
        if not isinstance(payload, dict):
            raise CredentialException("Decrypted credentials must be a dictionary")
        return cast(dict[str, Any], payload)
