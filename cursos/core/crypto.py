"""Symmetric encryption for OAuth tokens stored at rest.

Tokens are encrypted with Fernet (AES-128-CBC with a random IV and an
HMAC-SHA256 tag, both carried inside the token). The Fernet key is derived
from the server secret with Scrypt, so the secret itself never needs to be a
valid Fernet key. Key rotation is not supported.
"""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from cursos.config.settings import get_settings


class TokenDecryptionError(Exception):
    """Stored token could not be decrypted with the current key."""


def derive_key(secret: str, salt: str) -> bytes:
    """Derive a urlsafe-base64 Fernet key from a secret."""
    kdf = Scrypt(salt=salt.encode("utf-8"), length=32, n=2**14, r=8, p=1)
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class TokenCipher:
    """Encrypts and decrypts credential tokens."""

    def __init__(self, secret: str, salt: str):
        self._fernet = Fernet(derive_key(secret, salt))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            msg = "Token could not be decrypted"
            raise TokenDecryptionError(msg) from e


@lru_cache
def get_token_cipher() -> TokenCipher:
    """Get the cipher configured from settings (cached, Scrypt is slow)."""
    settings = get_settings()
    return TokenCipher(settings.token_encryption_secret, settings.token_encryption_salt)
