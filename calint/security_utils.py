"""
Token encryption helpers

OAuth access and refresh tokens for both platforms are stored Fernet-encrypted.
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from .config import SECRET_KEY, TOKEN_ENCRYPTION_KEY

logger = logging.getLogger(__name__)


def _build_cipher(key: Optional[str]) -> Fernet:
    if key:
        return Fernet(key.encode())
    # Derive a valid 32-byte urlsafe key from SECRET_KEY
    digest = hashlib.sha256(SECRET_KEY.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


cipher_suite = _build_cipher(TOKEN_ENCRYPTION_KEY)


def encrypt_token(token: str) -> str:
    """Encrypt a token for storage"""
    return cipher_suite.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored token"""
    try:
        return cipher_suite.decrypt(encrypted_token.encode()).decode()
    except InvalidToken:
        logger.error("❌ Stored token could not be decrypted (encryption key changed?)")
        raise
