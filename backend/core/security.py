"""
GoLive Security Utilities

Encryption for stored Stripe tokens and JWT handling for creator sessions.
"""

import base64
import hashlib
from datetime import datetime, timedelta

from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError, jwt

from core.config import DEFAULT_ENCRYPTION_KEY, get_settings

settings = get_settings()

# Fernet encryption for Stripe access tokens
# Dev key must be deterministic so the API and the Celery workers share it.
if settings.encryption_key == DEFAULT_ENCRYPTION_KEY:
    _dev_key = base64.urlsafe_b64encode(hashlib.sha256(b"golive-dev-key-not-for-production").digest())
    _fernet = Fernet(_dev_key)
else:
    _fernet = Fernet(settings.encryption_key.encode())


def encrypt(plaintext: str) -> str:
    """Encrypt sensitive data (Stripe tokens, etc)."""
    return _fernet.encrypt(plaintext.encode()).decode()


def decrypt(ciphertext: str) -> str:
    """Decrypt sensitive data."""
    return _fernet.decrypt(ciphertext.encode()).decode()


def decrypt_or_none(ciphertext: str | None) -> str | None:
    """Decrypt a nullable column; unreadable or empty values count as absent."""
    if not ciphertext:
        return None
    try:
        value = decrypt(ciphertext)
    except InvalidToken:
        return None
    return value or None


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Issue a creator session token.

    Signed with jwt_secret; api.deps.get_current_user verifies it and reads
    the creator_id claim to scope every promotion route.
    """
    runtime_settings = get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, runtime_settings.jwt_secret, algorithm=runtime_settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a creator access token."""
    runtime_settings = get_settings()
    try:
        return jwt.decode(
            token,
            runtime_settings.jwt_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None
