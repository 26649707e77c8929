"""
Symmetric encryption for device credentials stored on assets.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the cryptography library.
The key is derived from settings.SECRET_KEY, so rotating SECRET_KEY makes
previously stored device passwords unreadable.
"""
import base64
import hashlib
from typing import Optional
from cryptography.fernet import Fernet, InvalidToken
from app.config import settings

_raw = hashlib.sha256(settings.SECRET_KEY.encode()).digest()
_fernet = Fernet(base64.urlsafe_b64encode(_raw))


def encrypt_value(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a plaintext string. Empty values are stored as-is."""
    if not plaintext:
        return plaintext
    return _fernet.encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: Optional[str]) -> Optional[str]:
    """Decrypt a stored value.

    Rows imported before encryption was applied hold plaintext; those are
    returned unchanged.
    """
    if not ciphertext:
        return ciphertext
    try:
        return _fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return ciphertext
