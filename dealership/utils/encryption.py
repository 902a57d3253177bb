"""At-rest encryption of chat message bodies."""
from functools import lru_cache
from cryptography.fernet import Fernet, InvalidToken
from dealership.config import get_settings
import base64
import hashlib
import logging

logger = logging.getLogger(__name__)

UNREADABLE_BODY = "[message could not be decrypted]"


@lru_cache()
def get_cipher() -> Fernet:
    """Derive the Fernet cipher from ENCRYPTION_KEY (any length)."""
    key = get_settings().encryption_key.encode()
    fernet_key = base64.urlsafe_b64encode(hashlib.sha256(key).digest())
    return Fernet(fernet_key)


def encrypt_message(message: str) -> str:
    return get_cipher().encrypt(message.encode()).decode()


def decrypt_message(encrypted_message: str) -> str:
    """Decrypt a stored body; rows written under another key read as a placeholder."""
    try:
        return get_cipher().decrypt(encrypted_message.encode()).decode()
    except InvalidToken:
        logger.warning("Stored message body failed to decrypt")
        return UNREADABLE_BODY
