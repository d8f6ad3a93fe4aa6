import logging

from cryptography.fernet import Fernet, InvalidToken
from reseller_engine.core.config import settings

logger = logging.getLogger("reseller_engine.encryption")

try:
    cipher_suite = Fernet(settings.PANEL_CREDENTIALS_FERNET_KEY.encode())
except (ValueError, AttributeError) as e:
    # Invalid key material; every encrypt/decrypt call will fail loudly below
    logger.critical("Could not initialize Fernet cipher, PANEL_CREDENTIALS_FERNET_KEY is invalid: %s", e)
    cipher_suite = None


def encrypt_data(data: str) -> str:
    if cipher_suite is None:
        raise ValueError("Encryption service is not initialized. Check PANEL_CREDENTIALS_FERNET_KEY.")
    if not data:
        return ""
    return cipher_suite.encrypt(data.encode()).decode()


def decrypt_data(encrypted_data: str) -> str:
    if cipher_suite is None:
        raise ValueError("Decryption service is not initialized. Check PANEL_CREDENTIALS_FERNET_KEY.")
    if not encrypted_data:
        return ""
    try:
        return cipher_suite.decrypt(encrypted_data.encode()).decode()
    except InvalidToken:
        raise ValueError("Decryption failed: Invalid token or key.")
