"""
storage/crypto.py

Fernet encryption for medical-record bodies at rest.

Key lifecycle
-------------
The key is read from the environment variable APP_DATA_KEY, a URL-safe
base64-encoded 32-byte key as produced by ``Fernet.generate_key()``.

Without APP_DATA_KEY a throwaway in-memory key is generated (local demo and
tests only) and a warning is logged: anything written under that key is
unreadable after a restart.

Public API
----------
encrypt_json(data: dict) -> str
decrypt_json(token: str) -> dict
reset_key() -> None
"""

import json
import logging
import os
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

_ENV_KEY_NAME = "APP_DATA_KEY"


@lru_cache(maxsize=1)
def _get_fernet() -> Fernet:
    raw_key = os.environ.get(_ENV_KEY_NAME)
    if raw_key:
        logger.debug("Record key loaded from '%s'.", _ENV_KEY_NAME)
        return Fernet(raw_key.encode())

    logger.warning(
        "%s is not set; using a temporary in-memory key. "
        "Stored medical records will NOT be readable after a restart.",
        _ENV_KEY_NAME,
    )
    return Fernet(Fernet.generate_key())


def reset_key() -> None:
    """Forget the cached key so the next call re-reads the environment."""
    _get_fernet.cache_clear()


def encrypt_json(data: dict) -> str:
    """Serialise *data* to JSON and return it as a Fernet token string."""
    plaintext = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
    return _get_fernet().encrypt(plaintext).decode("utf-8")


def decrypt_json(token: str) -> dict:
    """
    Reverse :func:`encrypt_json`.

    Raises:
        cryptography.fernet.InvalidToken: wrong key or corrupted token.
    """
    try:
        plaintext = _get_fernet().decrypt(token.encode("utf-8"))
    except InvalidToken:
        logger.error("Record decryption failed: wrong key or corrupted token.")
        raise
    return json.loads(plaintext.decode("utf-8"))
