# flagengine/services/decrypt.py
"""AES-128-CBC payload encryption used for encrypted feature payloads.

Wire format::

    base64(iv) "." base64(ciphertext)

with a 16-byte IV, PKCS7 padding and a base64-encoded 16-byte key.
"""
import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

BLOCK_SIZE = 16


def _b64(value: str) -> Optional[bytes]:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


def decrypt_payload(encrypted: str, key: str) -> Optional[str]:
    """
    Decrypt `encrypted` with the base64 `key`.

    Returns None for any malformed input or cryptographic failure; a wrong key
    and corrupt data are indistinguishable to the caller.
    """
    if not isinstance(encrypted, str) or not isinstance(key, str):
        return None

    sep = encrypted.find(".")
    if sep <= 0:
        logger.debug("Encrypted payload has no iv separator")
        return None

    key_bytes = _b64(key)
    if key_bytes is None or len(key_bytes) != BLOCK_SIZE:
        logger.debug("Decryption key must decode to 16 bytes")
        return None

    iv = _b64(encrypted[:sep])
    if iv is None or len(iv) != BLOCK_SIZE:
        return None

    ct = _b64(encrypted[sep + 1:])
    if not ct or len(ct) % BLOCK_SIZE != 0:
        return None

    try:
        decryptor = Cipher(algorithms.AES(key_bytes), modes.CBC(iv)).decryptor()
        decrypted = decryptor.update(ct) + decryptor.finalize()
        unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
        plain = unpadder.update(decrypted) + unpadder.finalize()
        return plain.decode("utf-8")
    except ValueError:
        # Bad padding and invalid UTF-8 both surface as ValueError
        logger.debug("Failed to decrypt payload")
        return None


def encrypt_payload(plaintext: str, key: str, iv: Optional[bytes] = None) -> str:
    """
    Encrypt `plaintext` into the format accepted by decrypt_payload.
    A random IV is used unless one is given.
    """
    key_bytes = base64.b64decode(key)
    if iv is None:
        iv = os.urandom(BLOCK_SIZE)

    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key_bytes), modes.CBC(iv)).encryptor()
    ct = encryptor.update(padded) + encryptor.finalize()

    return base64.b64encode(iv).decode("ascii") + "." + base64.b64encode(ct).decode("ascii")
