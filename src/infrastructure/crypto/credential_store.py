"""
Credential Store

Encrypts merchant Mercado Pago access tokens at rest with AES-256-CBC.
Stored values have the form "<iv hex>:<ciphertext hex>" with a random
16-byte IV per value.
"""

import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from src.config.logger_config import log
from src.core.exceptions import CredentialError

ACCESS_TOKEN_PREFIXES = ("APP_USR-", "TEST-")
MIN_PUBLIC_KEY_LENGTH = 10


def validate_access_token_format(token: str) -> bool:
    """Production tokens start with APP_USR-, sandbox tokens with TEST-."""
    return bool(token) and token.startswith(ACCESS_TOKEN_PREFIXES)


def validate_public_key_format(public_key: str) -> bool:
    return bool(public_key) and len(public_key) >= MIN_PUBLIC_KEY_LENGTH


class CredentialStore:
    """
    Symmetric encryption of gateway credentials.

    Instantiated once in src/infrastructure/services.py with the
    ENCRYPTION_KEY setting.
    """

    def __init__(self, key_hex: str):
        try:
            key = bytes.fromhex(key_hex)
        except (TypeError, ValueError) as e:
            raise CredentialError("ENCRYPTION_KEY must be a hex string", e) from e
        if len(key) != 32:
            raise CredentialError("ENCRYPTION_KEY must encode exactly 32 bytes")
        self._key = key

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise CredentialError("Cannot encrypt an empty credential")

        iv = os.urandom(16)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, blob: str) -> str:
        if not blob or ":" not in blob:
            raise CredentialError("Invalid encrypted credential format")

        iv_hex, ciphertext_hex = blob.split(":", 1)
        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)

            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as e:
            # Wrong key, truncated data or tampered padding all land here
            log.error("Failed to decrypt gateway credential", error=str(e))
            raise CredentialError("Failed to decrypt gateway credential", e) from e
