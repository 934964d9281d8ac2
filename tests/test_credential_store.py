"""
Tests for gateway credential encryption and format checks.
"""

import pytest

from src.core.exceptions import CredentialError
from src.infrastructure.crypto.credential_store import (
    CredentialStore,
    validate_access_token_format,
    validate_public_key_format,
)

KEY = "0123456789abcdef" * 4
OTHER_KEY = "fedcba9876543210" * 4


class TestCredentialStore:
    def test_decrypt_returns_original_token(self):
        store = CredentialStore(KEY)
        blob = store.encrypt("APP_USR-123456-abcdef")
        assert store.decrypt(blob) == "APP_USR-123456-abcdef"

    def test_stored_format_is_iv_and_ciphertext_hex(self):
        blob = CredentialStore(KEY).encrypt("TEST-token")
        iv_hex, cipher_hex = blob.split(":")
        assert len(bytes.fromhex(iv_hex)) == 16
        assert len(bytes.fromhex(cipher_hex)) % 16 == 0
        assert "TEST-token" not in blob

    def test_same_plaintext_encrypts_differently(self):
        store = CredentialStore(KEY)
        assert store.encrypt("TEST-token") != store.encrypt("TEST-token")

    def test_wrong_key_fails_to_decrypt(self):
        blob = CredentialStore(KEY).encrypt("TEST-a-reasonably-long-token")
        with pytest.raises(CredentialError):
            CredentialStore(OTHER_KEY).decrypt(blob)

    @pytest.mark.parametrize("blob", ["", "no-separator", "zz:zz"])
    def test_malformed_blob_raises(self, blob):
        with pytest.raises(CredentialError):
            CredentialStore(KEY).decrypt(blob)

    def test_key_must_be_32_bytes(self):
        with pytest.raises(CredentialError):
            CredentialStore("abcd")

    def test_key_must_be_hex(self):
        with pytest.raises(CredentialError):
            CredentialStore("not-hex" * 10)

    def test_empty_plaintext_rejected(self):
        with pytest.raises(CredentialError):
            CredentialStore(KEY).encrypt("")


class TestCredentialFormats:
    @pytest.mark.parametrize(
        "token,valid",
        [
            ("APP_USR-1234", True),
            ("TEST-1234", True),
            ("sk_live_1234", False),
            ("", False),
        ],
    )
    def test_access_token_prefixes(self, token, valid):
        assert validate_access_token_format(token) is valid

    def test_public_key_minimum_length(self):
        assert validate_public_key_format("TEST-abcdef")
        assert not validate_public_key_format("short")
