"""
Tests for the AES-256-GCM token cipher.
"""

import base64

import pytest

from connectors.encryption import TokenCipher
from utils.errors import DecryptionError, EncryptionKeyError

KEY = base64.urlsafe_b64encode(b"\x01" * 32).decode()
CTX = {"user_id": "u1", "provider": "github", "field": "access_token"}


class TestTokenCipher:
    def test_decrypts_what_it_encrypted(self):
        cipher = TokenCipher(KEY)
        ct = cipher.encrypt("gho_secret", **CTX)
        assert "gho_secret" not in ct
        assert cipher.decrypt(ct, **CTX) == "gho_secret"

    def test_fresh_nonce_per_call(self):
        cipher = TokenCipher(KEY)
        assert cipher.encrypt("same", **CTX) != cipher.encrypt("same", **CTX)

    def test_standard_base64_key_accepted(self):
        key = base64.b64encode(b"\xfb" * 32).decode()
        cipher = TokenCipher(key)
        assert cipher.decrypt(cipher.encrypt("x", **CTX), **CTX) == "x"

    @pytest.mark.parametrize("field", ["provider", "user_id", "field"])
    def test_associated_data_is_bound(self, field):
        cipher = TokenCipher(KEY)
        ct = cipher.encrypt("token", **CTX)
        other = dict(CTX, **{field: "other"})
        with pytest.raises(DecryptionError):
            cipher.decrypt(ct, **other)

    def test_tampered_ciphertext_rejected(self):
        cipher = TokenCipher(KEY)
        ct = cipher.encrypt("token", **CTX)
        blob = bytearray(base64.urlsafe_b64decode(ct[3:]))
        blob[-1] ^= 0x01
        tampered = "v1:" + base64.urlsafe_b64encode(bytes(blob)).decode()
        with pytest.raises(DecryptionError):
            cipher.decrypt(tampered, **CTX)

    def test_wrong_key_rejected(self):
        ct = TokenCipher(KEY).encrypt("token", **CTX)
        other = TokenCipher(base64.urlsafe_b64encode(b"\x02" * 32).decode())
        with pytest.raises(DecryptionError):
            other.decrypt(ct, **CTX)

    @pytest.mark.parametrize("value", ["plaintext-token", "v1:AAAA"])
    def test_malformed_values_rejected(self, value):
        with pytest.raises(DecryptionError):
            TokenCipher(KEY).decrypt(value, **CTX)


class TestMasterKey:
    @pytest.mark.parametrize(
        "key",
        [
            "",
            base64.urlsafe_b64encode(b"short").decode(),
            base64.urlsafe_b64encode(b"x" * 31).decode(),
            base64.urlsafe_b64encode(b"x" * 33).decode(),
            "not base64 at all!!",
        ],
    )
    def test_bad_keys_fail_fast(self, key):
        with pytest.raises(EncryptionKeyError):
            TokenCipher(key)
