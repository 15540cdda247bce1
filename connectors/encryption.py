"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses AES-256-GCM (``AESGCM`` from the ``cryptography`` library) with a fresh
96-bit nonce per call.  The associated data binds every ciphertext to
``user_id:provider:field``, so a value copied onto another row or column
fails authentication instead of decrypting.

The master key comes from ``config.encryption_master_key`` (env var:
``ENCRYPTION_MASTER_KEY``) and must be base64 that decodes to exactly
32 bytes.  Generate one with::

    python -c "import os, base64; print(base64.urlsafe_b64encode(os.urandom(32)).decode())"
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from utils.errors import DecryptionError, EncryptionKeyError

logger = logging.getLogger(__name__)

_VERSION_PREFIX = "v1:"
_NONCE_BYTES = 12


def _decode_key(raw: str) -> bytes:
    if not raw:
        raise EncryptionKeyError("ENCRYPTION_MASTER_KEY is not set")
    padded = raw.strip() + "=" * (-len(raw.strip()) % 4)
    for decoder in (base64.urlsafe_b64decode, base64.b64decode):
        try:
            key = decoder(padded)
        except (binascii.Error, ValueError):
            continue
        if len(key) == 32:
            return key
    raise EncryptionKeyError("ENCRYPTION_MASTER_KEY must be base64 encoding exactly 32 bytes")


class TokenCipher:
    """AES-256-GCM cipher for credential fields."""

    def __init__(self, master_key: str) -> None:
        self._aesgcm = AESGCM(_decode_key(master_key))

    @staticmethod
    def _aad(user_id: str, provider: str, field: str) -> bytes:
        return f"{user_id}:{provider}:{field}".encode()

    def encrypt(self, plaintext: str, *, user_id: str, provider: str, field: str) -> str:
        nonce = os.urandom(_NONCE_BYTES)
        ct = self._aesgcm.encrypt(nonce, plaintext.encode(), self._aad(user_id, provider, field))
        return _VERSION_PREFIX + base64.urlsafe_b64encode(nonce + ct).decode()

    def decrypt(self, ciphertext: str, *, user_id: str, provider: str, field: str) -> str:
        if not ciphertext.startswith(_VERSION_PREFIX):
            raise DecryptionError("Unrecognised ciphertext format", provider=provider)
        try:
            blob = base64.urlsafe_b64decode(ciphertext[len(_VERSION_PREFIX):])
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Ciphertext is not valid base64", provider=provider) from exc
        if len(blob) < _NONCE_BYTES + 16:
            raise DecryptionError("Ciphertext is truncated", provider=provider)
        nonce, ct = blob[:_NONCE_BYTES], blob[_NONCE_BYTES:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, ct, self._aad(user_id, provider, field))
        except InvalidTag as exc:
            logger.error("Credential authentication failed for %s/%s (%s)", user_id, provider, field)
            raise DecryptionError("Credential failed authentication", provider=provider) from exc
        return plaintext.decode()
