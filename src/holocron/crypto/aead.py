"""
AES-256-GCM with a fixed on-disk layout.

Every blob is ``nonce(12) || tag(16) || ciphertext``. The layout is a
stable wire format shared by wrapped keys and encrypted note files.
"""

from __future__ import annotations

import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32
HEADER_LENGTH = NONCE_LENGTH + TAG_LENGTH


class SealError(Exception):
    """Raised when a blob is too short or its tag does not verify."""


def seal(key: bytes, plaintext: bytes, aad: Optional[bytes] = None, nonce_length: int = NONCE_LENGTH) -> bytes:
    """Encrypt and authenticate ``plaintext`` under ``key``.

    Args:
        key: 32-byte AES key.
        plaintext: Bytes to encrypt.
        aad: Optional additional authenticated data.
        nonce_length: Nonce size in bytes (12 unless reading a legacy format).

    Returns:
        ``nonce || tag || ciphertext``.
    """
    nonce = os.urandom(nonce_length)
    ct_and_tag = AESGCM(key).encrypt(nonce, plaintext, aad)
    ct, tag = ct_and_tag[:-TAG_LENGTH], ct_and_tag[-TAG_LENGTH:]
    return nonce + tag + ct


def unseal(key: bytes, blob: bytes, aad: Optional[bytes] = None, nonce_length: int = NONCE_LENGTH) -> bytes:
    """Verify and decrypt a blob produced by :func:`seal`.

    Raises:
        SealError: If the blob is truncated or authentication fails.
    """
    if len(blob) < nonce_length + TAG_LENGTH:
        raise SealError("Encrypted data too short")
    nonce = blob[:nonce_length]
    tag = blob[nonce_length:nonce_length + TAG_LENGTH]
    ct = blob[nonce_length + TAG_LENGTH:]
    try:
        return AESGCM(key).decrypt(nonce, ct + tag, aad)
    except InvalidTag as exc:
        raise SealError("Authentication tag mismatch") from exc
