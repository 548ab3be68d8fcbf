"""
Envelope key management.

A random Data Encryption Key (DEK) encrypts every note. The DEK itself
is stored only wrapped under a Key Encryption Key (KEK) derived from the
passphrase and a per-repository salt. Changing the passphrase re-wraps
the same DEK, so encrypted history stays readable.

Unwrapping is the only passphrase check: a wrong passphrase shows up as
an authentication failure on the wrapped DEK, never earlier.
"""

from __future__ import annotations

import logging
import secrets
from typing import Union

from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import AuthenticationFailed
from ..keymaterial import Secret, as_secret
from .aead import KEY_LENGTH, SealError, seal, unseal

logger = logging.getLogger("holocron.crypto.envelope")

SALT_LENGTH = 16
DEFAULT_ITERATIONS = 300_000
MIN_ITERATIONS = 100_000


def generate_salt() -> bytes:
    """Random per-repository KDF salt."""
    return secrets.token_bytes(SALT_LENGTH)


def generate_dek() -> Secret:
    """Random 256-bit data encryption key."""
    return Secret(secrets.token_bytes(KEY_LENGTH), kind="dek")


def derive_kek(
    passphrase: Union[Secret, str],
    salt: bytes,
    iterations: int = DEFAULT_ITERATIONS,
) -> Secret:
    """Derive the key encryption key with PBKDF2-HMAC-SHA256.

    Deterministic: the same passphrase, salt and iteration count always
    yield the same key. Never fails for a wrong passphrase.

    Args:
        passphrase: User passphrase.
        salt: Per-repository salt from the config document.
        iterations: Work factor.

    Returns:
        The KEK as a Secret. Callers destroy it after use.
    """
    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    material = as_secret(passphrase, kind="passphrase").reveal()
    return Secret(kdf.derive(material), kind="kek")


def wrap_dek(dek: Secret, kek: Secret) -> bytes:
    """Encrypt the DEK under the KEK with a fresh nonce.

    Returns:
        ``nonce || tag || ciphertext``.
    """
    return seal(kek.reveal(), dek.reveal())


def unwrap_dek(wrapped: bytes, kek: Secret) -> Secret:
    """Decrypt a wrapped DEK.

    Raises:
        AuthenticationFailed: Wrong passphrase or corrupted wrapped key.
    """
    try:
        raw = unseal(kek.reveal(), wrapped)
    except SealError as exc:
        logger.debug("DEK unwrap failed: %s", exc)
        raise AuthenticationFailed("Invalid passphrase or corrupted key data") from exc
    return Secret(raw, kind="dek")
