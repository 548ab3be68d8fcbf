"""
Machine-bound key for local-only secrets.

Derived from stable machine identifiers so a stored secret (e.g. a
remembered passphrase) can be decrypted on this machine without
prompting. This is not a substitute for the passphrase-derived KEK:
anything sealed with it must stay under ``.holocron/local/``, which is
never committed.
"""

from __future__ import annotations

import base64
import platform
import socket

from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import AuthenticationFailed
from ..keymaterial import Secret
from .aead import KEY_LENGTH, SealError, seal, unseal

MACHINE_KEY_SALT = b"holocron-machine-key-v1"
MACHINE_KEY_ITERATIONS = 100_000
# Sealed values are iv(16) || tag(16) || ciphertext.
MACHINE_NONCE_LENGTH = 16


def machine_id() -> str:
    """Stable identifier for this machine: ``hostname-platform-arch``."""
    return f"{socket.gethostname()}-{platform.system().lower()}-{platform.machine()}"


def derive_machine_key() -> Secret:
    """Derive the machine key. Pure function of the machine identity."""
    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_LENGTH,
        salt=MACHINE_KEY_SALT,
        iterations=MACHINE_KEY_ITERATIONS,
    )
    return Secret(kdf.derive(machine_id().encode("utf-8")), kind="machine")


def encrypt_with_machine_key(plaintext: str) -> str:
    """Seal a short secret with the machine key.

    Returns:
        Base64 text safe to write to a local file.
    """
    key = derive_machine_key()
    try:
        blob = seal(key.reveal(), plaintext.encode("utf-8"), nonce_length=MACHINE_NONCE_LENGTH)
    finally:
        key.destroy()
    return base64.b64encode(blob).decode("ascii")


def decrypt_with_machine_key(ciphertext: str) -> str:
    """Open a secret sealed by :func:`encrypt_with_machine_key`.

    Raises:
        AuthenticationFailed: Sealed on another machine, or corrupted.
    """
    key = derive_machine_key()
    try:
        blob = base64.b64decode(ciphertext.strip(), validate=True)
        return unseal(key.reveal(), blob, nonce_length=MACHINE_NONCE_LENGTH).decode("utf-8")
    except (SealError, ValueError) as exc:
        raise AuthenticationFailed(
            "Stored secret cannot be decrypted on this machine",
            hint="Run `holocron forget` and enter your passphrase again.",
        ) from exc
    finally:
        key.destroy()
