"""
Per-file authenticated encryption bound to file identity.

A plaintext note at repository-relative path ``P`` is encrypted to
``P + ".enc"``. The relative path ``P`` (forward slashes) is the AAD, so a
ciphertext that is moved, renamed or replayed at another location fails
authentication instead of silently decrypting to the wrong note.

Layout: ``nonce(12) || tag(16) || ciphertext``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union

from ..errors import DecryptionFailed, InvalidInputError, NotFoundError, PermissionDeniedError
from ..keymaterial import Secret
from .aead import SealError, seal, unseal

logger = logging.getLogger("holocron.crypto.codec")

ENCRYPTED_SUFFIX = ".enc"

KeyLike = Union[Secret, bytes]


def _key_bytes(dek: KeyLike) -> bytes:
    return dek.reveal() if isinstance(dek, Secret) else dek


def relative_aad(path: Path, repo_root: Path) -> str:
    """Repository-relative, slash-normalized path used as AAD.

    Raises:
        PermissionDeniedError: If ``path`` resolves outside ``repo_root``.
    """
    root = Path(repo_root).resolve()
    full = (root / path).resolve() if not Path(path).is_absolute() else Path(path).resolve()
    try:
        rel = full.relative_to(root)
    except ValueError as exc:
        raise PermissionDeniedError(f"Path escapes repository: {path}") from exc
    return rel.as_posix()


def ciphertext_path(plaintext_path: Path) -> Path:
    """``notes/a.md`` -> ``notes/a.md.enc``."""
    return plaintext_path.with_name(plaintext_path.name + ENCRYPTED_SUFFIX)


def plaintext_path(ciphertext: Path) -> Path:
    """``notes/a.md.enc`` -> ``notes/a.md``.

    Raises:
        InvalidInputError: If the path lacks the ciphertext suffix.
    """
    if not ciphertext.name.endswith(ENCRYPTED_SUFFIX) or ciphertext.name == ENCRYPTED_SUFFIX:
        raise InvalidInputError(f"Not a ciphertext file: {ciphertext}")
    return ciphertext.with_name(ciphertext.name[: -len(ENCRYPTED_SUFFIX)])


def encrypt_bytes(data: bytes, dek: KeyLike, aad: str) -> bytes:
    """Encrypt raw bytes for the given relative path."""
    return seal(_key_bytes(dek), data, aad.encode("utf-8"))


def decrypt_bytes(blob: bytes, dek: KeyLike, aad: str) -> bytes:
    """Decrypt raw bytes for the given relative path.

    Raises:
        DecryptionFailed: Tag mismatch, truncation, or wrong location.
    """
    try:
        return unseal(_key_bytes(dek), blob, aad.encode("utf-8"))
    except SealError as exc:
        raise DecryptionFailed(f"Cannot decrypt {aad}{ENCRYPTED_SUFFIX}: {exc}") from exc


def encrypt_file(plaintext: Path, dek: KeyLike, repo_root: Path) -> bytes:
    """Encrypt a plaintext file's full content.

    Args:
        plaintext: Path to the plaintext note (absolute or repo-relative).
        dek: Data encryption key.
        repo_root: Repository root used to compute the AAD.

    Returns:
        Ciphertext bytes with a fresh nonce.

    Raises:
        NotFoundError: If the plaintext file does not exist.
        PermissionDeniedError: If the path escapes the repository.
    """
    root = Path(repo_root)
    full = plaintext if Path(plaintext).is_absolute() else root / plaintext
    aad = relative_aad(full, root)
    try:
        data = full.read_bytes()
    except FileNotFoundError as exc:
        raise NotFoundError(f"File not found: {aad}") from exc
    return encrypt_bytes(data, dek, aad)


def decrypt_file(ciphertext: Path, dek: KeyLike, repo_root: Path) -> bytes:
    """Decrypt a ciphertext file, binding it to its current location.

    The expected plaintext path is the ciphertext path without its suffix;
    its relative form is the AAD.

    Raises:
        NotFoundError: If the ciphertext file does not exist.
        DecryptionFailed: If the file was moved, truncated or corrupted.
    """
    root = Path(repo_root)
    full = ciphertext if Path(ciphertext).is_absolute() else root / ciphertext
    aad = relative_aad(plaintext_path(full), root)
    try:
        blob = full.read_bytes()
    except FileNotFoundError as exc:
        raise NotFoundError(f"File not found: {aad}{ENCRYPTED_SUFFIX}") from exc
    return decrypt_bytes(blob, dek, aad)


def atomic_write(path: Path, data: bytes) -> None:
    """Write via tmp + rename so readers never see a half-written file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_bytes(data)
    os.replace(tmp_path, path)


def write_encrypted(plaintext: Path, dek: KeyLike, repo_root: Path) -> Path:
    """Encrypt ``plaintext`` and write it next to itself as ``*.enc``.

    Returns:
        Path of the written ciphertext file.
    """
    root = Path(repo_root)
    full = plaintext if Path(plaintext).is_absolute() else root / plaintext
    target = ciphertext_path(full)
    atomic_write(target, encrypt_file(full, dek, root))
    logger.debug("Encrypted %s", relative_aad(full, root))
    return target


def write_decrypted(ciphertext: Path, dek: KeyLike, repo_root: Path) -> Path:
    """Decrypt ``ciphertext`` and write the plaintext sibling.

    Nothing is written when decryption fails.

    Returns:
        Path of the written plaintext file.
    """
    root = Path(repo_root)
    full = ciphertext if Path(ciphertext).is_absolute() else root / ciphertext
    data = decrypt_file(full, dek, root)
    target = plaintext_path(full)
    atomic_write(target, data)
    logger.debug("Decrypted %s", relative_aad(target, root))
    return target
