"""
Note tree traversal.

Pure listings of the encrypted directories. Nothing here reads file
content or touches keys; the engine decides what to do with each path.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

from ..crypto.codec import ENCRYPTED_SUFFIX

ENCRYPTED_DIRS = ("notes", "kanban")
TEMP_SUFFIX = ".tmp"


def _walk(repo_root: Path) -> Iterator[Path]:
    root = Path(repo_root)
    for dirname in ENCRYPTED_DIRS:
        base = root / dirname
        if not base.is_dir():
            continue
        for path in sorted(base.rglob("*")):
            rel_parts = path.relative_to(base).parts
            if any(part.startswith(".") for part in rel_parts):
                continue
            if path.is_symlink() or not path.is_file():
                continue
            if path.name.endswith(TEMP_SUFFIX):
                continue
            yield path


def iter_plaintext_files(repo_root: Path) -> Iterator[Path]:
    """Yield every plaintext note or board file under the encrypted dirs."""
    for path in _walk(repo_root):
        if not path.name.endswith(ENCRYPTED_SUFFIX):
            yield path


def iter_ciphertext_files(repo_root: Path) -> Iterator[Path]:
    """Yield every ``*.enc`` file under the encrypted dirs."""
    for path in _walk(repo_root):
        if path.name.endswith(ENCRYPTED_SUFFIX):
            yield path


def is_encrypted_path(relative: str) -> bool:
    """True for a repo-relative ciphertext path inside an encrypted dir."""
    parts = relative.split("/")
    return (
        len(parts) > 1
        and parts[0] in ENCRYPTED_DIRS
        and relative.endswith(ENCRYPTED_SUFFIX)
    )
