"""
Note manifest -- which plaintext notes exist on this machine.

A ciphertext file without a plaintext sibling means one of two things:
the note was never decrypted here (fresh clone, new note from another
machine) or the user deleted it. The manifest tells them apart. It sits
in the local-only directory and is never committed.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, Field, ValidationError

from ..config import LOCAL_DIR
from ..crypto.codec import atomic_write

logger = logging.getLogger("holocron.sync.manifest")

MANIFEST_FILE = f"{LOCAL_DIR}/manifest.json"


class ManifestDocument(BaseModel):
    """On-disk manifest: repo-relative plaintext paths."""

    version: int = 1
    notes: list[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class NoteManifest:
    """Tracks plaintext notes materialized in one working tree."""

    def __init__(self, repo_root: Path) -> None:
        self.path = Path(repo_root) / MANIFEST_FILE
        self._lock = threading.Lock()

    def load(self) -> set[str]:
        """Known plaintext paths; an unreadable manifest counts as empty."""
        if not self.path.exists():
            return set()
        try:
            document = ManifestDocument.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable note manifest %s: %s", self.path, exc)
            return set()
        return set(document.notes)

    def update(self, add: Iterable[str] = (), remove: Iterable[str] = ()) -> None:
        with self._lock:
            current = self.load()
            notes = (current | set(add)) - set(remove)
            if notes == current and self.path.exists():
                return
            document = ManifestDocument(notes=sorted(notes), updated_at=datetime.now(timezone.utc))
            try:
                atomic_write(self.path, document.model_dump_json(indent=2).encode("utf-8"))
            except OSError as exc:
                # Without a manifest, deletions are not detected; nothing is lost.
                logger.warning("Cannot write note manifest %s: %s", self.path, exc)
