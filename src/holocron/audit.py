"""
Local audit trail.

One JSON object per line in ``.holocron/local/audit.log``. The file lives
in the local-only directory, so it never travels with the repository.
Audit writes never break the operation being audited.
"""

from __future__ import annotations

import json
import logging
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from .config import LOCAL_DIR

logger = logging.getLogger("holocron.audit")

AUDIT_LOG_NAME = "audit.log"


class AuditEntry(BaseModel):
    """A single structured audit log entry."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    event_type: str
    detail: str
    host: str = Field(default_factory=socket.gethostname)
    metadata: Optional[dict] = None


def audit_log_path(repo_root: Path) -> Path:
    return Path(repo_root) / LOCAL_DIR / AUDIT_LOG_NAME


def audit_event(
    repo_root: Path,
    event_type: str,
    detail: str,
    metadata: Optional[dict] = None,
) -> Optional[AuditEntry]:
    """Append an event to the audit log.

    Args:
        repo_root: Repository root.
        event_type: Event category (UNLOCK, LOCK, SYNC_COMMIT, ...).
        detail: Human-readable description.
        metadata: Optional structured extras. Never put secrets here.

    Returns:
        The written entry, or None if the log could not be written.
    """
    entry = AuditEntry(event_type=event_type, detail=detail, metadata=metadata)
    path = audit_log_path(repo_root)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(entry.model_dump_json() + "\n")
    except OSError as exc:
        logger.debug("Audit event skipped (%s): %s", event_type, exc)
        return None
    return entry


def read_audit_log(repo_root: Path, limit: int = 0) -> list[AuditEntry]:
    """Read the audit log.

    Args:
        repo_root: Repository root.
        limit: Keep only the last N entries (0 = all).
    """
    path = audit_log_path(repo_root)
    if not path.exists():
        return []

    entries: list[AuditEntry] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entries.append(AuditEntry.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ValueError):
            entries.append(AuditEntry(event_type="UNPARSEABLE", detail=line))

    if limit > 0:
        entries = entries[-limit:]
    return entries
