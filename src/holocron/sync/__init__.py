"""
Encrypted git sync.

Plaintext notes are encrypted before staging, committed and pushed as
ciphertext, and decrypted again after a pull.
"""

from .engine import SyncOrchestrator
from .git import GitClient
from .models import PassReport, PullResult, SyncOutcome, SyncResult, SyncState, SyncStatus
from .runner import CommandResult, CommandRunner, SubprocessRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "GitClient",
    "PassReport",
    "PullResult",
    "SubprocessRunner",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncResult",
    "SyncState",
    "SyncStatus",
]
