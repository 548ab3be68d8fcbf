"""
Holocron -- local-first encrypted notes, synchronized through git.

Notes live as plaintext on disk. Only ciphertext ever reaches the remote.
One passphrase unwraps one data key; the session forgets it when you walk away.
"""

import os

__version__ = "0.1.0"

DEFAULT_REPO = os.environ.get("HOLOCRON_REPO", ".")
