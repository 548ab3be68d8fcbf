"""
The unlocked session -- the only place the plaintext DEK lives.

Created by ``holocron.repo.unlock`` and destroyed by the lock manager.
Crypto passes borrow the key through ``use_dek()``, which holds the
session lock so ``destroy()`` waits for in-flight passes to finish.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from .errors import SessionLockedError
from .keymaterial import Secret

logger = logging.getLogger("holocron.session")


class Session:
    """Holds the DEK (and optionally the passphrase) for one unlocked period.

    Args:
        dek: The unwrapped data encryption key.
        passphrase: The passphrase used to unlock, kept for rotation
            and remembered-passphrase flows.
    """

    def __init__(self, dek: Secret, passphrase: Optional[Secret] = None) -> None:
        self._dek = dek
        self._passphrase = passphrase
        self._lock = threading.RLock()
        self.unlocked_at = datetime.now(timezone.utc)

    @property
    def is_unlocked(self) -> bool:
        with self._lock:
            return self._dek is not None and not self._dek.destroyed

    @contextmanager
    def use_dek(self) -> Iterator[bytes]:
        """Borrow the raw DEK bytes for the duration of a crypto pass.

        Raises:
            SessionLockedError: If the session was destroyed.
        """
        with self._lock:
            if not self.is_unlocked:
                raise SessionLockedError("Session is locked")
            yield self._dek.reveal()

    def passphrase(self) -> Secret:
        """Return the passphrase held by this session.

        Raises:
            SessionLockedError: If locked or no passphrase was kept.
        """
        with self._lock:
            if not self.is_unlocked or self._passphrase is None:
                raise SessionLockedError("No passphrase available in this session")
            return self._passphrase

    def destroy(self) -> None:
        """Zeroize all key material. Safe to call more than once."""
        with self._lock:
            if self._dek is not None:
                self._dek.destroy()
                self._dek = None
            if self._passphrase is not None:
                self._passphrase.destroy()
                self._passphrase = None
        logger.info("Session key material destroyed")

    def __repr__(self) -> str:
        state = "unlocked" if self.is_unlocked else "locked"
        return f"<Session {state}>"
