"""
Key material wrapper -- secrets that refuse to leak.

A ``Secret`` keeps its bytes in a mutable buffer so they can be
overwritten on destroy. It redacts itself in repr/str, cannot be
pickled or copied, and compares in constant time.
"""

from __future__ import annotations

import hmac
from typing import Union

MIN_PASSPHRASE_LENGTH = 8


class Secret:
    """A zeroizable secret value.

    Args:
        value: Raw secret bytes (or str, encoded as UTF-8).
        kind: Label used in the redacted representation
            (``passphrase``, ``dek``, ``kek``, ``machine``, ``secret``).
    """

    __slots__ = ("_buf", "_kind", "_destroyed")

    def __init__(self, value: Union[bytes, bytearray, str], kind: str = "secret") -> None:
        if isinstance(value, str):
            value = value.encode("utf-8")
        if not value:
            raise ValueError("Secret value must be non-empty")
        self._buf = bytearray(value)
        self._kind = kind
        self._destroyed = False

    @classmethod
    def from_passphrase(cls, passphrase: str) -> "Secret":
        """Wrap a user passphrase, enforcing the minimum length.

        Raises:
            InvalidInputError: If the passphrase is missing or too short.
        """
        from .errors import InvalidInputError

        if not passphrase or len(passphrase) < MIN_PASSPHRASE_LENGTH:
            raise InvalidInputError(
                f"Passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters",
                hint="Choose a longer passphrase.",
            )
        return cls(passphrase, kind="passphrase")

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def reveal(self) -> bytes:
        """Return the raw bytes.

        Raises:
            ValueError: If the secret was destroyed.
        """
        if self._destroyed:
            raise ValueError(f"{self._kind} secret has been destroyed")
        return bytes(self._buf)

    def reveal_str(self) -> str:
        return self.reveal().decode("utf-8")

    def destroy(self) -> None:
        """Overwrite the buffer with zeros and mark the secret unusable."""
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf = bytearray()
        self._destroyed = True

    def __len__(self) -> int:
        return len(self._buf)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Secret):
            return NotImplemented
        return hmac.compare_digest(bytes(self._buf), bytes(other._buf))

    def __hash__(self) -> int:
        return id(self)

    def __repr__(self) -> str:
        return f"[Secret:{self._kind}:REDACTED]"

    __str__ = __repr__

    def __reduce__(self):
        raise TypeError("Secret values cannot be pickled")

    def __copy__(self):
        raise TypeError("Secret values cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("Secret values cannot be copied")


def as_secret(value: Union["Secret", str, bytes], kind: str = "secret") -> Secret:
    """Coerce a plain str/bytes into a Secret, passing Secrets through."""
    if isinstance(value, Secret):
        return value
    return Secret(value, kind=kind)
