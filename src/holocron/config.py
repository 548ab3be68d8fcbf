"""
Repository config document -- plaintext, schema-validated, committed.

    .holocron/config.json
    {
      "version": "2.0",
      "kdfSalt": "<base64>",
      "kdfIterations": 300000,
      "wrappedDEK": "<base64 nonce||tag||ciphertext>",
      "createdAt": "2026-01-01T00:00:00+00:00"
    }

Nothing in this document is secret. The DEK inside it is wrapped under
the passphrase-derived KEK.

Older repositories kept an opaque encrypted blob at
``.localnote/config.json.enc`` instead. Its presence alone means the
repository needs an explicit migration; it is never converted silently.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .crypto.codec import atomic_write
from .crypto.envelope import DEFAULT_ITERATIONS, MIN_ITERATIONS
from .errors import MigrationRequired, NotFoundError, ValidationFailed

logger = logging.getLogger("holocron.config")

CONFIG_VERSION = "2.0"
HOLOCRON_DIR = ".holocron"
CONFIG_FILE = f"{HOLOCRON_DIR}/config.json"
LOCAL_DIR = f"{HOLOCRON_DIR}/local"

# The older ``.localnote`` layout kept its config as one encrypted blob.
LEGACY_DIR = ".localnote"
LEGACY_CONFIG_FILE = f"{LEGACY_DIR}/config.json.enc"
LEGACY_CONFIG_SALT = b"localnote-config-salt-v1"
LEGACY_CONFIG_ITERATIONS = 100_000
LEGACY_NONCE_LENGTH = 16


def _is_base64(value: str) -> bool:
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


class ConfigState(str, Enum):
    """What is on disk at the config location."""

    MISSING = "missing"
    PRESENT = "present"
    LEGACY = "legacy"


class RepoConfig(BaseModel):
    """The repository config document."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = CONFIG_VERSION
    kdf_salt: str = Field(alias="kdfSalt", min_length=1)
    kdf_iterations: int = Field(default=DEFAULT_ITERATIONS, alias="kdfIterations", ge=MIN_ITERATIONS)
    wrapped_dek: str = Field(alias="wrappedDEK", min_length=1)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="createdAt"
    )
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @field_validator("kdf_salt", "wrapped_dek")
    @classmethod
    def _must_be_base64(cls, value: str) -> str:
        if not _is_base64(value):
            raise ValueError("must be valid base64")
        return value

    @classmethod
    def create(cls, salt: bytes, wrapped_dek: bytes, iterations: int = DEFAULT_ITERATIONS) -> "RepoConfig":
        """Build a fresh document from raw salt and wrapped-DEK bytes."""
        return cls(
            kdfSalt=base64.b64encode(salt).decode("ascii"),
            wrappedDEK=base64.b64encode(wrapped_dek).decode("ascii"),
            kdfIterations=iterations,
        )

    @property
    def salt_bytes(self) -> bytes:
        return base64.b64decode(self.kdf_salt)

    @property
    def wrapped_dek_bytes(self) -> bytes:
        return base64.b64decode(self.wrapped_dek)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def validate_config(data: Any) -> RepoConfig:
    """Validate a raw document.

    Raises:
        ValidationFailed: With one issue per invalid or missing field.
    """
    try:
        return RepoConfig.model_validate(data)
    except ValidationError as exc:
        issues = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "<root>",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        raise ValidationFailed(
            f"Invalid config structure: {', '.join(i['field'] for i in issues)}",
            issues=issues,
        ) from exc


class ConfigRepository:
    """Reads and writes the config document for one repository.

    Args:
        repo_root: Repository root directory.
    """

    def __init__(self, repo_root: Path) -> None:
        self.repo_root = Path(repo_root).expanduser()
        self.config_path = self.repo_root / CONFIG_FILE
        self.legacy_path = self.repo_root / LEGACY_CONFIG_FILE

    def state(self) -> ConfigState:
        if self.config_path.exists():
            return ConfigState.PRESENT
        if self.legacy_path.exists():
            return ConfigState.LEGACY
        return ConfigState.MISSING

    def exists(self) -> bool:
        return self.state() == ConfigState.PRESENT

    def read(self) -> RepoConfig:
        """Load and validate the config document.

        Raises:
            MigrationRequired: Only the legacy blob is present.
            NotFoundError: No config at all.
            ValidationFailed: Malformed JSON or schema violation.
        """
        state = self.state()
        if state == ConfigState.LEGACY:
            raise MigrationRequired(
                "Legacy encrypted config found; migration required",
                path=str(self.legacy_path),
            )
        if state == ConfigState.MISSING:
            raise NotFoundError(f"Config not found: {self.config_path}")

        try:
            data = json.loads(self.config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValidationFailed(
                "Config is not valid JSON",
                issues=[{"field": "<root>", "message": str(exc)}],
            ) from exc
        return validate_config(data)

    def write(self, config: RepoConfig) -> Path:
        """Validate and atomically write the config document.

        Raises:
            ValidationFailed: If the document does not pass validation.
        """
        config.updated_at = datetime.now(timezone.utc)
        document = config.to_document()
        validate_config(document)
        atomic_write(
            self.config_path,
            (json.dumps(document, indent=2) + "\n").encode("utf-8"),
        )
        logger.info("Config written: %s", self.config_path)
        return self.config_path

    def read_legacy(self, passphrase: bytes) -> dict[str, Any]:
        """Decrypt the legacy blob.

        The legacy format is base64 text of ``iv(16) || tag(16) || ciphertext``
        under PBKDF2(passphrase, fixed salt).

        Raises:
            NotFoundError: No legacy blob on disk.
            AuthenticationFailed: Wrong passphrase or corrupted blob.
        """
        from cryptography.hazmat.primitives.hashes import SHA256
        from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

        from .crypto.aead import SealError, unseal
        from .errors import AuthenticationFailed

        if not self.legacy_path.exists():
            raise NotFoundError(f"Legacy config not found: {self.legacy_path}")

        key = PBKDF2HMAC(
            algorithm=SHA256(),
            length=32,
            salt=LEGACY_CONFIG_SALT,
            iterations=LEGACY_CONFIG_ITERATIONS,
        ).derive(passphrase)
        try:
            blob = base64.b64decode(self.legacy_path.read_text(encoding="utf-8").strip())
            plaintext = unseal(key, blob, nonce_length=LEGACY_NONCE_LENGTH)
            return json.loads(plaintext.decode("utf-8"))
        except (SealError, binascii.Error, ValueError) as exc:
            raise AuthenticationFailed("Cannot decrypt legacy config") from exc
