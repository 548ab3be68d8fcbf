"""
Repository lifecycle -- init, unlock, passphrase rotation, migration.

    holocron init      ->  dirs + .gitignore + git init + salt/DEK + config.json
    unlock(passphrase) ->  derive KEK -> unwrap DEK -> Session
    rotate             ->  unwrap with old -> re-wrap the SAME DEK with new
    migrate            ->  legacy config.json.enc -> config.json (fresh DEK)

The remembered passphrase is sealed with the machine key and kept in
``.holocron/local/``, which never leaves this machine.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .audit import audit_event
from .config import HOLOCRON_DIR, LOCAL_DIR, ConfigRepository, ConfigState, RepoConfig
from .crypto.envelope import (
    DEFAULT_ITERATIONS,
    derive_kek,
    generate_dek,
    generate_salt,
    unwrap_dek,
    wrap_dek,
)
from .crypto.machine_key import decrypt_with_machine_key, encrypt_with_machine_key
from .errors import (
    AuthenticationFailed,
    InvalidInputError,
    MigrationRequired,
    NotFoundError,
)
from .keymaterial import Secret
from .session import Session
from .sync.git import GitClient
from .sync.runner import CommandRunner
from .sync.tree import ENCRYPTED_DIRS

logger = logging.getLogger("holocron.repo")

REPO_DIRS = (*ENCRYPTED_DIRS, "assets", HOLOCRON_DIR, LOCAL_DIR)
REMEMBERED_PASSPHRASE_FILE = f"{LOCAL_DIR}/passphrase.enc"
MIGRATED_SUFFIX = ".migrated"

GITIGNORE_LINES = [
    "# holocron: plaintext notes never leave this machine",
    *[line for name in ENCRYPTED_DIRS for line in (f"{name}/**", f"!{name}/**/", f"!{name}/**/*.enc")],
    f"{LOCAL_DIR}/",
    "*.tmp",
]

PassphraseLike = Union[Secret, str]


def _passphrase(value: PassphraseLike) -> Secret:
    if isinstance(value, Secret):
        return value
    return Secret.from_passphrase(value)


def write_gitignore(repo_root: Path) -> Path:
    """Write or extend ``.gitignore`` so plaintext notes stay untracked."""
    path = Path(repo_root) / ".gitignore"
    existing = path.read_text(encoding="utf-8").splitlines() if path.exists() else []
    missing = [line for line in GITIGNORE_LINES if line not in existing]
    if missing:
        lines = existing + ([""] if existing and existing[-1].strip() else []) + missing
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def is_holocron_repo(repo_root: Path) -> bool:
    """True when a config (current or legacy) exists."""
    return ConfigRepository(repo_root).state() != ConfigState.MISSING


def _seal_new_config(
    passphrase: Secret,
    dek: Secret,
    iterations: int,
    created_at: Optional[datetime] = None,
) -> RepoConfig:
    salt = generate_salt()
    kek = derive_kek(passphrase, salt, iterations)
    try:
        config = RepoConfig.create(salt, wrap_dek(dek, kek), iterations)
    finally:
        kek.destroy()
    if created_at is not None:
        config.created_at = created_at
    return config


def init_repo(
    repo_root: Path,
    passphrase: PassphraseLike,
    iterations: int = DEFAULT_ITERATIONS,
    runner: Optional[CommandRunner] = None,
) -> Session:
    """Create a new encrypted repository.

    Args:
        repo_root: Target directory (created if missing).
        passphrase: New passphrase, at least 8 characters.
        iterations: PBKDF2 work factor stored in the config.
        runner: Command runner for ``git init``.

    Returns:
        An unlocked session for the new repository.

    Raises:
        InvalidInputError: Passphrase too short, or already initialized.
        MigrationRequired: A legacy config is present.
    """
    root = Path(repo_root).expanduser()
    secret = _passphrase(passphrase)
    configs = ConfigRepository(root)

    state = configs.state()
    if state == ConfigState.PRESENT:
        raise InvalidInputError(
            f"Repository already initialized: {root}",
            hint="Use `holocron status` to inspect it.",
        )
    if state == ConfigState.LEGACY:
        raise MigrationRequired("Legacy encrypted config found; migration required", path=str(configs.legacy_path))

    for name in REPO_DIRS:
        (root / name).mkdir(parents=True, exist_ok=True)
    write_gitignore(root)

    git = GitClient(root, runner)
    if not git.is_repo():
        git.init()

    dek = generate_dek()
    configs.write(_seal_new_config(secret, dek, iterations))

    audit_event(root, "REPO_INIT", "Repository initialized", {"path": str(root)})
    logger.info("Initialized holocron repository at %s", root)
    return Session(dek, passphrase=secret)


def unlock(repo_root: Path, passphrase: PassphraseLike) -> Session:
    """Unwrap the DEK and open a session.

    Raises:
        AuthenticationFailed: Wrong passphrase or corrupted wrapped key.
        MigrationRequired: Only a legacy config exists.
        NotFoundError: Not a holocron repository.
        ValidationFailed: The config document is malformed.
    """
    root = Path(repo_root).expanduser()
    secret = _passphrase(passphrase)
    config = ConfigRepository(root).read()

    kek = derive_kek(secret, config.salt_bytes, config.kdf_iterations)
    try:
        dek = unwrap_dek(config.wrapped_dek_bytes, kek)
    except AuthenticationFailed:
        audit_event(root, "UNLOCK_FAILED", "Unlock failed: wrong passphrase or corrupted key")
        raise
    finally:
        kek.destroy()

    audit_event(root, "UNLOCK", "Repository unlocked")
    logger.info("Repository unlocked: %s", root)
    return Session(dek, passphrase=secret)


def rotate_passphrase(
    repo_root: Path,
    old_passphrase: PassphraseLike,
    new_passphrase: PassphraseLike,
    iterations: Optional[int] = None,
) -> RepoConfig:
    """Re-wrap the existing DEK under a new passphrase and fresh salt.

    Note content is untouched: the DEK does not change.

    Raises:
        AuthenticationFailed: The old passphrase is wrong.
        InvalidInputError: The new passphrase is too short.
    """
    root = Path(repo_root).expanduser()
    new_secret = _passphrase(new_passphrase)
    configs = ConfigRepository(root)
    current = configs.read()
    session = unlock(root, old_passphrase)

    try:
        with session.use_dek() as raw:
            dek = Secret(raw, kind="dek")
            try:
                rotated = _seal_new_config(
                    new_secret,
                    dek,
                    iterations or current.kdf_iterations,
                    created_at=current.created_at,
                )
            finally:
                dek.destroy()
        configs.write(rotated)
    finally:
        session.destroy()

    if remembered_passphrase_path(root).exists():
        remember_passphrase(root, new_secret.reveal_str())

    audit_event(root, "PASSPHRASE_ROTATE", "Passphrase rotated; data key unchanged")
    logger.info("Passphrase rotated for %s", root)
    return rotated


def migrate_legacy(
    repo_root: Path,
    passphrase: PassphraseLike,
    iterations: int = DEFAULT_ITERATIONS,
) -> Session:
    """Convert a legacy encrypted config into the current document.

    The legacy blob is decrypted to prove the passphrase, a fresh salt and
    DEK are sealed into ``config.json``, and the blob is kept beside it
    with a ``.migrated`` suffix. Notes encrypted in the old format are
    re-encrypted from plaintext on the next sync.

    Raises:
        NotFoundError: No legacy config present.
        AuthenticationFailed: Wrong passphrase.
        InvalidInputError: A current config already exists.
    """
    root = Path(repo_root).expanduser()
    secret = _passphrase(passphrase)
    configs = ConfigRepository(root)

    if configs.exists():
        raise InvalidInputError("Repository already uses the current config format")
    if not configs.legacy_path.exists():
        raise NotFoundError(f"Legacy config not found: {configs.legacy_path}")

    legacy = configs.read_legacy(secret.reveal())
    created_at = None
    raw_created = legacy.get("createdAt") if isinstance(legacy, dict) else None
    if raw_created:
        try:
            created_at = datetime.fromisoformat(str(raw_created).replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Ignoring unparseable legacy createdAt: %s", raw_created)

    dek = generate_dek()
    configs.write(_seal_new_config(secret, dek, iterations, created_at=created_at))

    backup = configs.legacy_path.with_name(configs.legacy_path.name + MIGRATED_SUFFIX)
    configs.legacy_path.replace(backup)
    write_gitignore(root)

    audit_event(
        root,
        "CONFIG_MIGRATE",
        "Legacy config migrated",
        {"backup": backup.name, "legacy_version": str(legacy.get("version", "")) if isinstance(legacy, dict) else ""},
    )
    logger.info("Migrated legacy config for %s (backup: %s)", root, backup)
    return Session(dek, passphrase=secret)


# ----------------------------------------------------------------------
# Remembered passphrase
# ----------------------------------------------------------------------


def remembered_passphrase_path(repo_root: Path) -> Path:
    return Path(repo_root).expanduser() / REMEMBERED_PASSPHRASE_FILE


def remember_passphrase(repo_root: Path, passphrase: str) -> Path:
    """Seal the passphrase with the machine key for prompt-free unlocks."""
    _passphrase(passphrase)
    path = remembered_passphrase_path(repo_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(encrypt_with_machine_key(passphrase), encoding="utf-8")
    try:
        path.chmod(0o600)
    except OSError as exc:
        logger.debug("Could not restrict permissions on %s: %s", path, exc)
    return path


def recall_passphrase(repo_root: Path) -> Optional[str]:
    """Return the remembered passphrase, or None when nothing is stored.

    Raises:
        AuthenticationFailed: Stored on another machine or corrupted.
    """
    path = remembered_passphrase_path(repo_root)
    if not path.exists():
        return None
    return decrypt_with_machine_key(path.read_text(encoding="utf-8"))


def forget_passphrase(repo_root: Path) -> bool:
    """Delete the remembered passphrase. Returns True if one existed."""
    path = remembered_passphrase_path(repo_root)
    if not path.exists():
        return False
    path.unlink()
    return True


def describe(repo_root: Path) -> dict:
    """Non-secret summary of the repository config for display."""
    configs = ConfigRepository(repo_root)
    state = configs.state()
    info: dict = {"path": str(configs.repo_root), "config": state.value}
    if state == ConfigState.PRESENT:
        config = configs.read()
        info.update(
            version=config.version,
            kdf_iterations=config.kdf_iterations,
            created_at=config.created_at.isoformat(),
            remembered=remembered_passphrase_path(repo_root).exists(),
        )
    return info

