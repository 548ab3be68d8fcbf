"""Tests for the config document, user settings and the audit trail."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest
import yaml

from holocron.audit import audit_event, audit_log_path, read_audit_log
from holocron.config import (
    CONFIG_FILE,
    LEGACY_CONFIG_FILE,
    ConfigRepository,
    ConfigState,
    RepoConfig,
    validate_config,
)
from holocron.errors import MigrationRequired, NotFoundError, ValidationFailed
from holocron.settings import (
    SETTINGS_FILE,
    HolocronSettings,
    ScheduleConfig,
    load_settings,
    save_settings,
)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def document() -> dict:
    return {
        "version": "2.0",
        "kdfSalt": _b64(b"s" * 16),
        "kdfIterations": 300_000,
        "wrappedDEK": _b64(b"w" * 60),
        "createdAt": "2026-01-01T00:00:00+00:00",
    }


class TestValidation:
    """Schema validation of the config document."""

    def test_valid_document(self, document):
        config = validate_config(document)
        assert config.salt_bytes == b"s" * 16
        assert config.wrapped_dek_bytes == b"w" * 60

    def test_missing_fields_reported(self, document):
        del document["kdfSalt"]
        del document["wrappedDEK"]
        with pytest.raises(ValidationFailed) as exc_info:
            validate_config(document)
        assert set(exc_info.value.fields) == {"kdfSalt", "wrappedDEK"}

    def test_bad_base64(self, document):
        document["kdfSalt"] = "not*base64"
        with pytest.raises(ValidationFailed) as exc_info:
            validate_config(document)
        assert exc_info.value.fields == ["kdfSalt"]

    def test_iterations_floor(self, document):
        document["kdfIterations"] = 10
        with pytest.raises(ValidationFailed):
            validate_config(document)

    def test_iterations_optional(self, document):
        del document["kdfIterations"]
        assert validate_config(document).kdf_iterations == 300_000

    def test_document_uses_camel_case(self):
        doc = RepoConfig.create(b"s" * 16, b"w" * 60).to_document()
        assert {"version", "kdfSalt", "kdfIterations", "wrappedDEK", "createdAt"} <= set(doc)


class TestConfigRepository:
    """Reading, writing and legacy detection."""

    def test_missing(self, repo_root):
        repo = ConfigRepository(repo_root)
        assert repo.state() == ConfigState.MISSING
        assert not repo.exists()
        with pytest.raises(NotFoundError):
            repo.read()

    def test_write_then_read(self, repo_root):
        repo = ConfigRepository(repo_root)
        repo.write(RepoConfig.create(b"s" * 16, b"w" * 60, iterations=150_000))
        assert repo.state() == ConfigState.PRESENT
        loaded = repo.read()
        assert loaded.kdf_iterations == 150_000
        assert loaded.updated_at is not None
        raw = json.loads((repo_root / CONFIG_FILE).read_text())
        assert raw["version"] == "2.0"

    def test_invalid_json(self, repo_root):
        (repo_root / CONFIG_FILE).write_text("{not json")
        with pytest.raises(ValidationFailed):
            ConfigRepository(repo_root).read()

    def test_invalid_structure_is_distinct_from_io(self, repo_root):
        (repo_root / CONFIG_FILE).write_text(json.dumps({"version": "2.0"}))
        with pytest.raises(ValidationFailed) as exc_info:
            ConfigRepository(repo_root).read()
        assert "kdfSalt" in exc_info.value.fields

    def test_legacy_blob_requires_migration(self, repo_root):
        (repo_root / LEGACY_CONFIG_FILE).parent.mkdir()
        (repo_root / LEGACY_CONFIG_FILE).write_text("b3BhcXVl")
        repo = ConfigRepository(repo_root)
        assert repo.state() == ConfigState.LEGACY
        with pytest.raises(MigrationRequired) as exc_info:
            repo.read()
        assert exc_info.value.path == str(repo_root / ".localnote" / "config.json.enc")
        assert (repo_root / LEGACY_CONFIG_FILE).read_text() == "b3BhcXVl"

    def test_current_config_wins_over_legacy(self, repo_root, document):
        (repo_root / LEGACY_CONFIG_FILE).parent.mkdir()
        (repo_root / LEGACY_CONFIG_FILE).write_text("b3BhcXVl")
        (repo_root / CONFIG_FILE).write_text(json.dumps(document))
        assert ConfigRepository(repo_root).state() == ConfigState.PRESENT


class TestSettings:
    """YAML user settings with validation and safe defaults."""

    def test_defaults(self, repo_root):
        settings = load_settings(repo_root)
        assert settings.schedule.interval_enabled is False
        assert settings.lock.idle_timeout_seconds == 900
        assert settings.lock.warning_seconds == 60
        assert settings.sync.remote == "origin"

    def test_roundtrip(self, repo_root):
        settings = HolocronSettings()
        settings.schedule = ScheduleConfig(intervalEnabled=True, intervalMinutes=5, daysOfWeek=[5, 1, 1])
        save_settings(repo_root, settings)
        loaded = load_settings(repo_root)
        assert loaded.schedule.interval_enabled is True
        assert loaded.schedule.interval_minutes == 5
        assert loaded.schedule.days_of_week == [1, 5]

    def test_broken_yaml_falls_back(self, repo_root):
        (repo_root / SETTINGS_FILE).write_text("schedule: [unclosed")
        assert load_settings(repo_root) == HolocronSettings()

    def test_invalid_values_fall_back(self, repo_root):
        (repo_root / SETTINGS_FILE).write_text(
            yaml.dump({"schedule": {"time_of_day": "25:99"}})
        )
        assert load_settings(repo_root).schedule.time_of_day == "17:00"

    def test_schedule_validation(self):
        with pytest.raises(ValueError):
            ScheduleConfig(intervalMinutes=0)
        with pytest.raises(ValueError):
            ScheduleConfig(daysOfWeek=[7])
        with pytest.raises(ValueError):
            ScheduleConfig(timeOfDay="9:00")


class TestAudit:
    """JSONL audit trail in the local-only directory."""

    def test_event_written_and_read(self, repo_root):
        entry = audit_event(repo_root, "UNLOCK", "Repository unlocked", {"k": 1})
        assert entry is not None
        assert audit_log_path(repo_root).parent == repo_root / ".holocron" / "local"
        entries = read_audit_log(repo_root)
        assert [e.event_type for e in entries] == ["UNLOCK"]
        assert entries[0].metadata == {"k": 1}

    def test_limit_keeps_latest(self, repo_root):
        for i in range(5):
            audit_event(repo_root, "SYNC_COMMIT", f"commit {i}")
        entries = read_audit_log(repo_root, limit=2)
        assert [e.detail for e in entries] == ["commit 3", "commit 4"]

    def test_unparseable_lines_kept(self, repo_root):
        audit_event(repo_root, "LOCK", "locked")
        with audit_log_path(repo_root).open("a") as f:
            f.write("garbage\n")
        entries = read_audit_log(repo_root)
        assert entries[-1].event_type == "UNPARSEABLE"

    def test_write_failure_is_silent(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        assert audit_event(blocker, "LOCK", "locked") is None

    def test_empty_log(self, repo_root):
        assert read_audit_log(repo_root) == []
