from pathlib import Path

import pytest

from modsentry.configuration.app_configuration import AppConfig


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "app_config.yml"


def test_app_config_reload_parses_yaml(config_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("MODSENTRY_DB_PATH", raising=False)
    config_path.write_text(
        """
database:
  path: /tmp/somewhere/mod.db
automod:
  spam_cleanup_interval_seconds: 30
  regex_cache_size: 10
  regex_timeout_seconds: 0.25
  default_timeout_seconds: 120
retention:
  batch_size: 250
  min_retention_days: 7
events:
  message_create_subject: custom.create
storage:
  local_root: /srv/blobs
""",
        encoding="utf-8",
    )

    config = AppConfig(config_path)

    assert config.database_path == Path("/tmp/somewhere/mod.db")
    assert config.spam_cleanup_interval == 30.0
    assert config.spam_retention == 3600.0
    assert config.regex_cache_size == 10
    assert config.regex_timeout == 0.25
    assert config.default_timeout_seconds == 120
    assert config.retention_batch_size == 250
    assert config.min_retention_days == 7
    assert config.message_create_subject == "custom.create"
    assert config.message_delete_subject == "modsentry.message.delete"
    assert config.storage_root == Path("/srv/blobs")


def test_app_config_missing_file_returns_defaults(tmp_path: Path) -> None:
    config = AppConfig(tmp_path / "does_not_exist.yml")

    assert config.data == {}
    assert config.retention_batch_size == 1000
    assert config.retention_interval == 3600.0
    assert config.retention_reschedule_hours == 24.0
    assert config.audit_excerpt_length == 200
    assert config.regex_timeout == 0.1
    assert config.automod_action_subject == "modsentry.automod.action"
    assert config.message_delete_bulk_subject == "modsentry.message.delete_bulk"
    assert config.storage_root is None


def test_app_config_ignores_non_mapping_documents(config_path: Path) -> None:
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    config = AppConfig(config_path)

    assert config.data == {}
    assert config.default_timeout_seconds == 60


def test_app_config_bad_values_fall_back(config_path: Path) -> None:
    config_path.write_text("automod: not-a-section\nretention:\n  batch_size: lots\n", encoding="utf-8")

    config = AppConfig(config_path)

    assert config.regex_cache_size == 1000
    assert config.retention_batch_size == 1000


def test_database_path_env_override(config_path: Path, tmp_path: Path, monkeypatch) -> None:
    config_path.write_text("database:\n  path: ignored.db\n", encoding="utf-8")
    monkeypatch.setenv("MODSENTRY_DB_PATH", str(tmp_path / "env.db"))

    assert AppConfig(config_path).database_path == tmp_path / "env.db"


def test_reload_picks_up_changes(config_path: Path) -> None:
    config_path.write_text("retention:\n  batch_size: 10\n", encoding="utf-8")
    config = AppConfig(config_path)
    assert config.retention_batch_size == 10

    config_path.write_text("retention:\n  batch_size: 20\n", encoding="utf-8")
    assert config.reload() == {"retention": {"batch_size": 20}}
    assert config.retention_batch_size == 20
