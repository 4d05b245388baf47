"""Tests for settings configuration utilities."""

from pathlib import Path

import pytest
import yaml

from src.config.settings import (
    FailedBatchPolicy,
    LogLevel,
    MediaServerType,
    ReelSyncConfig,
    find_yaml_config_file,
    get_data_path,
)


@pytest.fixture(autouse=True)
def isolate_working_directory(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Set the working directory to a temporary path for each test."""
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def data_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point RS_DATA_PATH at an empty directory."""
    path = tmp_path / "data"
    path.mkdir()
    monkeypatch.setenv("RS_DATA_PATH", str(path))
    return path


def _write_config(data_path: Path, content: dict, name: str = "config.yaml") -> Path:
    config_file = data_path / name
    config_file.write_text(yaml.safe_dump(content), encoding="utf-8")
    return config_file


def test_find_yaml_config_file_prefers_data_path(data_path: Path) -> None:
    """Test that find_yaml_config_file looks in RS_DATA_PATH."""
    config_file = _write_config(data_path, {"log_level": "DEBUG"})

    assert find_yaml_config_file() == config_file.resolve()
    assert get_data_path() == data_path.resolve()


def test_find_yaml_config_file_accepts_yml_extension(data_path: Path) -> None:
    """Test that a config.yml file is found when no config.yaml exists."""
    config_file = _write_config(data_path, {}, name="config.yml")

    assert find_yaml_config_file() == config_file.resolve()


def test_find_yaml_config_file_defaults_when_missing(data_path: Path) -> None:
    """Test that the default location is returned when no file exists."""
    assert find_yaml_config_file() == data_path / "config.yaml"


def test_config_loads_yaml_sections(data_path: Path) -> None:
    """Test that every section is read from the YAML file."""
    _write_config(
        data_path,
        {
            "log_level": "debug",
            "media_server": {
                "type": "Jellyfin",
                "url": "http://jellyfin:8096/",
                "api_key": "server-key",
                "parallel_fetches": 8,
            },
            "sync": {"db_batch_size": 250, "interval": 3600},
            "mdblist": {"api_key": "mdb-key", "base_url": "https://api.mdblist.com/"},
            "enrichment": {"failed_batch_policy": "LEAVE_PENDING"},
        },
    )

    config = ReelSyncConfig()

    assert config.log_level == LogLevel.DEBUG
    assert config.media_server.type == MediaServerType.JELLYFIN
    assert config.media_server.url == "http://jellyfin:8096"
    assert config.media_server.api_key.get_secret_value() == "server-key"
    assert config.media_server.parallel_fetches == 8
    assert config.media_server.is_configured is True
    assert (config.sync.db_batch_size, config.sync.interval) == (250, 3600)
    assert config.mdblist.base_url == "https://api.mdblist.com"
    assert config.mdblist.is_configured is True
    assert config.enrichment.failed_batch_policy == FailedBatchPolicy.LEAVE_PENDING


def test_config_defaults_without_file(data_path: Path) -> None:
    """Test that a missing file yields defaults with both integrations off."""
    config = ReelSyncConfig()

    assert config.media_server.type == MediaServerType.EMBY
    assert config.media_server.is_configured is False
    assert config.mdblist.is_configured is False
    assert config.sync.interval == 0
    assert config.sync.full_watch_history is False
    assert config.enrichment.failed_batch_policy == FailedBatchPolicy.MARK_PROCESSED
    assert config.data_path == data_path.resolve()


def test_init_values_override_yaml(data_path: Path) -> None:
    """Test that keyword arguments win over the YAML file."""
    _write_config(data_path, {"log_level": "INFO"})

    config = ReelSyncConfig(log_level="ERROR")

    assert config.log_level == LogLevel.ERROR


def test_config_str_hides_secrets(data_path: Path) -> None:
    """Test that the config summary never contains API keys."""
    _write_config(
        data_path,
        {
            "media_server": {"url": "http://emby:8096", "api_key": "server-key"},
            "mdblist": {"api_key": "mdb-key"},
        },
    )

    summary = str(ReelSyncConfig())

    assert "server-key" not in summary
    assert "mdb-key" not in summary
    assert "http://emby:8096" in summary
    assert "mdblist=on" in summary


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("series_page_size", 0),
        ("parallel_fetches", 0),
        ("request_timeout", 0),
    ],
)
def test_media_server_limits_are_validated(
    data_path: Path, field: str, value: int
) -> None:
    """Test that page sizes and parallelism must be positive."""
    _write_config(data_path, {"media_server": {field: value}})

    with pytest.raises(ValueError):
        ReelSyncConfig()
