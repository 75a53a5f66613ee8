"""
Tests for configuration loading and structured logging.
"""

import json
import logging
from pathlib import Path

import pytest

from upgotify.core.config import (
    ConfigurationError,
    DistributorConfig,
    LoginFile,
    default_config_dir,
    load_login_file,
)
from upgotify.core.logging_config import mask_token, setup_logging

ENV_VARS = [
    "UPGOTIFY_CONFIG_DIR",
    "UPGOTIFY_LOGIN_FILE",
    "UPGOTIFY_DB_PATH",
    "UPGOTIFY_HTTP_TIMEOUT",
    "UPGOTIFY_STREAM_IDLE_TIMEOUT",
    "UPGOTIFY_RECONNECT_DELAY",
    "UPGOTIFY_RECONCILE_INTERVAL",
    "UPGOTIFY_LOG_LEVEL",
    "UPGOTIFY_LOG_FILE",
    "UPGOTIFY_ENVIRONMENT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDistributorConfig:
    """Test environment-driven configuration."""

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        config = DistributorConfig.from_env()

        assert config.config_dir == tmp_path / "UnifiedPushGotify"
        assert config.login_file == tmp_path / "UnifiedPushGotify" / "login.json"
        assert config.db_path == tmp_path / "UnifiedPushGotify" / "database.db"
        assert config.http_timeout == 10.0
        assert config.stream_idle_timeout == 50.0
        assert config.reconnect_delay == 10.0
        assert config.reconcile_interval == 120.0
        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.environment == "production"

    def test_home_fallback(self, monkeypatch):
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)

        assert default_config_dir() == Path.home() / ".config" / "UnifiedPushGotify"

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("UPGOTIFY_CONFIG_DIR", str(tmp_path))
        monkeypatch.setenv("UPGOTIFY_DB_PATH", str(tmp_path / "other.db"))
        monkeypatch.setenv("UPGOTIFY_STREAM_IDLE_TIMEOUT", "30")
        monkeypatch.setenv("UPGOTIFY_RECONCILE_INTERVAL", "5.5")
        monkeypatch.setenv("UPGOTIFY_LOG_LEVEL", "debug")
        monkeypatch.setenv("UPGOTIFY_ENVIRONMENT", "staging")

        config = DistributorConfig.from_env()

        assert config.login_file == tmp_path / "login.json"
        assert config.db_path == tmp_path / "other.db"
        assert config.stream_idle_timeout == 30.0
        assert config.reconcile_interval == 5.5
        assert config.log_level == "DEBUG"
        assert config.environment == "staging"

    @pytest.mark.parametrize("value", ["soon", "0", "-3"])
    def test_invalid_number(self, monkeypatch, value):
        monkeypatch.setenv("UPGOTIFY_HTTP_TIMEOUT", value)

        with pytest.raises(ConfigurationError, match="UPGOTIFY_HTTP_TIMEOUT"):
            DistributorConfig.from_env()

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("UPGOTIFY_LOG_LEVEL", "LOUD")

        with pytest.raises(ConfigurationError):
            DistributorConfig.from_env()


class TestLoginFile:
    """Test credential record loading."""

    def test_load(self, tmp_path):
        path = tmp_path / "login.json"
        path.write_text(json.dumps({
            "gotify_base_url": "https://gotify.example.org/",
            "gotify_device_token": "Cdevice",
        }))

        login = load_login_file(path)

        assert login == LoginFile("https://gotify.example.org", "Cdevice")
        assert login.to_dict()["gotify_base_url"] == "https://gotify.example.org"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_login_file(tmp_path / "login.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "login.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_login_file(path)

    @pytest.mark.parametrize("data", [
        {"gotify_base_url": "https://gotify.example.org"},
        {"gotify_base_url": "", "gotify_device_token": "Cdevice"},
        ["not", "an", "object"],
    ])
    def test_invalid_content(self, tmp_path, data):
        path = tmp_path / "login.json"
        path.write_text(json.dumps(data))

        with pytest.raises(ConfigurationError):
            load_login_file(path)


class TestLogging:
    """Test structured JSON logging."""

    def test_json_output(self, capsys):
        logger = setup_logging(name="upgotify_test_json", level="INFO", environment="test")
        logger.info("Relay started", extra={"event": "relay.started", "message_id": 7})

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["message"] == "Relay started"
        assert record["event"] == "relay.started"
        assert record["message_id"] == 7
        assert record["level"] == "info"
        assert record["environment"] == "test"
        assert record["service"] == "upgotify_test_json"
        assert "timestamp" in record

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "upgotify.json"
        logger = setup_logging(
            name="upgotify_test_file",
            level="WARNING",
            log_file=str(log_file),
            enable_console=False,
        )
        logger.warning("Stream closed", extra={"event": "upstream.stream_closed"})
        for handler in logger.handlers:
            handler.flush()

        record = json.loads(log_file.read_text().strip())
        assert record["event"] == "upstream.stream_closed"

    def test_no_duplicate_handlers(self):
        setup_logging(name="upgotify_test_dupes")
        logger = setup_logging(name="upgotify_test_dupes")

        assert len(logger.handlers) == 1
        assert logger.level == logging.INFO

    def test_mask_token(self):
        assert mask_token("Cabcdefghijkl") == "Cabcde..."
        assert mask_token("short") == "***"
        assert mask_token(None) == ""
