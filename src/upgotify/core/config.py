"""
UnifiedPush Gotify distributor configuration

Runtime settings come from environment variables. The device credential lives
in a separate login file written by the login flow, and is loaded at startup.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

APP_DIR_NAME = "UnifiedPushGotify"

DEFAULT_HTTP_TIMEOUT = 10.0
DEFAULT_STREAM_IDLE_TIMEOUT = 50.0
DEFAULT_RECONNECT_DELAY = 10.0
DEFAULT_RECONCILE_INTERVAL = 120.0


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class LoginFile:
    """Credential record produced by the login flow."""

    gotify_base_url: str
    gotify_device_token: str

    @classmethod
    def from_dict(cls, data: dict) -> LoginFile:
        try:
            base_url = str(data["gotify_base_url"]).strip()
            device_token = str(data["gotify_device_token"]).strip()
        except (KeyError, TypeError) as exc:
            raise ConfigurationError(f"Login file is missing field: {exc}") from exc
        if not base_url or not device_token:
            raise ConfigurationError("Login file has an empty base URL or device token")
        return cls(
            gotify_base_url=base_url.rstrip("/"),
            gotify_device_token=device_token,
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "gotify_base_url": self.gotify_base_url,
            "gotify_device_token": self.gotify_device_token,
        }


def default_config_dir() -> Path:
    """Per-user config directory, following XDG_CONFIG_HOME when set."""
    xdg = os.getenv("XDG_CONFIG_HOME", "").strip()
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / APP_DIR_NAME


def load_login_file(path: Path) -> LoginFile:
    """
    Read and validate the credential record.

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(
            f"Login file not found at {path}. Sign in to Gotify first."
        ) from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read login file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Login file {path} must contain a JSON object")
    return LoginFile.from_dict(data)


def _get_float(env_var: str, default: float) -> float:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{env_var} must be positive, got {raw!r}")
    return value


@dataclass
class DistributorConfig:
    """Settings for one distributor process."""

    config_dir: Path = field(default_factory=default_config_dir)
    login_file: Path | None = None
    db_path: Path | None = None
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    stream_idle_timeout: float = DEFAULT_STREAM_IDLE_TIMEOUT
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    reconcile_interval: float = DEFAULT_RECONCILE_INTERVAL
    log_level: str = "INFO"
    log_file: str | None = None
    environment: str = "production"

    def __post_init__(self) -> None:
        self.config_dir = Path(self.config_dir)
        if self.login_file is None:
            self.login_file = self.config_dir / "login.json"
        if self.db_path is None:
            self.db_path = self.config_dir / "database.db"

    @classmethod
    def from_env(cls) -> DistributorConfig:
        """
        Build configuration from UPGOTIFY_* environment variables.

        Raises:
            ConfigurationError: If a numeric setting is malformed or not positive
        """
        config_dir = os.getenv("UPGOTIFY_CONFIG_DIR", "").strip()
        login_file = os.getenv("UPGOTIFY_LOGIN_FILE", "").strip()
        db_path = os.getenv("UPGOTIFY_DB_PATH", "").strip()
        log_level = os.getenv("UPGOTIFY_LOG_LEVEL", "INFO").strip().upper() or "INFO"
        if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"UPGOTIFY_LOG_LEVEL is not a log level: {log_level!r}")

        config = cls(
            config_dir=Path(config_dir) if config_dir else default_config_dir(),
            login_file=Path(login_file) if login_file else None,
            db_path=Path(db_path) if db_path else None,
            http_timeout=_get_float("UPGOTIFY_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            stream_idle_timeout=_get_float("UPGOTIFY_STREAM_IDLE_TIMEOUT", DEFAULT_STREAM_IDLE_TIMEOUT),
            reconnect_delay=_get_float("UPGOTIFY_RECONNECT_DELAY", DEFAULT_RECONNECT_DELAY),
            reconcile_interval=_get_float("UPGOTIFY_RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL),
            log_level=log_level,
            log_file=os.getenv("UPGOTIFY_LOG_FILE", "").strip() or None,
            environment=os.getenv("UPGOTIFY_ENVIRONMENT", "").strip() or "production",
        )
        logger.debug(
            "Configuration loaded",
            extra={"event": "config.loaded", "config_dir": str(config.config_dir)},
        )
        return config

    def load_login(self) -> LoginFile:
        return load_login_file(self.login_file)
