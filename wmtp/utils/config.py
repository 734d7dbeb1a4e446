"""Configuration manager for persistent client settings stored as JSON."""

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import (
    ConfigurationError,
    FileSystemError,
    InvalidConfigError,
    MissingConfigError,
    WMTPError,
)
from .logging import get_logger, log_call
from .paths import CONFIG_PATH

logger = get_logger(__name__)

# Environment variable -> dot-separated config key
ENV_OVERRIDES = {
    "WMTP_SERVER_URL": "server.url",
    "WMTP_CERT_HASH": "server.cert_hash",
    "WMTP_LOG_LEVEL": "logging.log_level",
}


class ServerConfig(BaseModel):
    """Pydantic model for the server endpoint."""

    url: str = "https://localhost:4433"
    cert_hash: Optional[str] = None  # base64 SHA-256 of a self-signed cert
    connect_timeout: float = 10.0  # in seconds
    max_frame_size: int = 1_048_576  # in characters


class SessionConfig(BaseModel):
    """Pydantic model for session handling."""

    persist: bool = True
    auto_resume: bool = True
    auto_init: bool = True
    store_backend: Literal["auto", "keyring", "file"] = "auto"
    storage_key: str = "wmtp_session"


class HeartbeatConfig(BaseModel):
    """Pydantic model for heartbeat liveness checks."""

    enabled: bool = True
    timeout: float = 15.0  # server sends HB every 5 seconds
    check_interval: float = 1.0


class ReconnectConfig(BaseModel):
    """Pydantic model for automatic reconnection."""

    enabled: bool = False
    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 30.0
    failure_threshold: int = 3
    recovery_timeout: float = 30.0


class LoggingConfig(BaseModel):
    """Pydantic model for logging settings."""

    log_level: str = "WARNING"
    max_file_size: int = 5_242_880  # 5 MB
    backup_count: int = 5


class AppConfig(BaseModel):
    """Pydantic model for overall client configuration."""

    version: str = "0.1.0"
    server: ServerConfig = Field(default_factory=ServerConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """Manages persistent client configuration."""

    def __init__(self, config_path: Optional[Path] = None, apply_env: bool = True):
        self.path = config_path or CONFIG_PATH
        self.config = self._load_or_create_config()
        if apply_env:
            self._apply_env_overrides()
        logger.info(f"Configuration loaded from {self.path}")

    def _load_or_create_config(self) -> AppConfig:
        """Load configuration from file or create default if not present."""

        if not self.path.exists():
            logger.info("No config file found, creating default configuration.")
            config = AppConfig()
            self._save_config(config)
            return config

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            config = AppConfig(**data)
            logger.debug("Configuration successfully loaded and validated.")
            return config

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse config file: {e}")
            raise InvalidConfigError(
                f"Configuration file is not valid JSON: {str(e)}"
            ) from e
        except ValidationError as e:
            logger.error(f"Failed to validate config file: {e}")
            raise InvalidConfigError(
                f"Configuration data does not match expected schema: {str(e)}"
            ) from e
        except TypeError as e:
            raise InvalidConfigError(
                f"Configuration file must contain a JSON object: {str(e)}"
            ) from e
        except OSError as e:
            raise FileSystemError(f"Failed to read configuration file: {str(e)}") from e

    def _apply_env_overrides(self) -> None:
        """Apply WMTP_* environment variables on top of the file values."""

        for env_var, key_path in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                self.set_config(key_path, value, persist=False)
                logger.debug(f"Config key '{key_path}' overridden from {env_var}")

    def _save_config(self, config: Optional[AppConfig] = None) -> None:
        """Save the current configuration to file."""

        config = config or self.config

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(config.model_dump(), f, indent=2, ensure_ascii=False)
            logger.debug("Configuration successfully saved.")
        except OSError as e:
            raise FileSystemError(
                f"Failed to write configuration file: {str(e)}"
            ) from e

    @log_call
    def get_config(self, key_path: str) -> Any:
        """Get a configuration value using a dot-separated key path."""

        obj: Any = self.config
        for key in key_path.split("."):
            if not hasattr(obj, key):
                raise MissingConfigError(
                    f"Configuration path '{key_path}' is invalid: '{key}' not found"
                )
            obj = getattr(obj, key)

        return obj

    @log_call
    def set_config(self, key_path: str, value: Any, persist: bool = True) -> None:
        """Set a configuration value using dot-separated key path.

        The owning section is re-validated so string values from the
        environment are coerced to the field type.
        """

        try:
            keys = key_path.split(".")
            section_path, field = keys[:-1], keys[-1]

            parent: Any = self.config
            for key in section_path:
                if not hasattr(parent, key):
                    raise MissingConfigError(
                        f"Configuration path '{key_path}' is invalid: '{key}' not found"
                    )
                parent = getattr(parent, key)

            if field not in type(parent).model_fields:
                raise MissingConfigError(
                    f"Configuration key '{field}' does not exist in path '{key_path}'"
                )

            updated = type(parent).model_validate(
                {**parent.model_dump(), field: value}
            )
            setattr(parent, field, getattr(updated, field))

            if persist:
                self._save_config()

            logger.info(f"Config key '{key_path}' updated.")

        except ValidationError as e:
            raise InvalidConfigError(
                f"Invalid value for configuration key '{key_path}': {str(e)}"
            ) from e
        except WMTPError:
            raise
        except Exception as e:
            raise ConfigurationError(
                f"Failed to set configuration key '{key_path}': {str(e)}"
            ) from e

    @log_call
    def reset_to_defaults(self) -> None:
        """Reset configuration to default values."""

        logger.warning("Resetting configuration to default values.")
        self.config = AppConfig()
        self._save_config()
        logger.info("Configuration reset to default values.")


## Module-level accessor

_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get or create the shared ConfigManager."""
    global _config_manager

    if _config_manager is None:
        _config_manager = ConfigManager()

    return _config_manager
