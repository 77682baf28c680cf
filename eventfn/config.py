"""Configuration loading and validation for eventfn servers.

Configuration comes from an optional YAML file (``EVENTFN_CONFIG``) and
environment variables, which take precedence. The listen port is required;
a missing or invalid port is a startup error.
"""

import logging
import os
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "EVENTFN_CONFIG"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TRUE_VALUES = ("1", "true", "yes", "on")


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


class LoggingConfig(BaseModel):
    """Logging section of the configuration."""

    level: str = Field(default="INFO", description="Root log level")
    pretty: bool = Field(
        default=False, description="Pretty-print JSON logs (local development)"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate that the level is a standard logging level."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Log level must be one of {', '.join(_LOG_LEVELS)}")
        return level

    model_config = {"extra": "forbid"}


class ServerConfig(BaseModel):
    """Configuration schema for the HTTP server."""

    host: str = Field(default="0.0.0.0", description="Interface to listen on")
    port: int = Field(..., ge=1, le=65535, description="Port to listen on")
    request_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds until a request's context deadline (not enforced)",
    )
    client_max_size: int = Field(
        default=1024**2, ge=1, description="Maximum request body size in bytes"
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}


def _load_yaml(config_path: str) -> Dict[str, Any]:
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration must be a YAML dictionary")
    return data


def _merge_environment(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    server = dict(data.get("server") or {})
    logging_section = dict(data.get("logging") or {})

    if environ.get("PORT"):
        server["port"] = environ["PORT"]
    if environ.get("HOST"):
        server["host"] = environ["HOST"]
    if environ.get("EVENTFN_REQUEST_TIMEOUT"):
        server["request_timeout"] = environ["EVENTFN_REQUEST_TIMEOUT"]
    if environ.get("LOG_LEVEL"):
        logging_section["level"] = environ["LOG_LEVEL"]
    if environ.get("LOG_PRETTY"):
        logging_section["pretty"] = environ["LOG_PRETTY"].lower() in _TRUE_VALUES

    server["logging"] = logging_section
    return server


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """Load and validate server configuration.

    Args:
        config_path: Optional YAML file; defaults to ``$EVENTFN_CONFIG``
        environ: Environment to read; defaults to ``os.environ``

    Returns:
        Validated ServerConfig

    Raises:
        ConfigurationError: If the file is invalid or validation fails
    """
    if environ is None:
        environ = os.environ

    config_path = config_path or environ.get(CONFIG_PATH_ENV)
    data = _load_yaml(config_path) if config_path else {}

    unknown = set(data) - {"server", "logging"}
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration section(s): {', '.join(sorted(unknown))}"
        )

    merged = _merge_environment(data, environ)
    if "port" not in merged:
        raise ConfigurationError(
            "No listen port configured. Set the PORT environment variable "
            "or 'server.port' in the configuration file."
        )

    try:
        config = ServerConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.info(
        f"Configuration loaded: listening on {config.host}:{config.port}",
        extra={"config_path": config_path},
    )
    return config


def get_logging_config(config: Optional[ServerConfig]) -> LoggingConfig:
    """Get the logging section, falling back to defaults."""
    if config is None:
        return LoggingConfig()
    return config.logging
