"""
Environment configuration for the Hello World API.

Settings are read once at startup into an immutable record that is handed
to every component explicitly.
"""
import os
import re
from dataclasses import dataclass
from typing import Mapping

import structlog

from hello_api.errors import ConfigError

logger = structlog.get_logger(__name__)

DEFAULT_PORT = 3000
DEFAULT_BODY_LIMIT = 10 * 1024 * 1024
SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024**2, "gb": 1024**3}
ENVIRONMENTS = ("development", "production", "test")
LOG_LEVELS = ("error", "warn", "info", "debug")


@dataclass(frozen=True)
class Settings:
    port: int = DEFAULT_PORT
    host: str = "localhost"
    env: str = "development"
    log_level: str = "info"
    app_name: str = "hello-api"
    request_timeout: float = 30.0
    max_body_size: int = DEFAULT_BODY_LIMIT
    trust_proxy: bool = False
    enable_logging: bool = True

    @property
    def is_development(self) -> bool:
        return self.env == "development"

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Validated settings

        Raises:
            ConfigError: A variable is present but unusable
        """
        if environ is None:
            environ = os.environ

        env = environ.get("APP_ENV", "development").strip().lower()
        if env not in ENVIRONMENTS:
            raise ConfigError(f"APP_ENV must be one of {', '.join(ENVIRONMENTS)}, got {env!r}")

        log_level = environ.get("LOG_LEVEL", "info").strip().lower()
        if log_level not in LOG_LEVELS:
            raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

        app_name = environ.get("APP_NAME", "hello-api").strip()
        if not app_name:
            raise ConfigError("APP_NAME configuration is required")

        host = environ.get("HOST", "localhost").strip()
        if not host:
            raise ConfigError("HOST must not be empty")

        return cls(
            port=_parse_port(environ.get("PORT")),
            host=host,
            env=env,
            log_level=log_level,
            app_name=app_name,
            request_timeout=_parse_timeout(environ.get("REQUEST_TIMEOUT")),
            max_body_size=_parse_size(environ.get("BODY_LIMIT")),
            trust_proxy=environ.get("TRUST_PROXY", "").strip().lower() == "true",
            enable_logging=environ.get("ENABLE_LOGGING", "").strip().lower() != "false",
        )


def _parse_port(raw: str | None) -> int:
    try:
        port = int(raw) if raw is not None else 0
    except ValueError:
        port = 0
    # Unset, unparsable and zero all mean "use the default".
    if port == 0:
        return DEFAULT_PORT
    if not 0 < port <= 65535:
        raise ConfigError(f"PORT must be between 1 and 65535, got {port}")
    return port


def _parse_timeout(raw: str | None) -> float:
    if raw is None or not raw.strip():
        return Settings.request_timeout
    try:
        timeout = float(raw)
    except ValueError:
        raise ConfigError(f"REQUEST_TIMEOUT must be a number of seconds, got {raw!r}") from None
    if timeout <= 0:
        raise ConfigError(f"REQUEST_TIMEOUT must be positive, got {raw!r}")
    return timeout


def _parse_size(raw: str | None) -> int:
    """Parse a byte size such as "1048576", "512kb" or "10mb"."""
    if raw is None or not raw.strip():
        return DEFAULT_BODY_LIMIT
    match = re.fullmatch(r"(\d+)\s*([a-z]*)", raw.strip().lower())
    if match is None or match.group(2) not in ("", *SIZE_UNITS):
        raise ConfigError(f"BODY_LIMIT must be a size such as 10mb, got {raw!r}")
    size = int(match.group(1)) * SIZE_UNITS.get(match.group(2), 1)
    if size <= 0:
        raise ConfigError(f"BODY_LIMIT must be positive, got {raw!r}")
    return size


def check_settings(settings: Settings) -> None:
    """Log warnings and, in development, a summary of the loaded settings."""
    if settings.port < 1024:
        logger.warning(
            "port is outside the recommended range",
            port=settings.port,
            recommended="1024-65535",
        )
    if settings.is_development and settings.enable_logging:
        logger.info(
            "configuration loaded",
            app_name=settings.app_name,
            host=settings.host,
            port=settings.port,
            env=settings.env,
            log_level=settings.log_level,
            request_timeout=settings.request_timeout,
            max_body_size=settings.max_body_size,
            trust_proxy=settings.trust_proxy,
        )
