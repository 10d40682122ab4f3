from functools import lru_cache
import logging
import sys
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

from cftunnel.schemas.cloudflare import TunnelPolicy


logger = logging.getLogger(__name__)


DEFAULT_API_BASE = "https://api.cloudflare.com/client/v4"
DEFAULT_SERVICE_URL = "http://localhost:3010"


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""
    pass


class Settings(BaseSettings):
    """Tool configuration pulled from CFTUNNEL_* environment variables or .env file."""

    api_base: str = DEFAULT_API_BASE
    # None keeps the httpx transport default
    http_timeout: float | None = None

    default_service_url: str = DEFAULT_SERVICE_URL

    # Same-named tunnel handling: reuse the first active one, or delete all and recreate
    tunnel_policy: TunnelPolicy = TunnelPolicy.REUSE

    # Undo tunnel/DNS changes from this run when a later stage fails
    rollback_on_failure: bool = False

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="CFTUNNEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def validate_required(self) -> list[str]:
        """Validate configuration settings.

        Returns a list of error messages for invalid settings.
        """
        errors: list[str] = []
        warnings: list[str] = []

        parsed = urlparse(self.api_base)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(f"CFTUNNEL_API_BASE is not a valid URL: {self.api_base!r}")
        elif parsed.scheme == "http":
            warnings.append("CFTUNNEL_API_BASE uses plain http, the API token will be sent unencrypted")

        if self.http_timeout is not None and self.http_timeout <= 0:
            errors.append("CFTUNNEL_HTTP_TIMEOUT must be positive")

        service = urlparse(self.default_service_url)
        if service.scheme not in ("http", "https") or not service.netloc:
            errors.append(
                f"CFTUNNEL_DEFAULT_SERVICE_URL must be an http(s) URL: {self.default_service_url!r}"
            )

        if logging.getLevelName(self.log_level.upper()) not in (
            logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL
        ):
            errors.append(f"CFTUNNEL_LOG_LEVEL is not a logging level: {self.log_level!r}")

        for warning in warnings:
            logger.warning(f"Config warning: {warning}")

        return errors


def validate_config_on_startup(settings: Settings) -> None:
    """Validate configuration and raise if any setting is invalid."""
    errors = settings.validate_required()

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        print("\nConfiguration Error:", file=sys.stderr)
        print("The following settings are invalid:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        print("\nPlease check your .env file or CFTUNNEL_* environment variables.", file=sys.stderr)
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    logger.debug("Configuration validated successfully")


@lru_cache
def get_settings() -> Settings:
    return Settings()
