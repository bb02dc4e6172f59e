"""Centralized process configuration using Pydantic Settings.

All settings can be overridden via environment variables with the MOVIEPOLLS_
prefix, or via a .env file. Example: MOVIEPOLLS_PORT=8080

Site policy (vote caps, signup channels, field limits...) is not stored here;
it lives in the data layer and is read through services.site_config.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """MoviePolls process settings."""

    # Server
    host: str = ""  # Empty = all interfaces
    port: int = 8090

    # Logging
    log_level: str = "info"  # silent, error, info, debug
    log_file: str = ""  # Empty = console only
    log_format: str = "text"  # text or json

    # Data layer
    db_backend: str = "json"  # json or sql
    db_connection: str = ""  # Empty = backend default

    # Files
    posters_dir: str = "posters"
    static_dir: str = "static"
    max_upload_size: int = 10 * 1024 * 1024

    # External calls
    request_timeout: int = 15

    # OAuth state nonces kept in memory before the oldest are evicted
    oauth_state_limit: int = 1000

    model_config = {
        "env_prefix": "MOVIEPOLLS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def get_db_connection(self) -> str:
        """Return the connection string for the configured data backend."""
        if self.db_connection:
            return self.db_connection
        if self.db_backend == "json":
            return "db/data.json"
        return "sqlite:///db/moviepolls.db"

    def get_bind_address(self) -> str:
        """Return the listen address in host:port form."""
        return f"{self.host}:{self.port}"


# Singleton settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings(overrides: dict = None) -> Settings:
    """Force reload settings from environment/file, with optional overrides.

    Args:
        overrides: Dict of field values (e.g. from command line flags) to
                   apply on top of the env/file settings. Unknown keys and
                   None values are ignored.
    """
    global _settings
    base = Settings()

    if overrides:
        base_data = base.model_dump()
        update = {}
        for key, value in overrides.items():
            if key not in base_data or value is None:
                continue
            expected_type = type(base_data[key])
            try:
                if expected_type is bool:
                    update[key] = value.lower() in ("true", "1", "yes") if isinstance(value, str) else bool(value)
                elif expected_type is int:
                    update[key] = int(value)
                else:
                    update[key] = str(value)
            except (ValueError, TypeError):
                continue  # Skip invalid values

        _settings = base.model_copy(update=update) if update else base
    else:
        _settings = base

    return _settings
