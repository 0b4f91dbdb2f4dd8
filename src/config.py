"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class ConfigurationError(RuntimeError):
    """Raised when a required secret or credential is not configured."""


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Secrets default to empty strings so the health endpoint can report which
    ones are missing instead of the process refusing to start.
    """

    # --- App ---
    app_name: str = "Live Data"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production
    public_base_url: str = "http://localhost:8000"

    # --- Secrets ---
    auth_secret: str = ""  # signs session cookies and OAuth state
    cron_secret: str = ""  # shared secret for the scheduled sync endpoints

    # --- Postgres ---
    postgres_url: str = Field(
        default="",
        validation_alias=AliasChoices("postgres_url", "database_url"),
    )
    auto_migrate: bool = False  # apply the bundled schema.sql on startup

    # --- Whoop ---
    whoop_client_id: str = ""
    whoop_client_secret: str = ""

    # --- Strava ---
    strava_client_id: str = ""
    strava_client_secret: str = ""

    # --- Chatbot ---
    anthropic_api_key: str = ""
    chat_model: str = "claude-haiku-4-5-20251001"
    chat_max_tokens: int = 1024
    chat_system_prompt: str = (
        "You are a helpful assistant on a personal portfolio website. "
        "Answer visitors' questions about the site owner's skills, experience "
        "and projects. Be friendly, professional, and concise."
    )

    # --- Session ---
    session_ttl_seconds: int = 30 * 24 * 3600
    session_cookie_secure: bool = False

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "populate_by_name": True,
        "extra": "ignore",
    }

    def provider_credentials(self, provider: str) -> tuple[str, str]:
        """Return ``(client_id, client_secret)`` for a provider slug."""
        return (
            getattr(self, f"{provider}_client_id", ""),
            getattr(self, f"{provider}_client_secret", ""),
        )

    def require(self, *names: str) -> None:
        """Raise ConfigurationError listing every empty setting in ``names``."""
        missing = [name.upper() for name in names if not getattr(self, name, "")]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )


@lru_cache
def get_settings() -> Settings:
    return Settings()
