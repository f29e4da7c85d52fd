"""Configuration management for RentalTax."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="RENTAL_TAX_",
        case_sensitive=False,
        extra="ignore",
    )

    # Google OAuth client (desktop app credentials)
    google_client_id: str | None = None
    google_client_secret: str | None = None

    # Spreadsheet to use when none was connected yet
    spreadsheet_id: str | None = None

    # Tax rules
    jurisdiction: str = "BR"

    # Sync settings
    autosave_delay_ms: int = 1000  # Quiet period before a change is saved
    persist_session: bool = True  # Remember the sign-in between runs

    # Database path
    database_path: Path = Path.home() / ".rental_tax" / "rental_tax.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def autosave_delay(self) -> float:
        """Autosave delay in seconds."""
        return self.autosave_delay_ms / 1000


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        settings = Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Make sure your .env file or environment "
            f"defines valid RENTAL_TAX_* variables. See .env.example for reference.\n"
            f"Error: {e}"
        ) from e

    if settings.autosave_delay_ms < 0:
        raise ConfigurationError("RENTAL_TAX_AUTOSAVE_DELAY_MS must not be negative")
    return settings
