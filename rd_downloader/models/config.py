"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

DB_FILENAME = "rd-downloader.db"


class AppConfig(BaseModel):
    """A validated configuration model for the application."""

    # Authentication & API
    api_key: str = ""
    rate_limit_per_minute: int = 250
    rate_limit_burst: int = 5

    # Download Settings
    library_path: str = ""
    max_workers: int = 2
    queue_size: int = 100
    progress_interval: float = 1.0

    # Polling
    poll_interval: float = 5.0
    ready_timeout: float = 30 * 60
    download_timeout: float = 24 * 60 * 60

    # Subtitles
    fetch_subtitles: bool = True
    subliminal_path: str = ""
    subtitle_language: str = "en"
    subtitle_timeout: float = 120.0

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 16:
            raise ValueError("Max workers must be between 1 and 16.")
        return v

    @field_validator("queue_size", "rate_limit_per_minute", "rate_limit_burst")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1.")
        return v

    @field_validator(
        "poll_interval",
        "ready_timeout",
        "download_timeout",
        "subtitle_timeout",
        "progress_interval",
    )
    @classmethod
    def validate_positive_duration(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Durations must be greater than zero.")
        return v

    @model_validator(mode="after")
    def validate_required_settings(self) -> "AppConfig":
        """Validates that the API key and library path are configured."""
        if not self.api_key:
            raise ValueError(
                "Real-Debrid API key is not configured. Run 'rd-downloader init' "
                "or set REALDEBRID_API_KEY."
            )
        if not self.library_path:
            raise ValueError("Library path is not configured.")
        return self

    @property
    def db_path(self) -> Path:
        return Path(self.config_path) / DB_FILENAME

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
