"""
Configuration Management for Family Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///ledger.db",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo emitted SQL to the log"
    )
    connect_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Connection attempts before giving up"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """A URL without a dialect is almost certainly a typo."""
        if "://" not in v:
            raise ValueError(f"Database URL must include a dialect: {v}")
        return v


class AttachmentSettings(BaseSettings):
    """Attachment file storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_ATTACHMENTS_",
        extra="ignore"
    )

    root_dir: str = Field(
        default="uploads",
        description="Directory stored attachment files live under"
    )
    allowed_mime_types: str = Field(
        default=(
            "image/jpeg,image/png,image/gif,image/webp,"
            "application/pdf,video/mp4,video/quicktime"
        ),
        description="Comma-separated list of accepted MIME types"
    )
    max_image_size_mb: int = Field(default=10, ge=1, le=100)
    max_pdf_size_mb: int = Field(default=10, ge=1, le=100)
    max_video_size_mb: int = Field(default=50, ge=1, le=500)
    unlinked_max_age_hours: int = Field(
        default=24,
        ge=1,
        description="Age after which unlinked attachments are cleaned up"
    )

    @property
    def allowed_mime_types_list(self) -> list[str]:
        """Get allowed MIME types as a list."""
        return [t.strip().lower() for t in self.allowed_mime_types.split(",") if t.strip()]

    def size_limit_bytes(self, mime_type: str) -> int:
        """Size limit for a MIME type in bytes (0 if the type is not accepted)."""
        mime_type = mime_type.lower()
        if mime_type not in self.allowed_mime_types_list:
            return 0
        if mime_type.startswith("image/"):
            return self.max_image_size_mb * 1024 * 1024
        if mime_type.startswith("video/"):
            return self.max_video_size_mb * 1024 * 1024
        return self.max_pdf_size_mb * 1024 * 1024


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Ledger rules
    refund_tolerance: Decimal = Field(
        default=Decimal("0.001"),
        ge=0,
        description="Slack allowed when comparing a refund against the refundable amount"
    )
    due_reminder_days: int = Field(
        default=3,
        ge=0,
        le=28,
        description="Days before the due day at which credit reminders start"
    )

    # Listing
    default_page_size: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Default page size for transaction listings"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def attachments(self) -> AttachmentSettings:
        return AttachmentSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "attachments", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
