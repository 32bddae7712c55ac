"""
Configuration Management for Budget Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The ledger engine itself only reads the `ledger` group; storage adapters
read `google_sheets`. Nothing else in the package touches the environment.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    horizon_months: int = Field(
        default=60,
        ge=1,
        le=600,
        description="Number of months tracked by a financial document"
    )
    categories: str = Field(
        default="groceries,entertainment",
        description="Comma-separated list of variable spending categories"
    )
    currency: str = Field(
        default="SEK",
        max_length=8,
        description="Currency label used in warnings and messages"
    )
    rollover_window_days: int = Field(
        default=5,
        ge=0,
        le=31,
        description="Days after a month starts during which rollover is pending"
    )
    history_depth: int = Field(
        default=1,
        ge=1,
        le=50,
        description="Undo snapshots retained per adjustment kind"
    )

    @field_validator('categories')
    @classmethod
    def validate_categories(cls, v: str) -> str:
        """At least one category, no duplicates, no reserved names."""
        names = [name.strip().lower() for name in v.split(",") if name.strip()]
        if not names:
            raise ValueError("At least one spending category is required")
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate category names: {v}")
        if "save" in names or "prev" in names:
            raise ValueError("'save' and 'prev' are reserved and cannot be category names")
        return ",".join(names)

    @property
    def category_list(self) -> list[str]:
        """Get categories as a list."""
        return self.categories.split(",")


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    documents_sheet_name: str = Field(
        default="Documents",
        description="Name of the sheet holding one financial document per user"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


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

    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for structured logs"
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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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

    for name in ("ledger", "google_sheets", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
