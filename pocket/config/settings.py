"""
Configuration Management for Pocket

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every external collaborator (LLM, OCR, image hosting, storage, Open Finance)
has its own settings class with its own env prefix, so a missing key for one
service never blocks the others.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CloudinarySettings(BaseSettings):
    """Cloudinary receipt image hosting configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )
    folder: str = Field(
        default="pocket/receipts",
        description="Folder receipts are uploaded into"
    )


class MindeeSettings(BaseSettings):
    """Mindee receipt OCR configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MINDEE_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Mindee API key"
    )


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

    # Worksheet names within the spreadsheet
    expenses_sheet_name: str = Field(default="Expenses")
    income_sheet_name: str = Field(default="IncomeSources")
    budgets_sheet_name: str = Field(default="Budgets")
    items_sheet_name: str = Field(default="BankItems")
    accounts_sheet_name: str = Field(default="BankAccounts")
    transactions_sheet_name: str = Field(default="BankTransactions")
    patterns_sheet_name: str = Field(default="Patterns")
    aliases_sheet_name: str = Field(default="MerchantAliases")
    conversations_sheet_name: str = Field(default="Conversations")
    audit_sheet_name: str = Field(default="AuditLog")

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


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration (categorization and assistant)."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    categorization_temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
    )
    assistant_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
    )


class PluggySettings(BaseSettings):
    """Pluggy Open Finance configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PLUGGY_",
        extra="ignore"
    )

    client_id: str = Field(
        ...,
        description="Pluggy client ID"
    )
    client_secret: str = Field(
        ...,
        description="Pluggy client secret"
    )
    base_url: str = Field(
        default="https://api.pluggy.ai",
        description="Pluggy API base URL"
    )
    webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL registered on new connect tokens"
    )
    oauth_redirect_uri: Optional[str] = Field(
        default=None,
        description="Deep link the bank redirects to after OAuth"
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
    )
    # API keys issued by /auth live for two hours; refresh a bit earlier
    api_key_ttl_seconds: int = Field(
        default=110 * 60,
        ge=60,
    )
    transactions_page_size: int = Field(
        default=500,
        ge=1,
        le=500,
    )


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
    timezone: str = Field(
        default="America/Sao_Paulo",
        description="Timezone used to decide which month 'now' belongs to"
    )

    # File upload limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum upload file size in MB"
    )
    supported_image_formats: str = Field(
        default="jpg,jpeg,png,webp",
        description="Comma-separated list of supported image formats"
    )
    receipt_image_width: int = Field(
        default=1024,
        ge=256,
        description="Width receipts are resized to before OCR"
    )

    # OCR / validation thresholds
    min_ocr_confidence: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Minimum OCR confidence to proceed without warning"
    )
    max_receipt_amount: Decimal = Field(
        default=Decimal("50000"),
        description="Maximum plausible receipt amount (sanity check)"
    )
    future_date_tolerance_days: int = Field(
        default=1,
        description="How many days in the future a receipt date can be"
    )

    # Bill splitting
    service_charge_rate: Decimal = Field(
        default=Decimal("0.10"),
        ge=0,
        le=1,
        description="Optional service charge added when splitting a bill"
    )

    # Pattern detection
    pattern_lookback_months: int = Field(default=3, ge=1, le=24)
    pattern_min_expenses: int = Field(default=5, ge=1)

    # Bank linking
    bank_poll_max_attempts: int = Field(default=15, ge=1)
    bank_poll_interval_seconds: float = Field(default=2.0, ge=0.0)

    # Categorization
    alias_min_confidence: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Learned merchant aliases below this confidence are ignored"
    )

    # Budgets
    budget_alert_threshold: Decimal = Field(
        default=Decimal("80"),
        ge=0,
        description="Percentage of a budget at which an alert is raised"
    )

    @property
    def supported_formats_list(self) -> list[str]:
        """Get supported formats as a list."""
        return [fmt.strip().lower() for fmt in self.supported_image_formats.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def mindee(self) -> MindeeSettings:
        return MindeeSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def pluggy(self) -> PluggySettings:
        return PluggySettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus a
    `<name>_error` entry for each service that failed.
    """
    results = {}
    settings = get_settings()

    for name in ("cloudinary", "mindee", "google_sheets", "gemini", "pluggy", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
