"""Application configuration using pydantic-settings.

Priority, highest first: constructor arguments, the system keychain (for
the Plaid credentials only), environment variables, then ``.env``.
"""

from datetime import date
from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential

PLAID_ENVIRONMENTS = ("sandbox", "production")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Settings source that reads credential fields from ``keyring``.

    Fields outside :data:`~services.credential_manager.CREDENTIAL_KEYS`
    are never looked up and fall through to the next source.
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        if field_name.upper() not in CREDENTIAL_KEYS:
            return None, field_name, False
        return get_credential(field_name.upper()), field_name, False

    def __call__(self) -> dict[str, Any]:
        found: dict[str, Any] = {}
        for name, info in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(info, name)
            if value is not None:
                found[key] = value
        return found


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    DATABASE_URL: str = "sqlite:///./mirror.db"

    # Plaid
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: str = ""
    PLAID_ENVIRONMENT: str = "sandbox"

    # Sync engine
    SYNC_PAGE_SIZE: int = 500  # records per upstream page
    SYNC_MAX_WORKERS: int = 1  # Items synced concurrently
    INVESTMENTS_HISTORY_START: date = date(2024, 1, 1)
    INVESTMENTS_LOOKBACK_DAYS: int = 30  # re-read window for late-posting activity

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @field_validator("PLAID_ENVIRONMENT", mode="before")
    @classmethod
    def validate_plaid_environment(cls, v: str) -> str:
        if v.lower() not in PLAID_ENVIRONMENTS:
            raise ValueError(f"PLAID_ENVIRONMENT must be one of {PLAID_ENVIRONMENTS}, got {v!r}")
        return v.lower()

    @field_validator("SYNC_PAGE_SIZE")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        """Plaid accepts page sizes between 1 and 500."""
        if not 1 <= v <= 500:
            raise ValueError(f"SYNC_PAGE_SIZE must be between 1 and 500, got {v}")
        return v

    @field_validator("SYNC_MAX_WORKERS", "INVESTMENTS_LOOKBACK_DAYS")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"value must be >= 0, got {v}")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {LOG_LEVELS}, got {v!r}")
        return v.upper()


settings = Settings()
