"""Configuration management for the InstaSnap client."""

from typing import Optional
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    # Remote API configuration
    api_url: str = Field(
        default="http://localhost:3001",
        validation_alias=AliasChoices("api_url", "next_public_api_url"),
    )
    request_timeout: float = 30.0
    s3_base_url: str = "https://event-hex-saas.s3.us-east-1.amazonaws.com"

    # Event configuration; data-dependent flows stay idle without it
    event_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("event_id", "next_public_event_id"),
    )
    country_code: str = "+91"

    # Local storage
    storage_path: str = ".instasnap/storage.json"
    storage_prefix: str = "instasnap_"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"
    otlp_endpoint: Optional[str] = None

    @field_validator('api_url', 's3_base_url')
    @classmethod
    def validate_base_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('Base URLs must be HTTP/HTTPS URLs')
        return v.rstrip('/')

    @field_validator('event_id')
    @classmethod
    def validate_event_id(cls, v):
        # An empty EVENT_ID is treated the same as an unset one
        return v or None

    @field_validator('country_code')
    @classmethod
    def validate_country_code(cls, v):
        digits = v.lstrip('+')
        if not digits.isdigit():
            raise ValueError('COUNTRY_CODE must be a dial code such as +91')
        return f"+{digits}"

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        if v not in ('json', 'console'):
            raise ValueError('LOG_FORMAT must be "json" or "console"')
        return v


# Global settings instance
settings = Settings()
