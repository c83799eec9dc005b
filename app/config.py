"""
Configuration module for environment variables.
"""
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = Field(
        default="sqlite:///./family_tasks.db",
        description="SQLAlchemy connection URL (SQLite or PostgreSQL)"
    )

    # Auth
    secret_key: str = Field(default="CHANGE_THIS_SECRET")
    algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60 * 24 * 7)

    # LLM Configuration (Groq)
    groq_api_key: str = Field(default="")
    groq_model: str = Field(default="llama-3.1-8b-instant")
    llm_temperature: float = Field(default=0.1)

    # SMS Configuration (Twilio)
    twilio_account_sid: str = Field(default="")
    twilio_auth_token: str = Field(default="")
    twilio_phone_number: str = Field(default="")
    twilio_api_base: str = Field(default="https://api.twilio.com/2010-04-01")
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Link included in bonus task SMS messages"
    )

    # Outbox delivery
    outbox_poll_interval: int = Field(
        default=60,
        description="Interval in seconds between outbox drain runs"
    )
    outbox_max_attempts: int = Field(default=3)
    outbox_batch_size: int = Field(default=50)

    # Recurring tasks
    recurring_horizon_days: int = Field(
        default=90,
        description="Never create recurring instances due further out than this"
    )
    recurring_backfill_limit: int = Field(
        default=60,
        description="Maximum instances created per series by one backfill sweep"
    )

    # Families
    family_code_length: int = Field(default=8)

    # Application Settings
    app_env: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    cors_origins: str = Field(default="*")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Convenience function for direct access
settings = get_settings()
