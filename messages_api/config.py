from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Every field has a default, so the service starts with no environment at all.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - SQLite file relative to the working directory
    DATABASE_URL: str = "sqlite:///./messages.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Server binding
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # Put the raw store error text into 500 response bodies
    EXPOSE_STORE_ERRORS: bool = True

    # Answer 404 when PUT/DELETE affect no rows instead of a silent 200
    REPORT_MISSING_ROWS: bool = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()
