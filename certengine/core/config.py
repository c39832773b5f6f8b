"""Application configuration via pydantic-settings.

Loads all settings from environment variables with sensible defaults.
A global `settings` singleton is available for import throughout the app.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_TIMEOUT_SECONDS: int = 10

    # Notifier
    NOTIFIER_WEBHOOK_URL: str = ""
    NOTIFIER_TOKEN: str = ""
    NOTIFIER_TIMEOUT_SECONDS: float = 10.0

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SWEEP_INTERVAL_MINUTES: int = 60
    SWEEP_MAX_WORKERS: int = 4

    # Certification rules
    DEFAULT_EVALUATOR_CAPACITY: int = 10
    DEFAULT_CERTIFICATE_VALIDITY_YEARS: int = 5
    MANAGE_CAPABILITY: str = "manage_candidates"

    # CORS
    ALLOWED_ORIGINS: str = "*"

    # Logging
    LOG_LEVEL: str = "INFO"


settings = Settings()
