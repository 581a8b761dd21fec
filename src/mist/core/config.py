"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")

    # Providers
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_api_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_API_URL")
    stable_horde_api_key: str = Field(default="0000000000", alias="STABLE_HORDE_API_KEY")
    stable_horde_api_url: str = Field(
        default="https://stablehorde.net/api/v2", alias="STABLE_HORDE_API_URL"
    )
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    modal_webhook_secret: str = Field(default="", alias="MODAL_WEBHOOK_SECRET")
    modal_openjourney_url: str = Field(
        default="https://ydubuc--mist-prompthero-openjourney-entrypoint.modal.run",
        alias="MODAL_OPENJOURNEY_URL",
    )

    # Blob storage (Backblaze B2)
    backblaze_key_id: str = Field(default="", alias="BACKBLAZE_KEY_ID")
    backblaze_application_key: str = Field(default="", alias="BACKBLAZE_APPLICATION_KEY")
    backblaze_bucket_id: str = Field(default="", alias="BACKBLAZE_BUCKET_ID")

    # Push notifications (FCM). Empty key disables delivery.
    fcm_server_key: str = Field(default="", alias="FCM_SERVER_KEY")

    # Generation worker pool
    generation_workers: int = Field(default=8, ge=1, alias="GENERATION_WORKERS")
    generation_queue_size: int = Field(default=100, ge=1, alias="GENERATION_QUEUE_SIZE")

    # Retry policies
    provider_retry_attempts: int = Field(default=3, ge=1, alias="PROVIDER_RETRY_ATTEMPTS")
    provider_retry_interval_seconds: float = Field(
        default=10.0, ge=0, alias="PROVIDER_RETRY_INTERVAL_SECONDS"
    )
    finalize_retry_attempts: int = Field(default=6, ge=1, alias="FINALIZE_RETRY_ATTEMPTS")
    finalize_retry_interval_seconds: float = Field(
        default=10.0, ge=0, alias="FINALIZE_RETRY_INTERVAL_SECONDS"
    )

    # Poll-until-done adapters
    poll_min_wait_seconds: float = Field(default=3.0, ge=0, alias="POLL_MIN_WAIT_SECONDS")
    poll_max_wait_seconds: float = Field(default=60.0, ge=0, alias="POLL_MAX_WAIT_SECONDS")
    poll_budget_seconds: float = Field(default=600.0, gt=0, alias="POLL_BUDGET_SECONDS")

    # Janitor
    janitor_interval_seconds: float = Field(default=600.0, gt=0, alias="JANITOR_INTERVAL_SECONDS")
    janitor_initial_delay_seconds: float = Field(
        default=600.0, ge=0, alias="JANITOR_INITIAL_DELAY_SECONDS"
    )
    janitor_stale_after_seconds: float = Field(
        default=600.0, gt=0, alias="JANITOR_STALE_AFTER_SECONDS"
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def webhook_callback_url(self) -> str:
        """Base URL providers call back into (``/webhooks/{provider}`` is appended)."""
        return f"{self.public_base_url.rstrip('/')}/webhooks"

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with one error listing every missing variable. Validation is
        skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY: Required for DALL-E generation and prompt moderation")

        if not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )

        if not self.modal_webhook_secret:
            missing.append("MODAL_WEBHOOK_SECRET: Shared bearer secret for Modal callbacks")

        if not (
            self.backblaze_key_id and self.backblaze_application_key and self.backblaze_bucket_id
        ):
            missing.append(
                "BACKBLAZE_KEY_ID / BACKBLAZE_APPLICATION_KEY / BACKBLAZE_BUCKET_ID: "
                "Create an application key at https://secure.backblaze.com/app_keys.htm"
            )

        if self.poll_min_wait_seconds > self.poll_max_wait_seconds:
            missing.append("POLL_MIN_WAIT_SECONDS must not exceed POLL_MAX_WAIT_SECONDS")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
