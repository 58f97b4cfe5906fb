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
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    app_url: str = Field(default="https://pixorly.com", alias="APP_URL")
    app_title: str = Field(default="Pixorly", alias="APP_TITLE")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # OpenRouter Image Generation
    openrouter_api_key: str = Field(default="", alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_BASE_URL"
    )
    openrouter_timeout_seconds: float = Field(default=60.0, alias="OPENROUTER_TIMEOUT_SECONDS")
    image_download_timeout_seconds: float = Field(
        default=30.0, alias="IMAGE_DOWNLOAD_TIMEOUT_SECONDS"
    )
    model_catalog_path: str | None = Field(default=None, alias="MODEL_CATALOG_PATH")

    # Object Storage (S3 + CloudFront)
    aws_region: str = Field(default="us-east-1", alias="AWS_REGION")
    aws_access_key_id: str = Field(default="", alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str = Field(default="", alias="AWS_SECRET_ACCESS_KEY")
    aws_s3_bucket: str = Field(default="pixorly-images-prod", alias="AWS_S3_BUCKET")
    aws_cloudfront_domain: str = Field(default="", alias="AWS_CLOUDFRONT_DOMAIN")

    # Clerk Identity
    clerk_jwks_url: str = Field(default="", alias="CLERK_JWKS_URL")
    clerk_issuer: str | None = Field(default=None, alias="CLERK_ISSUER")
    clerk_webhook_secret: str = Field(default="", alias="CLERK_WEBHOOK_SECRET")

    # Generation Job Lifecycle
    max_generation_retries: int = Field(default=3, alias="MAX_GENERATION_RETRIES")
    retry_base_delay_ms: int = Field(default=2000, alias="RETRY_BASE_DELAY_MS")
    job_deadline_seconds: int = Field(default=600, alias="JOB_DEADLINE_SECONDS")

    # Scheduler Worker
    poll_interval_seconds: float = Field(default=1.0, alias="POLL_INTERVAL_SECONDS")
    worker_batch_size: int = Field(default=10, alias="WORKER_BATCH_SIZE")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with a list of every missing secret. Skipped in test
        environments so tests can run without credentials.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.openrouter_api_key:
            missing.append("OPENROUTER_API_KEY: Get your API key from https://openrouter.ai/keys")

        if not self.aws_access_key_id or not self.aws_secret_access_key:
            missing.append("AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY: IAM user with s3:PutObject")

        if not self.aws_cloudfront_domain:
            missing.append("AWS_CLOUDFRONT_DOMAIN: CloudFront distribution serving the bucket")

        if not self.clerk_jwks_url:
            missing.append("CLERK_JWKS_URL: https://<your-clerk-domain>/.well-known/jwks.json")

        if not self.clerk_webhook_secret:
            missing.append("CLERK_WEBHOOK_SECRET: Signing secret of the Clerk webhook endpoint")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    if settings.app_env == "production":
        renderer_processors = [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer_processors = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderer_processors,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
