"""Configuration management for s3-objstore."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    log_level: str = "INFO"
    otel_enabled: bool = False
    otel_service_name: str = "s3-objstore"

    # Retry policy applied by S3Bucket.upload
    upload_max_retries: int = 3
    upload_backoff_seconds: float = 1.0

    model_config = {
        "env_prefix": "S3_OBJSTORE_",
        "case_sensitive": False,
    }


settings = Settings()
