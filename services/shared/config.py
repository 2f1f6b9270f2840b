"""Shared configuration management for the pipeline.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_EXTRACTION_PROVIDER=ocr-parse
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="invoice-inference-pipeline",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Extraction provider configuration
    extraction_provider: Literal["vision", "ocr-parse"] = Field(
        default="vision",
        description=(
            "Extraction provider: vision (single vision-model call), "
            "ocr-parse (Tesseract OCR followed by a text-model parse)"
        ),
    )
    vision_model: str = Field(
        default="gpt-4o-mini",
        description="Vision-capable model used for vision extraction",
    )
    parse_model: str = Field(
        default="gpt-4o-mini",
        description="Text model used to parse OCR output",
    )
    classification_model: str = Field(
        default="gpt-4o-mini",
        description="Vision-capable model used for the invoice/not-invoice decision",
    )

    # OCR configuration (for extraction_provider="ocr-parse")
    ocr_languages: str = Field(
        default="deu+eng",
        description="Tesseract language codes joined with '+'",
    )
    ocr_dpi: int = Field(
        default=200,
        description="Rasterisation resolution for PDF pages",
    )
    ocr_max_pages: int = Field(
        default=5,
        description="Maximum number of PDF pages sent through OCR",
    )

    # Text pre-classifier
    text_classifier_enabled: bool = Field(
        default=True,
        description="Trust high-confidence text classification and skip the model call",
    )
    text_classifier_max_pages: int = Field(
        default=3,
        description="Number of leading PDF pages read by the text pre-classifier",
    )

    # Storage configuration (S3-compatible object storage)
    storage_enabled: bool = Field(
        default=False,
        description="Enable document download from S3-compatible storage (MinIO)",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="documents",
        description="Default bucket name for document storage",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )

    # Record store
    store_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Record store: memory (single process) or redis (shared)",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the record store and the job queue",
    )

    # Queue configuration (arq)
    queue_enabled: bool = Field(
        default=False,
        description="Run extraction and reconciliation through the background worker",
    )
    queue_max_jobs: int = Field(
        default=10,
        description="Maximum concurrent jobs per worker",
    )
    queue_job_timeout: int = Field(
        default=300,
        description="Job timeout in seconds",
    )

    # Reconciliation
    localize_suggestion_window: int = Field(
        default=500,
        description="Number of most recently updated transactions scanned for suggestions",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
