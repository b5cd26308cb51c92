"""Pipeline settings read from the environment."""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the API client, local store, OCR and app surfaces."""

    # Remote receipt API
    api_base_url: str = Field(
        default="https://priceadjustpro.onrender.com/api",
        description="Base URL of the remote receipt-management API",
    )
    api_timeout: float = Field(
        default=30.0,
        description="Timeout for remote API calls in seconds",
    )
    api_session_token: str = Field(
        default="",
        description="Session token sent with remote API calls (optional)",
    )

    # Local store
    database_path: str = Field(
        default="data/receipts.db",
        description="Path to the local SQLite receipt store",
    )
    retain_raw_documents: bool = Field(
        default=True,
        description="Keep the original document bytes for re-processing",
    )

    # Text acquisition
    ocr_language: str = Field(
        default="eng",
        description="Tesseract language model used for recognition",
    )
    ocr_engine_config: str = Field(
        default="--oem 1 --psm 4",
        description="Tesseract config (LSTM engine, single column of text)",
    )
    ocr_dpi: int = Field(
        default=72,
        description="Rasterization DPI for the OCR fallback (72 = intrinsic size)",
    )
    tesseract_cmd: str = Field(
        default="",
        description="Path to the tesseract binary (empty uses PATH)",
    )

    # Reconciliation
    conflict_threshold: Decimal = Field(
        default=Decimal("0.01"),
        description="Max subtotal drift for a pushed edit to count as accepted",
    )

    # Application settings
    app_name: str = Field(default="receiptsync", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json or text)")
    log_dir: str = Field(default="logs", description="Directory for log files")

    # API settings
    api_prefix: str = Field(default="/api/v1", description="API route prefix")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Allowed CORS origins",
    )

    model_config = SettingsConfigDict(
        env_file=[".env.example", ".env.local"],  # Local overrides example
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Settings built once per process."""
    return Settings()
