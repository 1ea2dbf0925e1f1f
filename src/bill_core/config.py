"""
Configuration for the bill scanner.

Values come from environment variables prefixed with ``BILLSCAN_`` (or a
``.env`` file in the working directory) and fall back to the defaults below.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="BILLSCAN_",
        env_file=".env",
        extra="ignore",
    )

    # OCR
    tesseract_cmd: Optional[str] = Field(default=None, description="Path to the tesseract binary")
    ocr_language: str = Field(default="eng")

    # Uploads
    max_upload_mb: float = Field(default=10.0, gt=0)
    pdf_render_scale: float = Field(default=2.0, gt=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default="bill_scanner.log")

    @property
    def max_upload_bytes(self) -> int:
        return int(self.max_upload_mb * 1024 * 1024)


@lru_cache()
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()
