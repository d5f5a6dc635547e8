"""
PixPress Backend — Application Configuration
=============================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by every module that needs configuration values.
When:  Loaded once at module import time; checked again in the app lifespan.
"""

import shutil
import tempfile
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

# Converter names accepted by the `converter` setting.
# "auto" probes the tools below in order; "none" disables the converter tier.
CONVERTER_CHOICES = ("auto", "sips", "magick", "convert", "none")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for local development. Attributes are
    grouped by concern for readability.
    """

    # ── Uploads ───────────────────────────────────────────────────────────
    # What: Maximum accepted upload size in bytes
    # Default: 25MB, enough for full-resolution phone photos
    max_file_size: int = Field(default=26_214_400, ge=1_048_576, le=104_857_600)

    # What: Quality used when the form omits `quality` or sends garbage
    default_quality: int = Field(default=70, ge=1, le=100)

    # ── Scratch & Debug Storage ───────────────────────────────────────────
    # What: Directory for the path-decode fallback (buffer written to disk)
    scratch_dir: str = Field(default_factory=tempfile.gettempdir)

    # What: When set, uploads that no tier could decode are kept here for inspection
    # Why optional: Keeping user uploads on disk is a local-debugging aid only
    debug_upload_dir: Optional[str] = Field(default=None)

    # ── External Converter ────────────────────────────────────────────────
    converter: str = Field(default="auto")
    converter_timeout: float = Field(default=30.0, gt=0, le=300)

    # ── Circuit Breaker (converter) ───────────────────────────────────────
    # How: After N consecutive converter failures, skip the tier for M seconds
    cb_failure_threshold: int = Field(default=5, ge=1, le=20)
    cb_recovery_timeout: int = Field(default=60, ge=0, le=600)

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: Comma-separated URLs (Vite dev server and a CRA-style dev server)
    cors_origins: str = Field(default="http://localhost:5173,http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=3000, ge=1024, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("converter")
    @classmethod
    def validate_converter(cls, v: str) -> str:
        """Ensures the converter setting names a supported tool."""
        lower = v.strip().lower()
        if lower not in CONVERTER_CHOICES:
            raise ValueError(
                f"Invalid converter '{v}'. Must be one of: {', '.join(CONVERTER_CHOICES)}"
            )
        return lower

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    def validate_for_startup(self) -> None:
        """
        What:  Reports settings that will not work on this host.
        When:  Called during app startup (lifespan).
        How:   Collects every problem and raises one ValueError listing them.
        """
        errors = []
        if self.converter not in ("auto", "none") and shutil.which(self.converter) is None:
            errors.append(
                f"CONVERTER={self.converter} but '{self.converter}' is not on PATH. "
                "Install it, or use CONVERTER=auto / CONVERTER=none."
            )
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Singleton instance, imported throughout the application
settings = Settings()
