"""
PixPress Backend — Pydantic Request/Response Schemas
=====================================================

What:  Pydantic models defining the API contract between clients and backend.
Why:   Validation of parsed form options, automatic serialization, and OpenAPI docs.
Who:   Used by route handlers, services and the Python client.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Request Options
# ══════════════════════════════════════════════════════════════════════════


class CompressionOptions(BaseModel):
    """
    What:  Normalized compression parameters pulled out of the multipart form.
    How:   Built by UploadService.parse_options(); by then every value is in range.

    Dimensions:
        0 means "no constraint on this axis". When both are 0 the image keeps
        its size (after auto-rotation).
    """
    quality: int = Field(default=70, ge=1, le=100, description="Encoder quality (1-100)")
    max_width: int = Field(default=0, ge=0, description="Maximum output width in pixels (0 = any)")
    max_height: int = Field(default=0, ge=0, description="Maximum output height in pixels (0 = any)")

    @property
    def wants_resize(self) -> bool:
        return self.max_width > 0 or self.max_height > 0


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Example (415):
        {
            "error": "unsupported_image",
            "message": "Unsupported image format or corrupted image",
            "details": {
                "reason": "Detected image/heic (heic) - cannot identify image file",
                "debug": {"tmp_path": "/tmp/upload-1700000000000-1a2b3c4d.heic", ...}
            },
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class FormatSupport(BaseModel):
    input: bool = Field(description="Pillow can decode this format")
    output: bool = Field(description="Pillow can encode this format")


class FormatsResponse(BaseModel):
    """
    What:  Codec capabilities of the running image library.
    Who:   Returned by GET /api/formats and printed by scripts/check_codecs.py.
    """
    versions: Dict[str, Optional[str]] = Field(description="Image library versions")
    formats: Dict[str, FormatSupport] = Field(description="Per-format decode/encode support")


class HealthResponse(BaseModel):
    """
    What:  Health check response showing service and dependency status.
    Who:   Returned by GET /health for monitoring and container health checks.
    """
    status: str = Field(description="Overall service status: healthy, degraded")
    version: str = Field(description="Application version")
    converter: str = Field(description="External converter: available, unavailable, circuit_open")
    converter_tool: Optional[str] = Field(default=None, description="Detected converter binary")
    heif_support: bool = Field(description="Whether HEIC/HEIF can be decoded natively")
    uptime_seconds: float = Field(description="Seconds since service started")
