"""
PixPress Backend — Custom Exception Hierarchy
==============================================

What:  Defines application-specific exceptions for different error scenarios.
Why:   Custom exceptions enable targeted error handling with appropriate HTTP
       status codes and user-friendly messages.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by services and middleware; caught by global handlers.

Exception Hierarchy:
    PixPressError (base)
    ├── ValidationError          → 400 Bad Request (client can fix)
    ├── UnsupportedImageError    → 415 Unsupported Media Type (every tier failed)
    ├── ImageDecodeError         → consumed by the fallback chain
    ├── ImageProcessingError     → 500 Internal Server Error (resize/encode failed)
    ├── FileStorageError         → 500 Internal Server Error
    ├── ConverterError           → consumed by the fallback chain
    └── CircuitBreakerOpenError  → consumed by the fallback chain (503 if it escapes)
"""

from typing import Any, Dict, Optional


class PixPressError(Exception):
    """
    Base exception for all PixPress application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(PixPressError):
    """
    Raised when client input fails validation.

    When:    No file in the form, empty file, size exceeded, unknown preset.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnsupportedImageError(PixPressError):
    """
    Raised when no decode tier could read the upload.

    HTTP:    415 Unsupported Media Type

    Attributes:
        details: One-line reason, prefixed with the sniffed type when known
                 (e.g. "Detected image/heic (heic) - cannot identify image file").
        debug:   What each fallback tier left behind: detected type, scratch
                 path, accumulated path/converter errors, debug copy location.
    """

    def __init__(
        self,
        details: str,
        debug: Optional[Dict[str, Any]] = None,
    ):
        self.details = details
        self.debug = debug or {}
        super().__init__(
            message="Unsupported image format or corrupted image",
            context={"details": details, "debug": self.debug},
        )


class ImageDecodeError(PixPressError):
    """
    Raised when the image library cannot decode a buffer or file.

    Who:     Raised by ImageService.decode_*; each fallback tier catches it
             and moves on to the next one.
    """

    def __init__(
        self,
        message: str = "Image could not be decoded",
        source: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if source:
            ctx["source"] = source
        super().__init__(message=message, context=ctx)


class ImageProcessingError(PixPressError):
    """
    Raised when an image decoded fine but could not be resized or re-encoded.

    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "Compression failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FileStorageError(PixPressError):
    """
    Raised when file system operations fail.

    When:    Scratch directory not writable, disk full, I/O error.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConverterError(PixPressError):
    """
    Raised when the external conversion tool fails.

    What:    Non-zero exit, timeout, or no output file produced.
    Who:     Raised by ConverterService, recorded by CompressionService in the
             415 debug payload. Never reaches the client on its own.
    """

    def __init__(
        self,
        message: str = "External image conversion failed",
        stderr: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if stderr:
            ctx["stderr"] = stderr
        super().__init__(message=message, context=ctx)
        self.stderr = stderr


class CircuitBreakerOpenError(PixPressError):
    """
    Raised when the converter circuit breaker is in OPEN state.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (skip the converter for M seconds)
        → After M seconds → HALF-OPEN (allow one test call)
        → If test succeeds → CLOSED
        → If test fails → OPEN again
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Image converter is temporarily disabled after repeated failures. "
            f"It will be retried in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time
