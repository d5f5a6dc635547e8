"""
PixPress Backend — Upload Handling Service
===========================================

What:  Pulls the file and options out of a multipart form, validates size,
       sniffs the real file type, and manages scratch/debug copies on disk.
Why:   Keeps every filesystem and form-parsing concern out of the route and
       out of the fallback orchestration.
Who:   Called by the compress route and by CompressionService.
When:  Before decoding (form + size) and during fallbacks (scratch, debug).

Form Contract:
    file | files | upload   The image (first present field wins; lists use
                            their first element)
    quality                 1-100, parsed like JavaScript parseInt; missing,
                            garbage or 0 falls back to the configured default
    maxWidth / maxHeight    Pixel bounds; missing, garbage or <= 0 means "any"
    preset                  Original | Large | Medium | Small | Thumb, used for
                            both axes when no explicit bounds are sent

Type Sniffing:
    python-magic inspects the header bytes. The result is diagnostic only:
    it names the scratch file and explains 415 responses, but never rejects
    an upload on its own (the decoder has the final say).
"""

import logging
import mimetypes
import os
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import aiofiles
import magic
from starlette.datastructures import UploadFile

from app.config import settings
from app.exceptions import FileStorageError, ValidationError
from app.schemas.image import CompressionOptions

logger = logging.getLogger(__name__)

# ── Form Field Names ──────────────────────────────────────────────────────
FILE_FIELDS = ("file", "files", "upload")

# ── Size Presets ──────────────────────────────────────────────────────────
# What: Longest-edge bounds offered by the browser client's size selector
# 0 = keep the original dimensions
SIZE_PRESETS = {
    "original": 0,
    "large": 1920,
    "medium": 1280,
    "small": 800,
    "thumb": 400,
}

# ── Extension Map ─────────────────────────────────────────────────────────
# What: File extension used for scratch files, keyed by sniffed MIME type
# Why explicit: mimetypes does not know HEIC/AVIF on every platform
MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/tiff": "tif",
    "image/heic": "heic",
    "image/heif": "heif",
    "image/heic-sequence": "heics",
    "image/heif-sequence": "heifs",
    "image/avif": "avif",
    "image/x-icon": "ico",
    "image/vnd.microsoft.icon": "ico",
}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")


@dataclass(frozen=True)
class DetectedType:
    """Result of sniffing an upload's header bytes."""
    mime: str
    ext: str
    description: Optional[str] = None

    def as_dict(self) -> dict:
        return {"mime": self.mime, "ext": self.ext, "description": self.description}


def parse_int(value: Any) -> Optional[int]:
    """
    Parse the leading integer of a form value the way JavaScript's parseInt does.

    "85" → 85, " 70px" → 70, "-5" → -5, "abc" → None, None → None
    """
    if value is None:
        return None
    match = _LEADING_INT.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def sanitize_filename(name: Optional[str]) -> str:
    """Replace every character outside [A-Za-z0-9_.-] with an underscore."""
    return _UNSAFE_NAME_CHARS.sub("_", name or "upload")


def now_ms() -> int:
    return int(time.time() * 1000)


class UploadService:
    """
    Manages upload extraction, validation, and scratch file lifecycle.

    Lifecycle of an uploaded file:
        1. pick_upload() finds the file field in the parsed form
        2. parse_options() normalizes quality / bounds / preset
        3. validate_size() rejects empty and oversized uploads
        4. (fallback only) detect_type() + write_scratch() put the bytes on disk
        5. (all tiers failed) persist_debug() keeps a copy if configured
        6. cleanup_file() removes scratch files after the response is sent
    """

    def __init__(self, scratch_dir: Optional[str] = None, debug_dir: Optional[str] = None):
        """
        Args:
            scratch_dir: Override settings.scratch_dir (used in tests).
            debug_dir:   Override settings.debug_upload_dir (used in tests).
        """
        self.scratch_dir = Path(scratch_dir or settings.scratch_dir).resolve()
        debug = debug_dir if debug_dir is not None else settings.debug_upload_dir
        self.debug_dir = Path(debug).resolve() if debug else None

    # ── Form Handling ─────────────────────────────────────────────────────

    def pick_upload(self, form: Mapping[str, Any]) -> UploadFile:
        """
        Return the uploaded file from the first recognized form field.

        Raises:
            ValidationError if none of file/files/upload carries a file.
        """
        for field in FILE_FIELDS:
            values = form.getlist(field) if hasattr(form, "getlist") else [form.get(field)]
            for value in values:
                if isinstance(value, (list, tuple)):
                    value = value[0] if value else None
                if isinstance(value, UploadFile):
                    return value
        raise ValidationError(
            message="No file uploaded",
            field="file",
            context={"accepted_fields": list(FILE_FIELDS)},
        )

    def parse_options(self, form: Mapping[str, Any]) -> CompressionOptions:
        """
        Build CompressionOptions from raw form values.

        Quality:
            Leading-integer parse; None or 0 → settings.default_quality,
            then clamped into 1..100.

        Bounds:
            Explicit maxWidth/maxHeight win. If neither is sent, a `preset`
            applies its edge length to both axes. Negative values collapse to 0.

        Raises:
            ValidationError for an unknown preset name.
        """
        quality = parse_int(form.get("quality")) or settings.default_quality
        quality = max(1, min(100, quality))

        raw_width = form.get("maxWidth")
        raw_height = form.get("maxHeight")
        max_width = max(0, parse_int(raw_width) or 0)
        max_height = max(0, parse_int(raw_height) or 0)

        preset = form.get("preset")
        if preset and raw_width is None and raw_height is None:
            key = str(preset).strip().lower()
            if key not in SIZE_PRESETS:
                raise ValidationError(
                    message=f"Unknown size preset '{preset}'",
                    field="preset",
                    context={"allowed": [name.capitalize() for name in SIZE_PRESETS]},
                )
            max_width = max_height = SIZE_PRESETS[key]

        return CompressionOptions(quality=quality, max_width=max_width, max_height=max_height)

    # ── Validation ────────────────────────────────────────────────────────

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """
        Validate file size against configured maximum.

        Args:
            content_length: Size declared by the client (may be None or inaccurate)
            actual_size: Actual byte count of the uploaded file

        Raises:
            ValidationError for empty or oversized uploads.
        """
        max_mb = settings.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(
                message="Uploaded file is empty",
                field="file",
                context={"actual_size": 0},
            )

        if content_length and content_length > settings.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB. Please upload a smaller image.",
                field="file",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > settings.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def detect_type(self, content: bytes) -> Optional[DetectedType]:
        """
        Sniff the MIME type from the file header bytes.

        Returns:
            DetectedType, or None when libmagic itself fails. Unknown
            content comes back as application/octet-stream with ext "bin".
        """
        try:
            mime = magic.from_buffer(content, mime=True)
            description = magic.from_buffer(content)
        except (magic.MagicException, OSError) as e:
            logger.error("File type detection failed: %s", str(e))
            return None

        ext = MIME_EXTENSIONS.get(mime)
        if ext is None:
            guessed = mimetypes.guess_extension(mime) if mime else None
            ext = guessed.lstrip(".") if guessed else "bin"
        return DetectedType(mime=mime or "application/octet-stream", ext=ext, description=description)

    # ── Disk ──────────────────────────────────────────────────────────────

    async def write_scratch(self, content: bytes, ext: str) -> str:
        """
        Write the upload to the scratch directory for the path-decode tier.

        Returns:
            Absolute path of the written file (upload-<ms>-<uuid8>.<ext>).

        Raises:
            FileStorageError if the directory or file cannot be written.
        """
        path = self.scratch_dir / f"upload-{now_ms()}-{uuid.uuid4().hex[:8]}.{ext}"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to write scratch file %s: %s", path, str(e))
            raise FileStorageError(
                message="Failed to write upload to scratch storage",
                context={"path": str(path), "os_error": str(e)},
            )

        logger.info("Wrote buffer to %s (%d bytes) for path fallback", path.name, len(content))
        return str(path)

    async def persist_debug(self, content: bytes, filename: Optional[str], ext: str) -> Optional[str]:
        """
        Keep a copy of an undecodable upload for later inspection.

        Returns:
            Path of the debug copy, or None when debug_upload_dir is not configured
            or the copy could not be written.
        """
        if self.debug_dir is None:
            return None

        path = self.debug_dir / f"{now_ms()}-{sanitize_filename(filename)}.{ext}"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to write debug upload %s: %s", path, str(e))
            return None

        logger.info("Wrote debug upload to %s", path)
        return str(path)

    async def cleanup_file(self, file_path: str) -> None:
        """
        Remove a scratch file (runs as a background task after the response).

        Best-effort: missing files are ignored and failures are only logged.
        """
        try:
            path = Path(file_path)
            if path.exists():
                os.remove(path)
                logger.debug("Cleaned up file: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", file_path, str(e))


# ── Singleton Instance ────────────────────────────────────────────────────
upload_service = UploadService()
