"""
PixPress Backend — Compression Service (Fallback Orchestrator)
===============================================================

What:  Turns uploaded bytes into a re-encoded image, walking through the
       decode fallback tiers until one of them works.
Why:   The image library occasionally refuses a buffer it can read from a
       file, and the host's own image stack occasionally reads what the
       library cannot. Each tier is cheap to try compared to failing the upload.
How:   Composes UploadService (sniffing, scratch files), ImageService (Pillow)
       and ConverterService (CLI tool).
Who:   Called by the POST /api/compress route handler.

Orchestration Flow:
    ┌──────────┐  fail  ┌──────────────┐  fail  ┌─────────────────┐  fail  ┌──────┐
    │  buffer  │───────▶│ sniff + save │───────▶│ converter → PNG │───────▶│ 415  │
    │  decode  │        │ path decode  │        │ buffer decode   │        │      │
    └────┬─────┘        └──────┬───────┘        └────────┬────────┘        └──────┘
         │ ok                  │ ok                      │ ok
         ▼                     ▼                         ▼
    WebP/JPEG by source   WebP/JPEG by source       always JPEG

    Decode failures move to the next tier. Failures AFTER a successful
    decode (resize/encode) are not retried: they surface as
    ImageProcessingError (500).

Scratch Files:
    Every file written on the way (scratch copy, converted PNG) is appended
    to the caller-supplied `scratch_files` list so the route can delete them
    once the response has been sent.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import aiofiles
from starlette.concurrency import run_in_threadpool

from app.exceptions import (
    CircuitBreakerOpenError,
    ConverterError,
    FileStorageError,
    ImageDecodeError,
    UnsupportedImageError,
)
from app.schemas.image import CompressionOptions
from app.services.converter_service import converter_service
from app.services.image_service import JPEG, EncodedImage, image_service
from app.services.upload_service import DetectedType, upload_service

logger = logging.getLogger(__name__)

TIER_BUFFER = "buffer"
TIER_PATH = "path"
TIER_CONVERTER = "converter"


@dataclass
class CompressionResult:
    encoded: EncodedImage
    tier: str
    original_size: int


class CompressionService:
    """
    Stateless orchestrator for the decode fallback chain.

    Error Handling Strategy:
        ImageDecodeError, ConverterError, CircuitBreakerOpenError and
        FileStorageError (scratch write) are expected along the chain and
        are folded into the 415 debug payload. ImageProcessingError and
        anything unexpected propagate untouched.
    """

    async def compress(
        self,
        content: bytes,
        filename: Optional[str],
        options: CompressionOptions,
        scratch_files: Optional[List[str]] = None,
    ) -> CompressionResult:
        """
        Decode, normalize and re-encode an uploaded image.

        Args:
            content:       Raw upload bytes (already size-validated)
            filename:      Client-side filename, for logs and debug copies
            options:       Quality and bounds
            scratch_files: Receives paths of temporary files to clean up

        Returns:
            CompressionResult with the encoded image and the tier that decoded it.

        Raises:
            UnsupportedImageError: no tier could decode the upload
            ImageProcessingError:  decoded, but resize/encode failed
        """
        if scratch_files is None:
            scratch_files = []

        try:
            image = await run_in_threadpool(image_service.decode_buffer, content)
        except ImageDecodeError as buffer_error:
            logger.warning("Buffer decode failed for %s: %s", filename or "upload", buffer_error.message)
            return await self._compress_with_fallbacks(
                content, filename, options, buffer_error, scratch_files
            )

        encoded = await run_in_threadpool(image_service.process, image, options)
        return CompressionResult(encoded=encoded, tier=TIER_BUFFER, original_size=len(content))

    async def _compress_with_fallbacks(
        self,
        content: bytes,
        filename: Optional[str],
        options: CompressionOptions,
        buffer_error: ImageDecodeError,
        scratch_files: List[str],
    ) -> CompressionResult:
        detected = upload_service.detect_type(content)
        logger.info("Detected type for %s: %s", filename or "upload", detected)
        ext = detected.ext if detected else "bin"

        tmp_path: Optional[str] = None
        path_error: Optional[str] = None

        # ── Tier 2: write to disk, decode from path ──────────────────────
        try:
            tmp_path = await upload_service.write_scratch(content, ext)
            scratch_files.append(tmp_path)
        except FileStorageError as e:
            path_error = e.context.get("os_error") or e.message

        if tmp_path:
            try:
                image = await run_in_threadpool(image_service.decode_path, tmp_path)
            except ImageDecodeError as e:
                logger.warning("Path decode failed for %s: %s", tmp_path, e.message)
                path_error = e.message
            else:
                encoded = await run_in_threadpool(image_service.process, image, options)
                logger.info("Disk-path fallback succeeded for %s", tmp_path)
                return CompressionResult(encoded=encoded, tier=TIER_PATH, original_size=len(content))

            # ── Tier 3: external converter, then decode its PNG ──────────
            result, converter_error = await self._try_converter(tmp_path, options, scratch_files, len(content))
            if result is not None:
                return result
            path_error = f"{path_error} | converter: {converter_error}"

        debug_path = await upload_service.persist_debug(content, filename, ext)
        raise UnsupportedImageError(
            details=self._describe(detected, buffer_error),
            debug={
                "detected": detected.as_dict() if detected else None,
                "tmp_path": tmp_path,
                "path_error": path_error,
                "debug_path": debug_path,
            },
        )

    async def _try_converter(
        self,
        tmp_path: str,
        options: CompressionOptions,
        scratch_files: List[str],
        original_size: int,
    ) -> Tuple[Optional[CompressionResult], Optional[str]]:
        """
        Returns:
            (result, None) on success, (None, reason) when the tier failed or was skipped.
        """
        scratch_files.append(f"{tmp_path}.converted.png")
        try:
            converted = await converter_service.convert_to_png(tmp_path)
        except (ConverterError, CircuitBreakerOpenError) as e:
            stderr = e.context.get("stderr")
            reason = f"{e.message} ({stderr})" if stderr else e.message
            logger.warning("Converter tier failed for %s: %s", tmp_path, reason)
            return None, reason

        try:
            async with aiofiles.open(converted, "rb") as f:
                data = await f.read()
            image = await run_in_threadpool(image_service.decode_buffer, data)
        except OSError as e:
            return None, f"could not read converted file: {e}"
        except ImageDecodeError as e:
            logger.error("Conversion succeeded but decoding the PNG failed: %s", e.message)
            return None, f"converted file unreadable: {e.message}"

        encoded = await run_in_threadpool(image_service.process, image, options, JPEG)
        logger.info("Converter fallback succeeded for %s", tmp_path)
        return CompressionResult(encoded=encoded, tier=TIER_CONVERTER, original_size=original_size), None

    @staticmethod
    def _describe(detected: Optional[DetectedType], buffer_error: ImageDecodeError) -> str:
        if detected:
            return f"Detected {detected.mime} ({detected.ext}) - {buffer_error.message}"
        return buffer_error.message


# ── Singleton Instance ────────────────────────────────────────────────────
compression_service = CompressionService()
