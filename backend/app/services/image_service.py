"""
PixPress Backend — Image Normalization Service
===============================================

What:  Decodes, auto-rotates, optionally resizes and re-encodes images.
Why:   Single place where the image library is called, so the fallback tiers
       only differ in WHERE the pixels come from, never in how they are processed.
How:   Pillow does all pixel work; pillow-heif registers a HEIC/HEIF opener
       so phone photos decode without a client-side conversion step.
Who:   Called by CompressionService (every tier) and the diagnostic scripts.

Output Format Rule:
    source PNG, or any alpha channel  → WebP  (keeps transparency)
    everything else                   → progressive JPEG
    converter tier                    → always JPEG (the tool's PNG is an
                                        intermediate, not the user's format)

Metadata:
    Nothing is copied from the source (no exif=, no icc_profile= on save),
    so orientation is baked into the pixels and EXIF is dropped.
"""

import io
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import PIL
import pillow_heif
from PIL import Image, ImageOps, features

from app.exceptions import ImageDecodeError, ImageProcessingError
from app.schemas.image import CompressionOptions, FormatSupport, FormatsResponse

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

JPEG = "jpeg"
WEBP = "webp"

MEDIA_TYPES = {
    JPEG: "image/jpeg",
    WEBP: "image/webp",
}


@dataclass
class EncodedImage:
    """Re-encoded output ready to be sent back to the client."""
    data: bytes
    format: str
    width: int
    height: int

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES[self.format]

    @property
    def extension(self) -> str:
        return "webp" if self.format == WEBP else "jpg"


def fit_inside(size: Tuple[int, int], max_width: int, max_height: int) -> Tuple[int, int]:
    """
    Largest size that fits inside the bounding box while keeping aspect ratio.

    A bound <= 0 is ignored. Smaller images are enlarged until they touch
    the box, so the bounds act as a target size, not only a ceiling.

        fit_inside((4000, 3000), 1920, 1920) → (1920, 1440)
        fit_inside((4000, 3000), 0, 600)     → (800, 600)
        fit_inside((640, 480), 1920, 1920)   → (1920, 1440)
    """
    width, height = size
    scales = []
    if max_width > 0:
        scales.append(max_width / width)
    if max_height > 0:
        scales.append(max_height / height)
    if not scales:
        return size

    scale = min(scales)
    return max(1, round(width * scale)), max(1, round(height * scale))


def has_alpha(image: Image.Image) -> bool:
    return image.has_transparency_data


class ImageService:
    """
    Thin wrapper over Pillow for the decode → normalize → encode pipeline.

    All methods are synchronous and CPU-bound; async callers run them through
    starlette's run_in_threadpool.
    """

    # ── Decoding ──────────────────────────────────────────────────────────

    def decode_buffer(self, content: bytes) -> Image.Image:
        """
        Decode an in-memory upload.

        Why load(): Image.open() only reads the header; forcing the decode here
        makes truncated or corrupt bodies fail inside the fallback chain
        instead of later during encoding.

        Raises:
            ImageDecodeError wrapping whatever the decoder raised.
        """
        try:
            image = Image.open(io.BytesIO(content))
            image.load()
            return image
        except Exception as e:
            raise ImageDecodeError(message=str(e), source="buffer") from e

    def decode_path(self, path: str) -> Image.Image:
        """
        Decode an image from disk.

        Some decoders (and libheif in particular) behave differently for
        seekable files than for BytesIO, which is why the path tier exists.
        """
        try:
            with Image.open(path) as opened:
                opened.load()
                image = opened.copy()
                image.format = opened.format
            return image
        except Exception as e:
            raise ImageDecodeError(message=str(e), source="path", context={"path": path}) from e

    # ── Normalization ─────────────────────────────────────────────────────

    def normalize(self, image: Image.Image, options: CompressionOptions) -> Image.Image:
        """Apply EXIF orientation, then scale to fit the requested bounds."""
        image = ImageOps.exif_transpose(image)
        if options.wants_resize:
            target = fit_inside(image.size, options.max_width, options.max_height)
            if target != image.size:
                logger.debug("Resizing %sx%s → %sx%s", *image.size, *target)
                image = image.resize(target, Image.Resampling.LANCZOS)
        return image

    def choose_output(self, image: Image.Image, source_format: Optional[str]) -> str:
        if (source_format or "").upper() == "PNG" or has_alpha(image):
            return WEBP
        return JPEG

    # ── Encoding ──────────────────────────────────────────────────────────

    def encode(self, image: Image.Image, fmt: str, quality: int) -> EncodedImage:
        buffer = io.BytesIO()
        if fmt == WEBP:
            mode = "RGBA" if has_alpha(image) else "RGB"
            if image.mode != mode:
                image = image.convert(mode)
            image.save(buffer, format="WEBP", quality=quality, method=4)
        else:
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            image.save(buffer, format="JPEG", quality=quality, progressive=True, optimize=True)

        return EncodedImage(
            data=buffer.getvalue(),
            format=fmt,
            width=image.width,
            height=image.height,
        )

    def process(
        self,
        image: Image.Image,
        options: CompressionOptions,
        force_format: Optional[str] = None,
    ) -> EncodedImage:
        """
        Normalize and re-encode a decoded image.

        Args:
            image:        Decoded image (format attribute still set)
            options:      Quality and bounds from the request
            force_format: JPEG or WEBP to override the output rule

        Raises:
            ImageProcessingError if resizing or encoding fails.
        """
        fmt = force_format or self.choose_output(image, image.format)
        source = image.format
        try:
            normalized = self.normalize(image, options)
            encoded = self.encode(normalized, fmt, options.quality)
        except Exception as e:
            logger.error("Failed to process %s image: %s", source or "unknown", str(e), exc_info=True)
            raise ImageProcessingError(
                message="Compression failed",
                context={"source_format": source, "output_format": fmt, "error": str(e)},
            ) from e

        logger.info(
            "Encoded %s %dx%d → %s %dx%d q=%d (%d bytes)",
            source or "image", image.width, image.height,
            fmt, encoded.width, encoded.height, options.quality, len(encoded.data),
        )
        return encoded

    # ── Diagnostics ───────────────────────────────────────────────────────

    def heif_supported(self) -> bool:
        Image.init()
        return "HEIF" in Image.OPEN

    def codec_report(self) -> FormatsResponse:
        """Library versions and per-format decode/encode support."""
        Image.init()
        versions: Dict[str, Optional[str]] = {
            "pillow": PIL.__version__,
            "pillow_heif": pillow_heif.__version__,
            "libjpeg": features.version("jpg"),
            "libwebp": features.version("webp"),
            "zlib": features.version("zlib"),
        }
        names = sorted(set(Image.OPEN) | set(Image.SAVE))
        formats = {
            name.lower(): FormatSupport(input=name in Image.OPEN, output=name in Image.SAVE)
            for name in names
        }
        return FormatsResponse(versions=versions, formats=formats)


# ── Singleton Instance ────────────────────────────────────────────────────
image_service = ImageService()
