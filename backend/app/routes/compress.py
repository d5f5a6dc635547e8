"""
PixPress Backend — Compress Route Handler
==========================================

What:  Handles POST /api/compress: upload an image, get it back re-encoded.
How:   Parses the multipart form, delegates to CompressionService, returns
       the encoded bytes with the matching Content-Type.
Who:   Called by the browser client (and app.client.CompressClient).

Request Flow:
    1. Client sends multipart/form-data with file + quality/maxWidth/maxHeight
    2. UploadService picks the file field and normalizes the options
    3. Size validation (empty / over max_file_size → 400)
    4. CompressionService walks the decode tiers
    5. 200 with image/jpeg or image/webp body
    6. Scratch files are deleted after the response (background task),
       or immediately when the request fails

Response Headers:
    Content-Disposition   inline; filename="<stem>.<jpg|webp>"
    X-Decode-Tier         buffer | path | converter
    X-Original-Size       upload size in bytes
    X-Compressed-Size     response size in bytes
"""

import logging
from pathlib import Path
from typing import List

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import Response

from app.schemas.image import ErrorResponse
from app.services.compression_service import compression_service
from app.services.upload_service import sanitize_filename, upload_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Compress"])


@router.post(
    "/compress",
    response_class=Response,
    responses={
        200: {
            "description": "Re-encoded image",
            "content": {"image/jpeg": {}, "image/webp": {}},
        },
        400: {"description": "No file, empty file, or file too large", "model": ErrorResponse},
        415: {"description": "No decoder could read the upload", "model": ErrorResponse},
        500: {"description": "Compression failed", "model": ErrorResponse},
    },
    summary="Compress an image",
    description=(
        "Upload an image as multipart/form-data (field `file`, `files` or `upload`). "
        "Optional fields: `quality` (1-100, default 70), `maxWidth`, `maxHeight`, "
        "`preset` (Original, Large, Medium, Small, Thumb). The image is auto-rotated, "
        "scaled to fit the bounds, and returned as WebP (PNG or transparent sources) "
        "or progressive JPEG."
    ),
)
async def compress_image(request: Request, background_tasks: BackgroundTasks) -> Response:
    """
    Compress one uploaded image.

    Why request.form() instead of File()/Form() parameters:
        The file may arrive under any of three field names and numeric fields
        are parsed leniently (parseInt semantics), which declared parameters
        would reject with 422.

    Error responses (handled by global exception handlers):
        HTTP 400: ValidationError
        HTTP 415: UnsupportedImageError
        HTTP 500: ImageProcessingError / unexpected errors
    """
    form = await request.form()
    scratch_files: List[str] = []

    try:
        upload = upload_service.pick_upload(form)
        options = upload_service.parse_options(form)
        content = await upload.read()

        logger.info(
            "Received compress request: filename=%s, size=%d bytes, quality=%d, max=%dx%d",
            upload.filename or "unknown",
            len(content),
            options.quality,
            options.max_width,
            options.max_height,
        )

        upload_service.validate_size(upload.size, len(content))
        result = await compression_service.compress(
            content=content,
            filename=upload.filename,
            options=options,
            scratch_files=scratch_files,
        )
    except Exception:
        for path in scratch_files:
            await upload_service.cleanup_file(path)
        raise
    finally:
        await form.close()

    for path in scratch_files:
        background_tasks.add_task(upload_service.cleanup_file, path)

    encoded = result.encoded
    stem = sanitize_filename(Path(upload.filename or "image").stem)
    return Response(
        content=encoded.data,
        media_type=encoded.media_type,
        headers={
            "Content-Disposition": f'inline; filename="{stem}.{encoded.extension}"',
            "X-Decode-Tier": result.tier,
            "X-Original-Size": str(result.original_size),
            "X-Compressed-Size": str(len(encoded.data)),
        },
        background=background_tasks,
    )
