"""
Re-run the buffer and path decoders on the newest file in DEBUG_UPLOAD_DIR.

Usage:
    DEBUG_UPLOAD_DIR=./debug-uploads python scripts/probe_debug_upload.py
    python scripts/probe_debug_upload.py path/to/file.heic
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from app.config import settings
from app.exceptions import ImageDecodeError
from app.services.image_service import image_service
from app.services.upload_service import upload_service

logger = logging.getLogger("probe_debug_upload")


def latest_debug_file(directory: Path) -> Optional[Path]:
    files = [p for p in directory.iterdir() if p.is_file()]
    if not files:
        return None
    return max(files, key=lambda p: p.stat().st_mtime)


def probe(path: Path) -> int:
    content = path.read_bytes()
    logger.info("Testing %s (%d bytes)", path, len(content))
    logger.info("Header (hex): %s", content[:16].hex())
    logger.info("Detected: %s", upload_service.detect_type(content))

    failures = 0
    for label, decode, arg in (
        ("buffer", image_service.decode_buffer, content),
        ("path", image_service.decode_path, str(path)),
    ):
        try:
            image = decode(arg)
        except ImageDecodeError as e:
            failures += 1
            logger.error("decode from %s failed: %s", label, e.message)
        else:
            logger.info("decode from %s: format=%s mode=%s size=%s", label, image.format, image.mode, image.size)
    return 1 if failures == 2 else 0


def main(argv: list) -> int:
    if len(argv) > 1:
        return probe(Path(argv[1]))

    if not settings.debug_upload_dir:
        logger.error("DEBUG_UPLOAD_DIR is not set and no file was given")
        return 1
    directory = Path(settings.debug_upload_dir)
    if not directory.is_dir():
        logger.error("Cannot read debug dir %s", directory)
        return 1

    path = latest_debug_file(directory)
    if path is None:
        logger.error("No debug file found in %s", directory)
        return 1
    return probe(path)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(main(sys.argv))
