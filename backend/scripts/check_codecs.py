"""
Print the image library versions and per-format decode/encode support as JSON.

Usage:
    python scripts/check_codecs.py
"""

import json
import logging
import sys

from app.services.image_service import image_service

logger = logging.getLogger("check_codecs")


def main() -> int:
    try:
        report = image_service.codec_report()
    except Exception as e:
        logger.error("Error while checking image codecs: %s", e, exc_info=True)
        return 1

    print(json.dumps({"versions": report.versions}, indent=2))
    print(json.dumps({"formats": report.model_dump()["formats"]}, indent=2))
    print(json.dumps({"heif_support": image_service.heif_supported()}, indent=2))
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(main())
