"""
PixPress Backend — Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── temp_storage: Temporary directory for scratch/debug files
    ├── jpeg_bytes / png_bytes / rgba_png_bytes: Real images generated with Pillow
    ├── rotated_jpeg_bytes: JPEG carrying EXIF orientation 6
    ├── garbage_bytes: Bytes no decoder accepts
    └── test_client: HTTPX AsyncClient for API endpoint testing
"""

import io
import os
import tempfile

# Override settings for testing BEFORE any app imports
os.environ["SCRATCH_DIR"] = tempfile.mkdtemp(prefix="pixpress_test_")
os.environ["CONVERTER"] = "none"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("DEBUG_UPLOAD_DIR", None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image

EXIF_ORIENTATION = 0x0112


def _encode(image: Image.Image, fmt: str, **kwargs) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **kwargs)
    return buffer.getvalue()


@pytest.fixture
def temp_storage(tmp_path):
    """A fresh directory per test for scratch and debug files."""
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def jpeg_bytes():
    """400x300 RGB JPEG."""
    return _encode(Image.new("RGB", (400, 300), (200, 30, 30)), "JPEG", quality=95)


@pytest.fixture
def png_bytes():
    """400x300 opaque RGB PNG."""
    return _encode(Image.new("RGB", (400, 300), (30, 200, 30)), "PNG")


@pytest.fixture
def rgba_png_bytes():
    """200x200 PNG with a transparent half."""
    image = Image.new("RGBA", (200, 200), (0, 0, 255, 255))
    image.paste((0, 0, 0, 0), (0, 0, 100, 200))
    return _encode(image, "PNG")


@pytest.fixture
def rotated_jpeg_bytes():
    """
    400x200 JPEG whose EXIF says "rotate 90° CW" (orientation 6).

    Displayed correctly it is 200 wide and 400 tall.
    """
    image = Image.new("RGB", (400, 200), (10, 10, 10))
    exif = Image.Exif()
    exif[EXIF_ORIENTATION] = 6
    return _encode(image, "JPEG", exif=exif)


@pytest.fixture
def garbage_bytes():
    return b"this is definitely not an image " * 8


@pytest_asyncio.fixture
async def test_client():
    """
    HTTPX AsyncClient talking to the FastAPI app through ASGITransport.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from app.main import app
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
