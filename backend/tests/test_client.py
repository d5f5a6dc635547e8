"""
PixPress — Python Client Tests
===============================

What:  Tests for CompressClient progress tracking, error capture, batch
       behaviour and the filename/size helpers.
How:   The client talks to the real app through ASGITransport; network
       failures are simulated with httpx.MockTransport.
"""

import httpx
import pytest
from httpx import ASGITransport

from app.client import CompressClient, CompressJob, human_file_size, output_filename
from app.main import app


@pytest.fixture
def asgi_client():
    return httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestHelpers:

    def test_output_filename_jpeg(self):
        assert output_filename("IMG_0001.HEIC", "image/jpeg") == "IMG_0001.jpg"

    def test_output_filename_webp(self):
        assert output_filename("logo.png", "image/webp") == "logo.webp"

    def test_output_filename_only_last_extension(self):
        assert output_filename("archive.tar.png", "image/webp") == "archive.tar.webp"

    def test_output_filename_without_extension(self):
        assert output_filename("scan", "image/jpeg") == "scan.jpg"

    def test_human_file_size_zero(self):
        assert human_file_size(0) == "0 B"

    def test_human_file_size_bytes(self):
        assert human_file_size(512) == "512.00 B"

    def test_human_file_size_kb(self):
        assert human_file_size(1536) == "1.50 KB"

    def test_human_file_size_mb(self):
        assert human_file_size(5 * 1024 * 1024) == "5.00 MB"

    def test_human_file_size_caps_at_gb(self):
        assert human_file_size(3 * 1024 ** 4) == "3072.00 GB"


class TestCompressJob:

    def test_from_path(self, tmp_path, jpeg_bytes):
        path = tmp_path / "photo.jpg"
        path.write_bytes(jpeg_bytes)

        job = CompressJob.from_path(str(path))
        assert job.filename == "photo.jpg"
        assert job.size == len(jpeg_bytes)
        assert job.progress == 0

    def test_download_falls_back_to_original(self):
        job = CompressJob(filename="a.jpg", content=b"original")
        assert job.download() == b"original"
        assert job.output_name == "a.jpg"


class TestCompressClient:

    @pytest.mark.asyncio
    async def test_compress_success(self, asgi_client, jpeg_bytes):
        seen = []
        job = CompressJob(filename="IMG_0001.jpg", content=jpeg_bytes, content_type="image/jpeg")

        async with asgi_client:
            client = CompressClient(http_client=asgi_client, on_progress=lambda j: seen.append(j.progress))
            await client.compress(job, quality=85, size_preset="Thumb")

        assert seen == [1, 50, 75, 100]
        assert job.done
        assert job.error is None
        assert job.media_type == "image/jpeg"
        assert job.output_name == "IMG_0001.jpg"
        assert job.download() == job.result

    @pytest.mark.asyncio
    async def test_png_result_named_webp(self, asgi_client, png_bytes):
        job = CompressJob(filename="logo.png", content=png_bytes)

        async with asgi_client:
            await CompressClient(http_client=asgi_client).compress(job)

        assert job.media_type == "image/webp"
        assert job.output_name == "logo.webp"

    @pytest.mark.asyncio
    async def test_server_error_text_becomes_job_error(self, asgi_client, garbage_bytes):
        job = CompressJob(filename="notes.jpg", content=garbage_bytes)

        async with asgi_client:
            await CompressClient(http_client=asgi_client).compress(job)

        assert job.progress == 0
        assert not job.done
        assert "Unsupported image format" in job.error

    @pytest.mark.asyncio
    async def test_empty_content(self, asgi_client):
        job = CompressJob(filename="a.jpg", content=b"")

        async with asgi_client:
            await CompressClient(http_client=asgi_client).compress(job)

        assert job.error == "No file to upload"
        assert job.progress == 0

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        job = CompressJob(filename="a.jpg", content=b"data")

        async with http_client:
            await CompressClient(http_client=http_client, timeout=1).compress(job)

        assert job.error == "Upload timed out"
        assert job.progress == 0

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        job = CompressJob(filename="a.jpg", content=b"data")

        async with http_client:
            await CompressClient(http_client=http_client).compress(job)

        assert job.error == "connection refused"

    @pytest.mark.asyncio
    async def test_empty_error_body(self):
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(502)),
            base_url="http://test",
        )
        job = CompressJob(filename="a.jpg", content=b"data")

        async with http_client:
            await CompressClient(http_client=http_client).compress(job)

        assert job.error == "Server compression failed"

    @pytest.mark.asyncio
    async def test_form_fields(self):
        captured = {}

        def handler(request):
            captured["body"] = request.read()
            captured["path"] = request.url.path
            return httpx.Response(200, content=b"jpeg", headers={"content-type": "image/jpeg"})

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        job = CompressJob(filename="a.jpg", content=b"data")

        async with http_client:
            await CompressClient(http_client=http_client).compress(job, quality=49.6, size_preset="Medium")

        body = captured["body"]
        assert captured["path"] == "/api/compress"
        assert b'name="quality"\r\n\r\n50' in body
        assert b'name="maxWidth"\r\n\r\n1280' in body
        assert b'name="maxHeight"\r\n\r\n1280' in body
        assert b'name="file"; filename="a.jpg"' in body

    @pytest.mark.asyncio
    async def test_compress_all_skips_finished_and_failed(self, asgi_client, jpeg_bytes):
        done = CompressJob(filename="done.jpg", content=jpeg_bytes, progress=100, result=b"x")
        failed = CompressJob(filename="failed.jpg", content=jpeg_bytes, error="boom")
        pending = CompressJob(filename="pending.jpg", content=jpeg_bytes)

        async with asgi_client:
            jobs = await CompressClient(http_client=asgi_client).compress_all([done, failed, pending])

        assert jobs == [done, failed, pending]
        assert done.result == b"x"
        assert failed.error == "boom"
        assert failed.progress == 0
        assert pending.done

    @pytest.mark.asyncio
    async def test_client_does_not_close_borrowed_http_client(self, asgi_client):
        async with asgi_client:
            async with CompressClient(http_client=asgi_client):
                pass
            assert not asgi_client.is_closed
