"""
PixPress — Python Client
=========================

What:  Uploads files to POST /api/compress and tracks per-file progress,
       errors and results, mirroring what the browser client keeps in state.
How:   httpx.AsyncClient, one request per file, 60s timeout per upload.
Who:   Scripts and tests; any frontend can follow the same contract.

Per-file progress milestones:
     1   request being prepared
    50   upload in flight
    75   response received, body being read
   100   compressed result available
     0   failed (error is set)
"""

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import httpx

logger = logging.getLogger(__name__)

# Longest-edge bounds sent as both maxWidth and maxHeight; 0 = no resize
SIZE_PRESETS = {
    "Original": 0,
    "Large": 1920,
    "Medium": 1280,
    "Small": 800,
    "Thumb": 400,
}

QUALITY_PRESETS = {
    "High": 85,
    "Medium": 70,
    "Low": 50,
}

DEFAULT_TIMEOUT = 60.0

_EXTENSION = re.compile(r"\.[^.]+$")


def output_filename(name: str, media_type: Optional[str]) -> str:
    """
    Download name for a compressed result: same stem, extension from the response type.

        output_filename("IMG_0001.HEIC", "image/jpeg") → "IMG_0001.jpg"
        output_filename("logo.png", "image/webp")      → "logo.webp"
    """
    ext = ".webp" if media_type == "image/webp" else ".jpg"
    if _EXTENSION.search(name):
        return _EXTENSION.sub(ext, name)
    return name + ext


def human_file_size(num_bytes: int) -> str:
    """
    Format a byte count with two decimals in B/KB/MB/GB.

        human_file_size(0)        → "0 B"
        human_file_size(1536)     → "1.50 KB"
    """
    if num_bytes == 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(num_bytes) / math.log(1024))), len(units) - 1)
    return f"{num_bytes / 1024 ** i:.2f} {units[i]}"


@dataclass
class CompressJob:
    """State of one file moving through the compressor."""
    filename: str
    content: bytes
    content_type: Optional[str] = None
    progress: int = 0
    result: Optional[bytes] = None
    media_type: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_path(cls, path: str) -> "CompressJob":
        p = Path(path)
        return cls(filename=p.name, content=p.read_bytes())

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def done(self) -> bool:
        return self.result is not None

    @property
    def in_flight(self) -> bool:
        return 0 < self.progress < 100

    @property
    def output_name(self) -> str:
        if not self.done:
            return self.filename
        return output_filename(self.filename, self.media_type)

    def download(self) -> bytes:
        """Compressed bytes when available, the original otherwise."""
        return self.result if self.result is not None else self.content


class CompressClient:
    """
    Async client for the compress endpoint.

    Usage:
        async with CompressClient("http://localhost:3000") as client:
            job = CompressJob.from_path("IMG_0001.HEIC")
            await client.compress(job, quality=QUALITY_PRESETS["High"], size_preset="Medium")
            Path(job.output_name).write_bytes(job.download())
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
        on_progress: Optional[Callable[[CompressJob], None]] = None,
    ):
        """
        Args:
            base_url:    Server root; the endpoint is <base_url>/api/compress
            timeout:     Per-upload timeout in seconds
            http_client: Pre-built client (tests pass one bound to ASGITransport)
            on_progress: Called with the job after every progress change
        """
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url)
        self.timeout = timeout
        self.on_progress = on_progress

    async def __aenter__(self) -> "CompressClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _update(self, job: CompressJob, progress: int, error: Optional[str] = None) -> None:
        job.progress = progress
        job.error = error
        if self.on_progress:
            self.on_progress(job)

    async def compress(
        self,
        job: CompressJob,
        quality: int = QUALITY_PRESETS["Medium"],
        size_preset: str = "Large",
    ) -> CompressJob:
        """
        Upload one file and store the outcome on the job.

        Never raises for server or network failures: they end up in job.error
        with progress reset to 0, so a batch keeps going.
        """
        self._update(job, 1)

        if not job.content:
            self._update(job, 0, "No file to upload")
            return job

        max_dim = SIZE_PRESETS.get(size_preset, 0)
        data = {
            "quality": str(round(quality)),
            "maxWidth": str(max_dim),
            "maxHeight": str(max_dim),
        }
        files = {"file": (job.filename, job.content, job.content_type or "application/octet-stream")}

        self._update(job, 50)
        try:
            response = await self._client.post(
                "/api/compress", data=data, files=files, timeout=self.timeout
            )
        except httpx.TimeoutException:
            logger.warning("Upload of %s timed out after %.0fs", job.filename, self.timeout)
            self._update(job, 0, "Upload timed out")
            return job
        except httpx.HTTPError as e:
            logger.warning("Upload of %s failed: %s", job.filename, e)
            self._update(job, 0, str(e) or type(e).__name__)
            return job

        self._update(job, 75)

        if not response.is_success:
            self._update(job, 0, response.text or "Server compression failed")
            return job

        job.result = response.content
        job.media_type = response.headers.get("content-type", "").split(";")[0].strip() or None
        self._update(job, 100)
        logger.info(
            "Compressed %s: %s → %s",
            job.filename, human_file_size(job.size), human_file_size(len(job.result)),
        )
        return job

    async def compress_all(
        self,
        jobs: Iterable[CompressJob],
        quality: int = QUALITY_PRESETS["Medium"],
        size_preset: str = "Large",
    ) -> List[CompressJob]:
        """
        Compress jobs one after another.

        Skips jobs that are already compressed, errored, or in flight.
        """
        jobs = list(jobs)
        for job in jobs:
            if job.done or job.error or job.progress > 0:
                logger.debug("Skipping %s (progress=%d, error=%s)", job.filename, job.progress, job.error)
                continue
            await self.compress(job, quality=quality, size_preset=size_preset)
        return jobs
