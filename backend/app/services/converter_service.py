"""
PixPress Backend — External Converter Service
==============================================

What:  Last-resort conversion of an undecodable file to PNG using a CLI tool
       installed on the host.
Why:   System image stacks (macOS ImageIO behind `sips`, ImageMagick's
       delegates) sometimes read files that Pillow rejects: exotic JPEG
       variants, HEIC flavours newer than the bundled libheif.
How:   Runs the tool with asyncio subprocesses (argument list, no shell),
       with a timeout, behind a circuit breaker.
Who:   Called by CompressionService for the converter tier.

Tool Selection (settings.converter):
    auto     sips → magick → convert, first one found on PATH
    sips     macOS only
    magick   ImageMagick 7
    convert  ImageMagick 6
    none     converter tier disabled

Resilience Strategy:
    A broken or missing delegate makes every call fail the same way, and
    each failure can cost up to converter_timeout seconds. After
    cb_failure_threshold consecutive failures the breaker opens and the tier
    is skipped until cb_recovery_timeout has elapsed.
"""

import asyncio
import logging
import shutil
import time
from pathlib import Path
from typing import List, Optional

from app.config import settings
from app.exceptions import CircuitBreakerOpenError, ConverterError

logger = logging.getLogger(__name__)

AUTO_ORDER = ("sips", "magick", "convert")


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Implements the circuit breaker pattern around the converter tool.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (skipping the tool)
            → can_execute() raises CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow ONE request through; concurrent callers get
              CircuitBreakerOpenError until it reports back
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Thread Safety:
        Not thread-safe (plain counters). Every caller runs on the single
        uvicorn event loop and can_execute() never awaits, so checking and
        claiming the trial slot cannot interleave.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None
        self.trial_in_flight = False

    def can_execute(self) -> bool:
        """
        Check if a call is allowed through the circuit breaker.

        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout hasn't
            elapsed, or if HALF_OPEN and the trial call is still running.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Converter circuit breaker HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                self.trial_in_flight = True
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        # HALF_OPEN
        if self.trial_in_flight:
            raise CircuitBreakerOpenError(recovery_time=1)
        self.trial_in_flight = True
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Converter circuit breaker CLOSED (tool recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None
        self.trial_in_flight = False

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()
        self.trial_in_flight = False

        if self.state == self.HALF_OPEN:
            logger.warning("Converter circuit breaker returning to OPEN (test call failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Converter circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Converter Service
# ══════════════════════════════════════════════════════════════════════════

def detect_tool(preference: str) -> Optional[str]:
    """
    Resolve the converter setting to a tool name available on this host.

    Returns:
        "sips", "magick", "convert", or None when nothing usable is installed.
    """
    if preference == "none":
        return None
    candidates = AUTO_ORDER if preference == "auto" else (preference,)
    for name in candidates:
        if shutil.which(name):
            return name
    return None


def build_command(tool: str, src: str, dst: str) -> List[str]:
    if tool == "sips":
        return ["sips", "-s", "format", "png", src, "--out", dst]
    return [tool, src, dst]


class ConverterService:
    """
    Converts files to PNG with the host's conversion tool.

    The tool is detected once at construction; `tool is None` means the
    converter tier is unavailable on this host.
    """

    def __init__(self, tool: Optional[str] = None, timeout: Optional[float] = None):
        """
        Args:
            tool:    Force a tool name (tests); None means detect from settings.
            timeout: Override settings.converter_timeout.
        """
        self.tool = tool if tool is not None else detect_tool(settings.converter)
        self.timeout = timeout or settings.converter_timeout
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        if self.tool:
            logger.info("Converter: %s available on host", self.tool)
        else:
            logger.info("Converter: no conversion tool available on host")

    @property
    def available(self) -> bool:
        return self.tool is not None

    def status(self) -> str:
        """available, unavailable, or circuit_open (for the health check)."""
        if not self.available:
            return "unavailable"
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return "circuit_open"
        return "available"

    async def convert_to_png(self, src: str) -> str:
        """
        Convert `src` to `<src>.converted.png`.

        Flow:
            1. Check circuit breaker → may raise CircuitBreakerOpenError
            2. Run the tool, killing it after `timeout` seconds
            3. Require exit code 0 AND a non-empty output file
            4. Record success/failure in the circuit breaker

        Returns:
            Path of the converted PNG.

        Raises:
            ConverterError: no tool, tool failed, timed out, or produced nothing
            CircuitBreakerOpenError: too many recent failures
        """
        if not self.available:
            raise ConverterError(message="No conversion tool available on host")

        self.circuit_breaker.can_execute()

        dst = f"{src}.converted.png"
        command = build_command(self.tool, src, dst)
        logger.info("Attempting %s conversion to %s", self.tool, Path(dst).name)

        try:
            await self._run(command)
            if not Path(dst).is_file() or Path(dst).stat().st_size == 0:
                raise ConverterError(
                    message=f"{self.tool} exited cleanly but produced no output",
                    context={"output": dst},
                )
        except ConverterError:
            self.circuit_breaker.record_failure()
            raise
        except BaseException:
            # Cancelled or unexpected: free the half-open trial slot without a verdict
            self.circuit_breaker.trial_in_flight = False
            raise

        self.circuit_breaker.record_success()
        return dst

    async def _run(self, command: List[str]) -> None:
        start_time = time.perf_counter()
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ConverterError(message=f"Could not start {command[0]}: {e}")

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ConverterError(
                message=f"{command[0]} timed out after {self.timeout:.0f}s",
                context={"timeout": self.timeout},
            )

        duration_ms = (time.perf_counter() - start_time) * 1000
        stderr_text = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
        if process.returncode != 0:
            logger.warning(
                "%s exited with %d after %.0fms: %s",
                command[0], process.returncode, duration_ms, stderr_text,
            )
            raise ConverterError(
                message=f"{command[0]} exited with status {process.returncode}",
                stderr=stderr_text or None,
                context={"returncode": process.returncode},
            )
        logger.info("%s conversion finished in %.0fms", command[0], duration_ms)


# ── Singleton Instance ────────────────────────────────────────────────────
# Why singleton: the breaker state must be shared across requests
converter_service = ConverterService()
