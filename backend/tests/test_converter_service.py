"""
PixPress Backend — Converter Service Unit Tests (Mocked)
=========================================================

What:  Tests for tool detection, command building, the subprocess wrapper
       and the circuit breaker around it.
Why:   CI hosts rarely have sips or ImageMagick; the subprocess is mocked.
How:   Patches asyncio.create_subprocess_exec with a fake process.

What we test:
    ✅ auto detection order and explicit tool selection
    ✅ Successful conversion returns <src>.converted.png
    ✅ Non-zero exit, timeout and empty output raise ConverterError
    ✅ Circuit breaker opens after consecutive failures
    ❌ Real conversions (need a host with the tool installed)
"""

import asyncio
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.exceptions import CircuitBreakerOpenError, ConverterError
from app.services.converter_service import (
    CircuitBreaker,
    ConverterService,
    build_command,
    detect_tool,
)

SUBPROCESS = "app.services.converter_service.asyncio.create_subprocess_exec"


def fake_process(returncode: int = 0, stderr: bytes = b"") -> MagicMock:
    process = MagicMock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(b"", stderr))
    process.wait = AsyncMock(return_value=returncode)
    return process


class TestCircuitBreaker:
    """Tests for the CircuitBreaker resilience pattern."""

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        assert cb.state == "closed"
        assert cb.failure_count == 0

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == "closed"
        assert cb.can_execute() is True

    def test_opens_at_threshold(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == "open"

    def test_open_circuit_rejects_calls(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            cb.can_execute()
        assert 0 < exc_info.value.recovery_time <= 60

    def test_half_open_after_recovery_timeout(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)

        assert cb.can_execute() is True
        assert cb.state == "half_open"

    def test_failure_in_half_open_reopens(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=0)
        for _ in range(3):
            cb.record_failure()
        cb.can_execute()

        cb.record_failure()
        assert cb.state == "open"

    def test_half_open_admits_single_trial(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)

        assert cb.can_execute() is True
        with pytest.raises(CircuitBreakerOpenError):
            cb.can_execute()

    def test_trial_success_reopens_the_gate(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)
        cb.can_execute()

        cb.record_success()
        assert cb.can_execute() is True
        assert cb.can_execute() is True

    def test_success_resets(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()

        cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == "closed"


class TestToolSelection:

    def test_none_disables(self):
        with patch("app.services.converter_service.shutil.which", return_value="/usr/bin/x"):
            assert detect_tool("none") is None

    def test_auto_prefers_sips(self):
        with patch("app.services.converter_service.shutil.which", return_value="/usr/bin/x"):
            assert detect_tool("auto") == "sips"

    def test_auto_falls_back_to_imagemagick(self):
        found = {"convert": "/usr/bin/convert"}
        with patch("app.services.converter_service.shutil.which", side_effect=found.get):
            assert detect_tool("auto") == "convert"

    def test_auto_nothing_installed(self):
        with patch("app.services.converter_service.shutil.which", return_value=None):
            assert detect_tool("auto") is None

    def test_explicit_tool_missing(self):
        found = {"sips": "/usr/bin/sips"}
        with patch("app.services.converter_service.shutil.which", side_effect=found.get):
            assert detect_tool("magick") is None

    def test_sips_command(self):
        assert build_command("sips", "/tmp/a.heic", "/tmp/a.png") == [
            "sips", "-s", "format", "png", "/tmp/a.heic", "--out", "/tmp/a.png",
        ]

    def test_imagemagick_command(self):
        assert build_command("magick", "/tmp/a.heic", "/tmp/a.png") == ["magick", "/tmp/a.heic", "/tmp/a.png"]


class TestConvertToPng:

    @pytest.mark.asyncio
    async def test_no_tool(self, tmp_path):
        service = ConverterService(tool="sips", timeout=5)
        service.tool = None

        with pytest.raises(ConverterError, match="No conversion tool"):
            await service.convert_to_png(str(tmp_path / "in.heic"))

    @pytest.mark.asyncio
    async def test_success(self, tmp_path, png_bytes):
        src = tmp_path / "in.heic"
        src.write_bytes(b"heic")
        process = fake_process()

        async def run(*command, **kwargs):
            Path(command[-1]).write_bytes(png_bytes)
            return process

        service = ConverterService(tool="magick", timeout=5)
        with patch(SUBPROCESS, side_effect=run) as mock_exec:
            dst = await service.convert_to_png(str(src))

        assert dst == f"{src}.converted.png"
        assert Path(dst).read_bytes() == png_bytes
        assert mock_exec.call_args.args == ("magick", str(src), dst)
        assert service.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_non_zero_exit_carries_stderr(self, tmp_path):
        service = ConverterService(tool="convert", timeout=5)
        with patch(SUBPROCESS, AsyncMock(return_value=fake_process(1, b"no decode delegate"))):
            with pytest.raises(ConverterError) as exc_info:
                await service.convert_to_png(str(tmp_path / "in.heic"))

        assert exc_info.value.stderr == "no decode delegate"
        assert exc_info.value.context["returncode"] == 1
        assert service.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_clean_exit_without_output(self, tmp_path):
        service = ConverterService(tool="convert", timeout=5)
        with patch(SUBPROCESS, AsyncMock(return_value=fake_process())):
            with pytest.raises(ConverterError, match="produced no output"):
                await service.convert_to_png(str(tmp_path / "in.heic"))

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path):
        process = fake_process()

        async def hang():
            await asyncio.sleep(5)

        process.communicate = hang
        service = ConverterService(tool="convert", timeout=0.01)
        with patch(SUBPROCESS, AsyncMock(return_value=process)):
            with pytest.raises(ConverterError, match="timed out"):
                await service.convert_to_png(str(tmp_path / "in.heic"))

        process.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_tool_cannot_start(self, tmp_path):
        service = ConverterService(tool="convert", timeout=5)
        with patch(SUBPROCESS, AsyncMock(side_effect=FileNotFoundError("convert"))):
            with pytest.raises(ConverterError, match="Could not start convert"):
                await service.convert_to_png(str(tmp_path / "in.heic"))

    @pytest.mark.asyncio
    async def test_half_open_runs_tool_once_for_concurrent_uploads(self, tmp_path, png_bytes):
        release = asyncio.Event()
        process = fake_process()

        async def slow_communicate():
            await release.wait()
            return b"", b""

        process.communicate = slow_communicate

        async def run(*command, **kwargs):
            Path(command[-1]).write_bytes(png_bytes)
            return process

        service = ConverterService(tool="convert", timeout=5)
        service.circuit_breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        service.circuit_breaker.record_failure()
        time.sleep(0.01)

        with patch(SUBPROCESS, side_effect=run) as mock_exec:
            trial = asyncio.create_task(service.convert_to_png(str(tmp_path / "a.heic")))
            await asyncio.sleep(0)

            with pytest.raises(CircuitBreakerOpenError):
                await service.convert_to_png(str(tmp_path / "b.heic"))

            release.set()
            await trial

        assert mock_exec.call_count == 1
        assert service.circuit_breaker.state == "closed"

    @pytest.mark.asyncio
    async def test_cancelled_trial_frees_the_slot(self, tmp_path):
        process = fake_process()

        async def hang():
            await asyncio.sleep(5)

        process.communicate = hang
        service = ConverterService(tool="convert", timeout=10)
        service.circuit_breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        service.circuit_breaker.record_failure()
        time.sleep(0.01)

        with patch(SUBPROCESS, AsyncMock(return_value=process)):
            trial = asyncio.create_task(service.convert_to_png(str(tmp_path / "a.heic")))
            await asyncio.sleep(0)
            trial.cancel()
            with pytest.raises(asyncio.CancelledError):
                await trial

        assert service.circuit_breaker.trial_in_flight is False
        assert service.circuit_breaker.can_execute() is True

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self, tmp_path):
        service = ConverterService(tool="convert", timeout=5)
        service.circuit_breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)

        with patch(SUBPROCESS, AsyncMock(return_value=fake_process(1))) as mock_exec:
            for _ in range(2):
                with pytest.raises(ConverterError):
                    await service.convert_to_png(str(tmp_path / "in.heic"))

            with pytest.raises(CircuitBreakerOpenError):
                await service.convert_to_png(str(tmp_path / "in.heic"))

        assert mock_exec.call_count == 2
        assert service.status() == "circuit_open"

    def test_status(self):
        assert ConverterService(tool="sips").status() == "available"
        unavailable = ConverterService(tool="sips")
        unavailable.tool = None
        assert unavailable.status() == "unavailable"
