"""
Encode task runner: one FFmpeg invocation per (source, resolution).
"""

import asyncio
import os
import re
import shutil
import signal
import subprocess
import sys
import time
import logging
from pathlib import Path
from typing import Optional, List, Tuple, Dict, Any

from ..config import TranscodingConfig
from ..layout import OutputLayout, PLAYLIST_NAME
from ..models import ResolutionSpec, StreamResult, StreamStatus
from .commands import CommandBuilder
from .error_classifier import get_error_classifier

logger = logging.getLogger(__name__)

_EXTINF_RE = re.compile(r"^#EXTINF:\s*([\d.]+)")


class EncodeTaskRunner:
    """Runs the external encoder for a single resolution of a job."""

    # Seconds between timeout/stall checks
    poll_interval: float = 1.0

    def __init__(
        self,
        layout: OutputLayout,
        transcoding_config: TranscodingConfig,
        ffmpeg_path: Optional[str] = None
    ):
        self.layout = layout
        self.config = transcoding_config
        self.ffmpeg_path = ffmpeg_path or self._find_ffmpeg()
        self.command_builder = CommandBuilder(self.ffmpeg_path, transcoding_config)
        self.classifier = get_error_classifier()

    def _find_ffmpeg(self) -> str:
        """Find ffmpeg executable."""
        if self.config.ffmpeg_path != "auto":
            return self.config.ffmpeg_path

        ffmpeg = shutil.which("ffmpeg")
        if ffmpeg:
            return ffmpeg
        return "ffmpeg"

    async def run_task(
        self,
        source_path: str,
        resolution: ResolutionSpec,
        output_dir: Path,
        segment_duration: int
    ) -> StreamResult:
        """
        Encode ``source_path`` at ``resolution`` into ``output_dir``.

        Always returns a result (succeeded or failed) and never retries.
        Cancellation stops the encoder process and propagates.
        """
        if segment_duration <= 0:
            raise ValueError(f"segment_duration must be positive, got {segment_duration}")

        output_dir = Path(output_dir)
        playlist_path = output_dir / PLAYLIST_NAME
        playlist_url = self.layout.url_for_path(playlist_path)

        def failed(error: str, category: Optional[str] = None) -> StreamResult:
            if category is None:
                _, category = self.classifier.classify(error)
            logger.error(f"[Encode] Error during transcoding to {resolution.label}: {error}")
            return StreamResult(
                resolution=resolution,
                playlist_url=playlist_url,
                status=StreamStatus.FAILED,
                error=error,
                error_category=category
            )

        if not os.path.isfile(source_path) or not os.access(source_path, os.R_OK):
            return failed(f"Source file is not readable: {source_path}", "fatal")
        if not output_dir.is_dir():
            return failed(f"Output directory does not exist: {output_dir}", "fatal")

        cmd = self.command_builder.build_hls_command(
            source_path, resolution, output_dir, segment_duration
        )
        logger.info(f"[Encode] Transcoding to {resolution.label} ({resolution.dimensions})")

        return_code, error_output = await self._run_ffmpeg(cmd, resolution.label)

        if return_code != 0:
            summary = self.classifier.summarize(error_output) or "no error output"
            _, category = self.classifier.classify(error_output)
            return failed(f"Encoder failed with exit code {return_code}: {summary}", category)

        if not self._playlist_valid(playlist_path):
            return failed(f"Encoder finished but produced no playlist at {playlist_path}")

        bandwidth = None
        if self.config.measure_bandwidth:
            loop = asyncio.get_running_loop()
            bandwidth = await loop.run_in_executor(None, self.measure_bandwidth, playlist_path)

        logger.info(f"[Encode] Transcoding to {resolution.label} finished")
        return StreamResult(
            resolution=resolution,
            playlist_url=playlist_url,
            status=StreamStatus.SUCCEEDED,
            bandwidth=bandwidth
        )

    def _playlist_valid(self, playlist_path: Path) -> bool:
        if not playlist_path.is_file():
            return False
        try:
            head = playlist_path.read_text(errors="ignore")[:64]
        except OSError:
            return False
        return head.startswith("#EXTM3U")

    def measure_bandwidth(self, playlist_path: Path) -> Optional[int]:
        """
        Average bitrate (bits/s) of the segments a media playlist lists.

        Returns None when durations or segment files are missing.
        """
        total_duration = 0.0
        total_bytes = 0
        pending_duration: Optional[float] = None

        for raw in playlist_path.read_text(errors="ignore").splitlines():
            line = raw.strip()
            match = _EXTINF_RE.match(line)
            if match:
                pending_duration = float(match.group(1))
                continue
            if not line or line.startswith("#") or pending_duration is None:
                continue

            segment = playlist_path.parent / line
            if not segment.is_file():
                logger.warning(f"[Encode] Segment listed but missing: {segment}")
                return None
            total_bytes += segment.stat().st_size
            total_duration += pending_duration
            pending_duration = None

        if total_duration <= 0:
            return None
        return int(total_bytes * 8 / total_duration)

    async def _graceful_terminate(self, process: asyncio.subprocess.Process) -> None:
        """
        Terminate FFmpeg, escalating SIGINT -> SIGTERM -> SIGKILL.

        SIGINT lets FFmpeg finalize the current segment.
        """
        if process.returncode is not None:
            return

        try:
            if sys.platform == "win32":
                process.send_signal(signal.CTRL_BREAK_EVENT)
            else:
                process.send_signal(signal.SIGINT)
        except (ProcessLookupError, OSError):
            pass

        try:
            await asyncio.wait_for(process.wait(), timeout=5.0)
            logger.debug("[Encode] FFmpeg terminated gracefully")
            return
        except asyncio.TimeoutError:
            pass

        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=3.0)
            logger.debug("[Encode] FFmpeg terminated with SIGTERM")
            return
        except (asyncio.TimeoutError, ProcessLookupError, OSError):
            pass

        try:
            process.kill()
            await process.wait()
            logger.warning("[Encode] FFmpeg killed forcefully")
        except (ProcessLookupError, OSError):
            pass

    async def _run_ffmpeg(self, cmd: List[str], label: str) -> Tuple[int, str]:
        """
        Run FFmpeg until it exits, times out or stalls.

        Returns:
            Tuple of (return_code, error_output). Return code is -1 if the
            process could not be started or had to be stopped.
        """
        logger.debug(f"[Encode] Running FFmpeg: {' '.join(cmd)}")

        try:
            kwargs: Dict[str, Any] = {
                "stdin": asyncio.subprocess.DEVNULL,
                "stdout": asyncio.subprocess.DEVNULL,
                "stderr": asyncio.subprocess.PIPE,
            }
            if sys.platform == "win32":
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

            process = await asyncio.create_subprocess_exec(*cmd, **kwargs)
        except Exception as e:
            logger.error(f"[Encode] Failed to start FFmpeg for {label}: {e}")
            return -1, f"Failed to start encoder: {e}"

        stderr_lines: List[str] = []
        started = time.monotonic()
        last_activity = started
        stop_reason: Optional[str] = None

        async def read_stderr():
            """Collect stderr; FFmpeg rewrites progress with bare carriage returns."""
            nonlocal last_activity
            pending = ""
            while True:
                chunk = await process.stderr.read(4096)
                if not chunk:
                    break
                last_activity = time.monotonic()
                pending += chunk.decode("utf-8", errors="ignore")
                *complete, pending = re.split(r"[\r\n]", pending)
                stderr_lines.extend(line for line in complete if line)
                # Keep only last 100 lines to avoid memory growth
                del stderr_lines[:-100]
            if pending:
                stderr_lines.append(pending)

        async def monitor():
            nonlocal stop_reason
            while process.returncode is None:
                now = time.monotonic()
                if now - started > self.config.task_timeout:
                    stop_reason = f"[TIMEOUT after {self.config.task_timeout}s]"
                elif now - last_activity > self.config.stall_timeout:
                    stop_reason = f"[STALLED after {self.config.stall_timeout}s]"

                if stop_reason:
                    logger.error(f"[Encode] {label}: {stop_reason} terminating FFmpeg")
                    await self._graceful_terminate(process)
                    return
                await asyncio.sleep(self.poll_interval)

        stderr_task = asyncio.create_task(read_stderr())
        monitor_task = asyncio.create_task(monitor())

        try:
            await stderr_task
            await process.wait()
        except asyncio.CancelledError:
            logger.info(f"[Encode] {label} cancelled, terminating FFmpeg")
            await self._graceful_terminate(process)
            raise
        finally:
            monitor_task.cancel()
            stderr_task.cancel()
            await asyncio.gather(monitor_task, stderr_task, return_exceptions=True)

        return_code = process.returncode
        if return_code is None or stop_reason:
            return_code = -1

        if stop_reason:
            stderr_lines.append(stop_reason)
        error_output = "\n".join(stderr_lines)

        return return_code, error_output
