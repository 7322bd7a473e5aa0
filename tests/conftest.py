"""
LadderStream Test Configuration and Fixtures

Provides:
- Isolated configuration with temp upload/output directories
- A fake FFmpeg executable whose behaviour tests control per resolution
- An in-process fake encode runner for orchestrator and API tests
- Auto-generated test media for the real FFmpeg integration tests
"""

import asyncio
import os
import shutil
import stat
import subprocess
from pathlib import Path
from typing import Dict, List, Optional
import pytest

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from ladderstream.config import (
    LadderStreamConfig, LoggingConfig, StorageConfig, TranscodingConfig, set_config
)
from ladderstream.layout import OutputLayout, PLAYLIST_NAME
from ladderstream.models import ResolutionSpec, StreamResult, StreamStatus


LADDER_240_360 = [
    ResolutionSpec(width=426, height=240, label="240p"),
    ResolutionSpec(width=640, height=360, label="360p"),
]


# =============================================================================
# FAKE ENCODER
# =============================================================================

FAKE_FFMPEG_SCRIPT = """#!/bin/sh
# Stand-in for ffmpeg: last argument is the playlist, -vf carries scale=WxH.
CONTROL="@CONTROL@"
echo "$@" >> "$CONTROL/calls.log"
out=""
scale=""
prev=""
for arg in "$@"; do
    if [ "$prev" = "-vf" ]; then scale="$arg"; fi
    prev="$arg"
    out="$arg"
done
dims=$(echo "$scale" | sed 's/scale=//; s/:/x/')
if [ -f "$CONTROL/fail_$dims" ]; then
    echo "frame=    0 fps=0.0 q=0.0 size=       0kB time=00:00:00.00" >&2
    echo "Error while opening encoder for output stream #0:0" >&2
    echo "Invalid argument" >&2
    exit 1
fi
if [ -f "$CONTROL/hang_$dims" ]; then
    echo $$ > "$CONTROL/pid_$dims"
    exec sleep 30
fi
if [ -f "$CONTROL/noplaylist_$dims" ]; then
    exit 0
fi
dir=$(dirname "$out")
head -c 1000 /dev/zero > "$dir/index0.ts"
printf '#EXTM3U\\n#EXT-X-VERSION:3\\n#EXT-X-TARGETDURATION:2\\n#EXTINF:2.000000,\\nindex0.ts\\n#EXT-X-ENDLIST\\n' > "$out"
exit 0
"""


class FakeFFmpeg:
    """Controls the fake ffmpeg script through marker files."""

    def __init__(self, control_dir: Path):
        self.control_dir = control_dir
        self.control_dir.mkdir(parents=True, exist_ok=True)
        self.path = control_dir / "ffmpeg"
        self.path.write_text(FAKE_FFMPEG_SCRIPT.replace("@CONTROL@", str(control_dir)))
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def _mark(self, kind: str, spec: ResolutionSpec) -> None:
        (self.control_dir / f"{kind}_{spec.width}x{spec.height}").touch()

    def fail(self, spec: ResolutionSpec) -> None:
        self._mark("fail", spec)

    def hang(self, spec: ResolutionSpec) -> None:
        self._mark("hang", spec)

    def skip_playlist(self, spec: ResolutionSpec) -> None:
        self._mark("noplaylist", spec)

    def pid(self, spec: ResolutionSpec) -> Optional[int]:
        """PID of a hanging run, recorded before it execs into sleep."""
        pid_file = self.control_dir / f"pid_{spec.width}x{spec.height}"
        if not pid_file.exists():
            return None
        return int(pid_file.read_text().strip())

    @property
    def calls(self) -> List[str]:
        log = self.control_dir / "calls.log"
        if not log.exists():
            return []
        return log.read_text().splitlines()


class FakeRunner:
    """
    In-process encode runner.

    ``delays`` sets how long each label takes, ``failures`` maps labels to the
    error they fail with. Successful runs write a playlist like the real one.
    """

    def __init__(self, layout: OutputLayout):
        self.layout = layout
        self.delays: Dict[str, float] = {}
        self.failures: Dict[str, str] = {}
        self.raises: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self.completed: List[str] = []
        self.cancelled: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def run_task(self, source_path, resolution, output_dir, segment_duration):
        label = resolution.label
        self.calls.append((label, Path(output_dir), segment_duration))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(label, 0))
        except asyncio.CancelledError:
            self.cancelled.append(label)
            raise
        finally:
            self.in_flight -= 1

        self.completed.append(label)
        playlist = Path(output_dir) / PLAYLIST_NAME
        if label in self.raises:
            raise self.raises[label]
        if label in self.failures:
            return StreamResult(
                resolution=resolution,
                playlist_url=self.layout.url_for_path(playlist),
                status=StreamStatus.FAILED,
                error=self.failures[label],
                error_category="fatal"
            )

        playlist.write_text("#EXTM3U\n#EXT-X-ENDLIST\n")
        return StreamResult(
            resolution=resolution,
            playlist_url=self.layout.url_for_path(playlist),
            status=StreamStatus.SUCCEEDED
        )


# =============================================================================
# TEST MEDIA GENERATION
# =============================================================================

class TestMediaGenerator:
    """
    Generates test media files using FFmpeg.
    No external downloads - creates synthetic test videos.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._ffmpeg = shutil.which("ffmpeg")

    @property
    def has_ffmpeg(self) -> bool:
        return self._ffmpeg is not None

    def generate_test_video(
        self,
        name: str = "test_video",
        duration: int = 2,
        width: int = 640,
        height: int = 360,
        fps: int = 25
    ) -> Optional[Path]:
        """Generate a test video with color bars and a tone."""
        if not self.has_ffmpeg:
            return None

        output_path = self.output_dir / f"{name}.mp4"
        cmd = [
            self._ffmpeg, "-y",
            "-f", "lavfi", "-i", f"testsrc=duration={duration}:size={width}x{height}:rate={fps}",
            "-f", "lavfi", "-i", f"sine=frequency=440:duration={duration}",
            "-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-b:a", "64k",
            str(output_path),
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, timeout=60)
        except subprocess.TimeoutExpired:
            return None
        if result.returncode == 0 and output_path.exists():
            return output_path
        return None


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture
def test_config(tmp_path) -> LadderStreamConfig:
    """Configuration rooted in a per-test temp directory."""
    config = LadderStreamConfig(
        storage=StorageConfig(
            upload_directory=str(tmp_path / "uploads"),
            output_directory=str(tmp_path / "output"),
        ),
        transcoding=TranscodingConfig(stall_timeout=30),
        ladder=list(LADDER_240_360),
        logging=LoggingConfig(level="WARNING"),
    )
    config.server.public_url = "http://localhost:3000"
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def layout(test_config) -> OutputLayout:
    return OutputLayout(
        Path(test_config.storage.output_directory),
        test_config.server.public_url,
        test_config.storage.mount_path
    )


@pytest.fixture
def fake_ffmpeg(tmp_path) -> FakeFFmpeg:
    if os.name == "nt":
        pytest.skip("Fake ffmpeg is a POSIX shell script")
    return FakeFFmpeg(tmp_path / "fake_ffmpeg")


@pytest.fixture
def fake_runner(layout) -> FakeRunner:
    return FakeRunner(layout)


@pytest.fixture
def source_file(tmp_path) -> Path:
    """A readable stand-in for an uploaded video."""
    path = tmp_path / "uploads" / "0123abcd"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"not really a video")
    return path


@pytest.fixture(scope="session")
def quick_test_video(tmp_path_factory) -> Path:
    """Short synthetic video, generated once per session."""
    generator = TestMediaGenerator(tmp_path_factory.mktemp("ladderstream_test_media"))
    if not generator.has_ffmpeg:
        pytest.skip("FFmpeg not available for test media generation")
    path = generator.generate_test_video("test_quick")
    if path is None:
        pytest.skip("Failed to generate test video")
    return path


# =============================================================================
# SKIP CONDITIONS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "requires_ffmpeg: marks tests that require FFmpeg"
    )


@pytest.fixture
def requires_ffmpeg():
    """Skip test if FFmpeg not available."""
    if not shutil.which("ffmpeg"):
        pytest.skip("FFmpeg not available")
