"""
FFmpeg command building for per-resolution HLS output.
"""

import logging
from pathlib import Path
from typing import List

from ..config import TranscodingConfig
from ..layout import PLAYLIST_NAME
from ..models import ResolutionSpec

logger = logging.getLogger(__name__)


class CommandBuilder:
    """Builds FFmpeg commands for transcoding operations."""

    def __init__(self, ffmpeg_path: str, transcoding_config: TranscodingConfig):
        self.ffmpeg_path = ffmpeg_path
        self.transcoding_config = transcoding_config

    def build_hls_command(
        self,
        source: str,
        resolution: ResolutionSpec,
        output_dir: Path,
        segment_duration: int
    ) -> List[str]:
        """
        Build FFmpeg command scaling ``source`` to one resolution as a VOD
        HLS playlist with every segment listed.
        """
        if segment_duration <= 0:
            raise ValueError(f"segment_duration must be positive, got {segment_duration}")

        # Use forward slashes for FFmpeg paths (works on all platforms)
        playlist_path = str(output_dir / PLAYLIST_NAME).replace("\\", "/")
        segment_path = str(output_dir / "index%d.ts").replace("\\", "/")

        cmd = [self.ffmpeg_path, "-y", "-hide_banner"]

        cmd.extend(["-i", source])

        # Video
        cmd.extend(["-vf", f"scale={resolution.width}:{resolution.height}"])
        cmd.extend(["-c:v", "libx264"])
        cmd.extend(["-profile:v", self.transcoding_config.video_profile])
        cmd.extend(["-level", self.transcoding_config.video_level])

        # Audio (optional in the source)
        cmd.extend(["-c:a", "aac"])

        # HLS options
        cmd.extend([
            "-start_number", "0",
            "-hls_time", str(segment_duration),
            "-hls_list_size", "0",
            "-hls_segment_filename", segment_path,
            "-f", "hls",
            playlist_path
        ])

        return cmd
