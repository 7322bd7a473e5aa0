"""
FFmpeg error classification.

Sorts an encode failure into a coarse category so callers that implement
retry policies can tell transient trouble from broken input:

- transient: network or I/O hiccups, may succeed if tried again
- resource: the host ran out of something
- fatal: the input or the command is unusable
- timeout: the encode was stopped for taking too long or stalling
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple, Optional

logger = logging.getLogger(__name__)


@dataclass
class FFmpegError:
    """Represents a classified FFmpeg error."""
    pattern: str
    category: str  # 'transient', 'resource', 'fatal', 'timeout'
    retryable: bool


FFMPEG_ERROR_MAP: List[FFmpegError] = [
    # Stopped by the task runner
    FFmpegError("[timeout after", "timeout", True),
    FFmpegError("[stalled", "timeout", True),

    # Transient errors
    FFmpegError("connection refused", "transient", True),
    FFmpegError("connection reset", "transient", True),
    FFmpegError("temporarily unavailable", "transient", True),
    FFmpegError("broken pipe", "transient", True),
    FFmpegError("input/output error", "transient", True),

    # Resource errors
    FFmpegError("out of memory", "resource", False),
    FFmpegError("cannot allocate", "resource", True),
    FFmpegError("too many open files", "resource", True),
    FFmpegError("no space left", "resource", False),
    FFmpegError("disk quota", "resource", False),

    # Fatal errors
    FFmpegError("invalid data", "fatal", False),
    FFmpegError("invalid argument", "fatal", False),
    FFmpegError("no such file", "fatal", False),
    FFmpegError("permission denied", "fatal", False),
    FFmpegError("encoder not found", "fatal", False),
    FFmpegError("decoder not found", "fatal", False),
    FFmpegError("moov atom not found", "fatal", False),
    FFmpegError("does not contain any stream", "fatal", False),
]

# Prefixes of FFmpeg stderr lines that are progress/banner noise
_NOISE_PREFIXES = ("frame=", "size=", "video:", "[hls @", "  ", "Press [q]")


class ErrorClassifier:
    """Classifies FFmpeg errors for reporting and caller retry decisions."""

    def __init__(self, error_map: Optional[List[FFmpegError]] = None):
        self.error_map = error_map or FFMPEG_ERROR_MAP

    def classify(self, error_msg: str) -> Tuple[Optional[FFmpegError], str]:
        """
        Classify FFmpeg error output.

        Returns:
            Tuple of (matched_error, category). Category is 'unknown' if no match.
        """
        error_lower = error_msg.lower()

        for error in self.error_map:
            if error.pattern in error_lower:
                return error, error.category

        return None, "unknown"

    def is_retryable(self, error_msg: str) -> bool:
        error, _ = self.classify(error_msg)
        return bool(error and error.retryable)

    def summarize(self, error_output: str, max_lines: int = 3) -> str:
        """
        Condense FFmpeg stderr to the last few meaningful lines.

        Falls back to the raw output when nothing survives filtering.
        """
        lines = [
            line.strip() for line in error_output.splitlines()
            if line.strip() and not line.startswith(_NOISE_PREFIXES)
        ]
        if not lines:
            return error_output.strip()
        return " | ".join(lines[-max_lines:])


# Global classifier instance
_classifier: Optional[ErrorClassifier] = None


def get_error_classifier() -> ErrorClassifier:
    """Get or create the global error classifier."""
    global _classifier
    if _classifier is None:
        _classifier = ErrorClassifier()
    return _classifier
