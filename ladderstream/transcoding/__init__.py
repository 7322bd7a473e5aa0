"""
Transcoding package for LadderStream.
Per-resolution FFmpeg HLS encoding with error classification.
"""

from .commands import CommandBuilder
from .engine import EncodeTaskRunner
from .error_classifier import FFmpegError, ErrorClassifier, get_error_classifier

__all__ = [
    "CommandBuilder",
    "EncodeTaskRunner",
    "FFmpegError",
    "ErrorClassifier",
    "get_error_classifier",
]
