"""
Data models for LadderStream
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Labels become directory names, keep them to a conservative character set
_LABEL_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class StreamMode(str, Enum):
    SIMPLE = "simple"
    ADAPTIVE = "adaptive"


class StreamStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ResolutionSpec(BaseModel):
    """One rung of the resolution ladder."""
    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    label: str

    @field_validator("label")
    @classmethod
    def _safe_label(cls, label: str) -> str:
        if not _LABEL_RE.match(label) or label in (".", ".."):
            raise ValueError(f"Resolution label is not filesystem safe: {label!r}")
        return label

    @property
    def dimensions(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass
class StreamResult:
    """Outcome of encoding one resolution of one job."""
    resolution: ResolutionSpec
    playlist_url: str
    status: StreamStatus
    error: Optional[str] = None
    error_category: Optional[str] = None
    bandwidth: Optional[int] = None  # Measured bits/s, if measured

    @property
    def succeeded(self) -> bool:
        return self.status == StreamStatus.SUCCEEDED


# ============== API Models ==============

class StreamEntry(BaseModel):
    resolution: str
    playlist_url: str


class UploadResponse(BaseModel):
    message: str
    job_id: str
    streams: List[StreamEntry] = Field(default_factory=list)
    master_playlist_url: Optional[str] = None


class ErrorResponse(BaseModel):
    message: str
    error: Optional[str] = None
    resolution: Optional[str] = None
    error_category: Optional[str] = None
    retryable: Optional[bool] = None


class JobStatsResponse(BaseModel):
    total_jobs_processed: int
    successful_jobs: int
    failed_jobs: int
    active_jobs: int


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    ladder: List[str]
    jobs: JobStatsResponse
