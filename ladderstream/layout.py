"""
Output directory layout for transcoded streams.

Every job owns ``<root>/<job_id>``; every resolution of that job owns
``<root>/<job_id>/<label>``. The same relative path is used to build the
public URL, so whatever serves ``root`` under ``mount_path`` exposes the
files verbatim.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

PLAYLIST_NAME = "index.m3u8"
MASTER_PLAYLIST_NAME = "master.m3u8"


class LayoutError(ValueError):
    """Raised for job ids or labels that cannot be used as path components."""


def _check_component(value: str, what: str) -> str:
    if not value or value in (".", "..") or "/" in value or "\\" in value or "\x00" in value:
        raise LayoutError(f"Invalid {what}: {value!r}")
    return value


class OutputLayout:
    """Creates and names per-job, per-resolution output directories."""

    def __init__(self, root: Path, base_url: str, mount_path: str = "/output"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.mount_path = "/" + mount_path.strip("/") if mount_path.strip("/") else ""

    def job_dir(self, job_id: str) -> Path:
        return self.root / _check_component(job_id, "job id")

    def ensure_job_dir(self, job_id: str) -> Path:
        """Create the job directory if needed and return it."""
        path = self.job_dir(job_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def resolution_dir(self, job_id: str, label: str) -> Path:
        """
        Return the directory for one resolution of a job, creating it first.

        Creating an existing directory is not an error, so repeated calls
        return the same path without touching its contents.
        """
        path = self.job_dir(job_id) / _check_component(label, "resolution label")
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"[Layout] Ready: {path}")
        return path

    def playlist_path(self, job_id: str, label: str) -> Path:
        return self.job_dir(job_id) / _check_component(label, "resolution label") / PLAYLIST_NAME

    def master_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / MASTER_PLAYLIST_NAME

    def url_for(self, job_id: str, *parts: str) -> str:
        """Public URL of a file under the job directory."""
        segments = [_check_component(job_id, "job id")]
        segments.extend(_check_component(p, "path component") for p in parts)
        return f"{self.base_url}{self.mount_path}/" + "/".join(segments)

    def url_for_path(self, path: Path) -> str:
        """Public URL of any file inside the output tree."""
        try:
            relative = Path(path).resolve().relative_to(self.root.resolve())
        except ValueError:
            raise LayoutError(f"Path is outside the output root: {path}") from None
        if not relative.parts:
            raise LayoutError(f"Path is the output root itself: {path}")
        return self.url_for(*relative.parts)

    def playlist_url(self, job_id: str, label: str) -> str:
        return self.url_for(job_id, label, PLAYLIST_NAME)

    def master_url(self, job_id: str) -> str:
        return self.url_for(job_id, MASTER_PLAYLIST_NAME)
