"""
Job orchestration for LadderStream.

A job encodes one source file at every rung of the resolution ladder. All
rungs are launched together and the job waits for every one of them before
deciding the outcome: the job succeeds only if every rung succeeded.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .config import LadderStreamConfig, get_config
from .layout import OutputLayout, LayoutError
from .manifest import build_manifest
from .models import ResolutionSpec, StreamMode, StreamResult, StreamStatus
from .transcoding import EncodeTaskRunner

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    CREATED = "created"
    FANNED_OUT = "fanned_out"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"


class InputError(ValueError):
    """The job cannot start: missing source or an unusable ladder."""


@dataclass
class Job:
    """One transcode request for a single uploaded file."""
    id: str
    source_path: str
    output_root: Path
    state: JobState = JobState.CREATED
    created_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None


@dataclass
class JobSuccess:
    job_id: str
    mode: StreamMode
    streams: List[StreamResult]
    master_playlist_url: Optional[str] = None

    ok = True


@dataclass
class JobFailure:
    job_id: str
    message: str
    error: str
    resolution: Optional[str] = None
    error_category: Optional[str] = None

    ok = False


JobOutcome = Union[JobSuccess, JobFailure]


class JobStats:
    """Statistics for job processing."""

    def __init__(self):
        self.total_jobs_processed: int = 0
        self.successful_jobs: int = 0
        self.failed_jobs: int = 0
        self.start_time: datetime = datetime.utcnow()

    def record_job_complete(self, success: bool) -> None:
        self.total_jobs_processed += 1
        if success:
            self.successful_jobs += 1
        else:
            self.failed_jobs += 1

    @property
    def uptime_seconds(self) -> float:
        return (datetime.utcnow() - self.start_time).total_seconds()


class JobOrchestrator:
    """Fans a job out to one encode task per resolution and joins the results."""

    def __init__(
        self,
        config: Optional[LadderStreamConfig] = None,
        layout: Optional[OutputLayout] = None,
        runner: Optional[EncodeTaskRunner] = None
    ):
        self.config = config or get_config()
        self.layout = layout or OutputLayout(
            Path(self.config.storage.output_directory),
            self.config.server.public_url,
            self.config.storage.mount_path
        )
        self.runner = runner or EncodeTaskRunner(self.layout, self.config.transcoding)
        self.stats = JobStats()
        self.active_jobs: int = 0

    def create_job(self, source_path: str, job_id: str) -> Job:
        """Create a job for a file handed over by intake."""
        return Job(id=job_id, source_path=source_path, output_root=self.layout.job_dir(job_id))

    def segment_duration_for(self, mode: StreamMode) -> int:
        if mode == StreamMode.ADAPTIVE:
            return self.config.transcoding.segment_duration_adaptive
        return self.config.transcoding.segment_duration_simple

    def _transition(self, job: Job, state: JobState) -> None:
        logger.debug(f"[Job] {job.id}: {job.state.value} -> {state.value}")
        job.state = state
        if state in (JobState.COMPLETED, JobState.FAILED):
            job.completed_at = datetime.utcnow()

    def _fail(
        self,
        job: Job,
        message: str,
        error: str,
        resolution: Optional[str] = None,
        error_category: Optional[str] = None
    ) -> JobFailure:
        self._transition(job, JobState.FAILED)
        logger.error(f"[Job] {job.id} failed: {message}: {error}")
        return JobFailure(
            job_id=job.id,
            message=message,
            error=error,
            resolution=resolution,
            error_category=error_category
        )

    def _check_inputs(self, job: Job, ladder: Sequence[ResolutionSpec]) -> None:
        if not job.source_path:
            raise InputError("No source file supplied")
        labels = [spec.label for spec in ladder]
        if len(labels) != len(set(labels)):
            raise InputError(f"Resolution ladder has duplicate labels: {labels}")

    async def run_job(
        self,
        job: Job,
        ladder: Sequence[ResolutionSpec],
        mode: StreamMode = StreamMode.SIMPLE
    ) -> JobOutcome:
        """
        Encode ``job`` at every resolution of ``ladder`` concurrently.

        Raises InputError before any side effect if the job cannot start.
        Returns JobSuccess with results in ladder order, or a JobFailure
        naming the first resolution that failed. Files of resolutions that
        succeeded are left on disk either way.
        """
        ladder = list(ladder)
        self._check_inputs(job, ladder)

        self.active_jobs += 1
        try:
            outcome = await self._run(job, ladder, mode)
        finally:
            self.active_jobs -= 1

        self.stats.record_job_complete(outcome.ok)
        return outcome

    async def _run(self, job: Job, ladder: List[ResolutionSpec], mode: StreamMode) -> JobOutcome:
        logger.info(f"[Job] {job.id}: {mode.value} transcode of {job.source_path} "
                    f"into {len(ladder)} resolution(s)")

        try:
            self.layout.ensure_job_dir(job.id)
            output_dirs = [self.layout.resolution_dir(job.id, spec.label) for spec in ladder]
        except (OSError, LayoutError) as e:
            return self._fail(job, "Error preparing output directories", str(e))

        segment_duration = self.segment_duration_for(mode)
        cancel_on_failure = self.config.transcoding.cancel_on_failure

        # Results land in the slot of their ladder position, never by arrival
        slots: List[Optional[StreamResult]] = [None] * len(ladder)
        first_failure: Optional[StreamResult] = None
        tasks: List[asyncio.Task] = []

        async def settle(index: int, spec: ResolutionSpec, output_dir: Path) -> None:
            nonlocal first_failure
            try:
                result = await self.runner.run_task(
                    job.source_path, spec, output_dir, segment_duration
                )
            except asyncio.CancelledError:
                slots[index] = StreamResult(
                    resolution=spec,
                    playlist_url=self.layout.playlist_url(job.id, spec.label),
                    status=StreamStatus.FAILED,
                    error="Cancelled after another resolution failed",
                    error_category="cancelled"
                )
                raise
            except Exception as e:
                logger.exception(f"[Job] {job.id}: encode task for {spec.label} raised")
                result = StreamResult(
                    resolution=spec,
                    playlist_url=self.layout.playlist_url(job.id, spec.label),
                    status=StreamStatus.FAILED,
                    error=str(e) or type(e).__name__
                )

            slots[index] = result
            if result.succeeded or first_failure is not None:
                return

            first_failure = result
            if cancel_on_failure:
                for task in tasks:
                    if task is not asyncio.current_task() and not task.done():
                        task.cancel()

        for index, (spec, output_dir) in enumerate(zip(ladder, output_dirs)):
            tasks.append(asyncio.create_task(settle(index, spec, output_dir)))
        self._transition(job, JobState.FANNED_OUT)

        self._transition(job, JobState.AGGREGATING)
        await asyncio.gather(*tasks, return_exceptions=True)

        if first_failure is not None:
            label = first_failure.resolution.label
            return self._fail(
                job,
                f"Error transcoding video to {label}",
                first_failure.error or "Unknown encoder error",
                resolution=label,
                error_category=first_failure.error_category
            )

        streams = [result for result in slots if result is not None]
        if len(streams) != len(ladder):
            return self._fail(job, "Error transcoding video", "Encode task ended without a result")

        master_url = None
        if mode == StreamMode.ADAPTIVE:
            manifest = build_manifest(
                streams, use_measured_bandwidth=self.config.transcoding.measure_bandwidth
            )
            try:
                self.layout.master_path(job.id).write_text(manifest)
            except OSError as e:
                return self._fail(job, "Error writing master playlist", str(e))
            master_url = self.layout.master_url(job.id)

        self._transition(job, JobState.COMPLETED)
        logger.info(f"[Job] {job.id} completed with {len(streams)} stream(s)")
        return JobSuccess(
            job_id=job.id,
            mode=mode,
            streams=streams,
            master_playlist_url=master_url
        )


# Global orchestrator instance
_orchestrator: Optional[JobOrchestrator] = None


def get_orchestrator() -> JobOrchestrator:
    """Get the global orchestrator instance."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = JobOrchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: Optional[JobOrchestrator]) -> None:
    """Set the global orchestrator instance."""
    global _orchestrator
    _orchestrator = orchestrator
