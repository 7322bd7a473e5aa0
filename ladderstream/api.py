"""
FastAPI application and API endpoints for LadderStream
"""

import logging
import shutil
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import BinaryIO, Optional

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

from . import __version__
from .config import LadderStreamConfig, get_config
from .jobs import InputError, JobOrchestrator, set_orchestrator
from .models import (
    ErrorResponse, HealthResponse, JobStatsResponse, StreamEntry,
    StreamMode, UploadResponse
)
from .transcoding import get_error_classifier

logger = logging.getLogger(__name__)

SUCCESS_MESSAGES = {
    StreamMode.SIMPLE: "Video transcoded to multiple resolutions and segments created",
    StreamMode.ADAPTIVE: (
        "Video transcoded to multiple resolutions and adaptive HLS master playlist created"
    ),
}

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _write_upload(source: BinaryIO, destination: Path) -> None:
    try:
        with open(destination, "wb") as f:
            shutil.copyfileobj(source, f)
    except OSError:
        destination.unlink(missing_ok=True)
        raise


async def _store_upload(video: UploadFile, upload_dir: Path) -> Path:
    """Save an upload under a random name; the name doubles as the job id."""
    destination = upload_dir / uuid.uuid4().hex
    await run_in_threadpool(_write_upload, video.file, destination)
    return destination


async def _handle_upload(request: Request, video: Optional[UploadFile], mode: StreamMode):
    config: LadderStreamConfig = request.app.state.config
    orchestrator: JobOrchestrator = request.app.state.orchestrator

    if video is None or not video.filename:
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(message="No file uploaded").model_dump(exclude_none=True)
        )

    try:
        source_path = await _store_upload(video, Path(config.storage.upload_directory))
    except OSError as e:
        logger.error(f"[Upload] Failed to store upload {video.filename}: {e}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(message="Error storing upload", error=str(e)).model_dump(exclude_none=True)
        )
    finally:
        await video.close()

    job = orchestrator.create_job(str(source_path), source_path.name)
    logger.info(f"[Upload] Stored {video.filename} as job {job.id}")

    try:
        outcome = await orchestrator.run_job(job, config.ladder, mode)
    except InputError as e:
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(message=str(e)).model_dump(exclude_none=True)
        )

    if not outcome.ok:
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                message="Error transcoding video",
                error=outcome.error,
                resolution=outcome.resolution,
                error_category=outcome.error_category,
                retryable=get_error_classifier().is_retryable(outcome.error)
            ).model_dump()
        )

    return UploadResponse(
        message=SUCCESS_MESSAGES[mode],
        job_id=outcome.job_id,
        streams=[
            StreamEntry(resolution=s.resolution.label, playlist_url=s.playlist_url)
            for s in outcome.streams
        ],
        master_playlist_url=outcome.master_playlist_url
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    config: LadderStreamConfig = app.state.config

    app.state.start_time = time.time()
    Path(config.storage.upload_directory).mkdir(parents=True, exist_ok=True)
    Path(config.storage.output_directory).mkdir(parents=True, exist_ok=True)
    set_orchestrator(app.state.orchestrator)

    logger.info(f"LadderStream v{__version__} started on {config.server.public_url}")

    yield

    set_orchestrator(None)
    logger.info("LadderStream shutdown complete")


def create_app(
    config: Optional[LadderStreamConfig] = None,
    orchestrator: Optional[JobOrchestrator] = None
) -> FastAPI:
    """Build the FastAPI app around one config and one orchestrator."""
    config = config or get_config()

    app = FastAPI(
        title="LadderStream",
        description="Multi-resolution HLS transcoding service",
        version=__version__,
        lifespan=lifespan
    )
    app.state.config = config
    app.state.orchestrator = orchestrator or JobOrchestrator(config)
    app.state.start_time = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/upload", response_model=UploadResponse, responses=ERROR_RESPONSES)
    async def upload(request: Request, video: Optional[UploadFile] = File(None)):
        """Transcode an upload into one HLS playlist per resolution."""
        return await _handle_upload(request, video, StreamMode.SIMPLE)

    @app.post("/upload-adaptive", response_model=UploadResponse, responses=ERROR_RESPONSES)
    async def upload_adaptive(request: Request, video: Optional[UploadFile] = File(None)):
        """Transcode an upload into per-resolution playlists plus a master playlist."""
        return await _handle_upload(request, video, StreamMode.ADAPTIVE)

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        job_orchestrator: JobOrchestrator = request.app.state.orchestrator
        stats = job_orchestrator.stats

        return HealthResponse(
            status="healthy",
            version=__version__,
            uptime_seconds=time.time() - request.app.state.start_time,
            ladder=[spec.label for spec in config.ladder],
            jobs=JobStatsResponse(
                total_jobs_processed=stats.total_jobs_processed,
                successful_jobs=stats.successful_jobs,
                failed_jobs=stats.failed_jobs,
                active_jobs=job_orchestrator.active_jobs
            )
        )

    # Serve the output tree (playlists and segments) verbatim
    app.mount(
        config.storage.mount_path,
        StaticFiles(directory=config.storage.output_directory, check_dir=False),
        name="output"
    )

    return app
