import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse

from openpulpit.app.schemas.clips import AnalysisOut, CandidateOut, ClipOut
from openpulpit.app.schemas.jobs import JobCreatedResponse, JobDetail
from openpulpit.config import Settings
from openpulpit.domain.models import Job
from openpulpit.domain.services.job_service import ControllerHost, get_host, get_settings
from openpulpit.domain.services.pipeline import IDLE_MESSAGE

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MB per read, keeps memory use low for large files

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def _clip_url(job_id: str, index: int) -> str:
    return f"/api/jobs/{job_id}/clips/{index}"


def job_detail(job: Optional[Job]) -> JobDetail:
    if job is None:
        return JobDetail(stage="idle", status_message=IDLE_MESSAGE)

    analysis = None
    if job.analysis is not None:
        analysis = AnalysisOut(
            summary=job.analysis.summary,
            viral_clips=[
                CandidateOut(start=c.start, end=c.end, reason=c.reason) for c in job.analysis.clips
            ],
            social_posts=list(job.analysis.social_posts),
        )

    return JobDetail(
        id=job.id,
        stage=job.stage,
        status_message=job.status_message,
        transcript=job.transcript,
        analysis=analysis,
        clips=[
            ClipOut(index=i, start=c.start, end=c.end, reason=c.reason, url=_clip_url(job.id, i))
            for i, c in enumerate(job.clips)
        ],
        error_message=job.error_message,
    )


@router.post("", response_model=JobCreatedResponse, status_code=202)
async def create_processing_job(
    file: Optional[UploadFile] = File(None),
    api_key: str = Form(""),
    host: ControllerHost = Depends(get_host),
    settings: Settings = Depends(get_settings),
):
    """
    Start a job for an uploaded video, analysed with the caller's Gemini API key.
    Large files are streamed to disk. Set MAX_UPLOAD_MB in env to cap size.
    """
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    api_key = api_key.strip()
    if not api_key:
        raise HTTPException(status_code=400, detail="API key is required")
    if host.controller.stage.is_running:
        raise HTTPException(status_code=409, detail=f"A job is already {host.controller.stage.value}")

    max_bytes = settings.max_upload_bytes
    size = getattr(file, "size", None)
    if max_bytes and size is not None and size > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {settings.max_upload_mb} MB.",
        )

    suffix = Path(file.filename).suffix or ".mp4"
    settings.jobs_dir.mkdir(parents=True, exist_ok=True)
    video_path = settings.jobs_dir / f"{uuid.uuid4().hex}{suffix}"

    try:
        total = 0
        with video_path.open("wb") as f:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                total += len(chunk)
                if max_bytes and total > max_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large. Maximum size is {settings.max_upload_mb} MB.",
                    )
                f.write(chunk)

        if total == 0:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")
    except HTTPException:
        video_path.unlink(missing_ok=True)
        raise
    except OSError as e:
        video_path.unlink(missing_ok=True)
        logger.exception("Failed to save upload %s", file.filename)
        raise HTTPException(status_code=500, detail=f"Failed to save file: {e!s}") from e

    job = host.start(video_path, api_key)
    if job is None:
        # Another upload started a job while this one was streaming.
        video_path.unlink(missing_ok=True)
        raise HTTPException(status_code=409, detail=f"A job is already {host.controller.stage.value}")

    return JobCreatedResponse(**job_detail(job).model_dump())


@router.get("/current", response_model=JobDetail)
async def get_current_job(host: ControllerHost = Depends(get_host)):
    return job_detail(host.controller.job)


@router.get("/{job_id}/clips/{index}")
async def download_clip(
    job_id: str,
    index: int,
    host: ControllerHost = Depends(get_host),
):
    controller = host.controller
    job = controller.job
    if job is None or job.id != job_id:
        raise HTTPException(status_code=404, detail="Job not found")
    clips = controller.clips
    if index < 0 or index >= len(clips):
        raise HTTPException(status_code=404, detail="Clip not found")

    path = clips[index].handle.path
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Clip file is missing")
    return FileResponse(path, media_type="video/mp4", filename=f"clip-{index}.mp4")
