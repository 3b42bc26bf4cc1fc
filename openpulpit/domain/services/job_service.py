import logging
from functools import lru_cache
from typing import Callable, Optional

from openpulpit.config import Settings
from openpulpit.domain.models import Job, Stage
from openpulpit.domain.services.pipeline import PipelineController
from openpulpit.infrastructure.ffmpeg_adapter import AudioDecoder, ClipExtractor
from openpulpit.infrastructure.gemini_adapter import GeminiAnalyzer
from openpulpit.infrastructure.whisper_adapter import WhisperTranscriber

logger = logging.getLogger(__name__)

_host: Optional["ControllerHost"] = None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def build_controller(settings: Settings) -> PipelineController:
    """
    Wire the pipeline to its real services:
    - ffmpeg + librosa for decoding and cutting
    - Whisper for transcription
    - Gemini for analysis
    """
    return PipelineController(
        decoder=AudioDecoder(),
        transcriber=WhisperTranscriber(
            settings.whisper_model,
            chunk_seconds=settings.whisper_chunk_seconds,
            language=settings.whisper_language,
        ),
        analyzer=GeminiAnalyzer(settings.gemini_model, temperature=settings.gemini_temperature),
        extractor=ClipExtractor(
            settings.clips_dir,
            video_codec=settings.clip_video_codec,
            audio_codec=settings.clip_audio_codec,
        ),
        failure_policy=settings.clip_failure_policy,
    )


def discard_job_files(job: Job) -> None:
    """Delete the upload and every clip cut from it."""
    paths = [job.source, *(clip.handle.path for clip in job.clips)]
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not delete %s from job %s", path, job.id, exc_info=True)
    logger.info("Discarded files of job %s", job.id)


class ControllerHost:
    """
    Owns the process-wide controller.

    A completed job is final for its controller, so the host tears that
    controller down and builds a fresh one when the next upload arrives.
    """

    def __init__(self, factory: Callable[[], PipelineController]) -> None:
        self._factory = factory
        self.controller = factory()

    def start(self, file, credential: str) -> Optional[Job]:
        """Start a job, returning it, or None if the current job is still running."""
        previous = self.controller.job
        if file and credential and self.controller.stage is Stage.COMPLETE:
            self.controller = self._factory()
        self.controller.start(file, credential)

        job = self.controller.job
        if job is None or job is previous:
            return None
        if previous is not None:
            discard_job_files(previous)
        return job


def get_host() -> ControllerHost:
    """Single process-wide host; the app serves one job at a time."""
    global _host
    if _host is None:
        settings = get_settings()
        _host = ControllerHost(lambda: build_controller(settings))
    return _host
