"""
Pipeline controller: uploaded video -> transcript -> analysis -> clips.

One controller runs at most one job at a time. ``start`` moves the job to
``transcribing`` right away and schedules the rest of the work as an asyncio
task on the running loop:

    idle -> transcribing -> analyzing -> clipping -> complete
                 \\              \\            \\
                  +------------- +----------- +--> error

Blocking work (decoding, the analysis request, clip cutting) runs on worker
threads; transcription runs on its own thread behind an event channel. Clips
are cut one at a time, in the order the analysis returned them.

Every failure is caught at the task boundary and turns the job into the
``error`` stage, from which ``start`` may be called again. A ``complete``
job is final; hosts build a new controller for the next run.
"""
import asyncio
import logging
from contextlib import aclosing, contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol, Tuple, Type

import numpy as np

from openpulpit.config import SAMPLE_RATE
from openpulpit.domain.errors import (
    AnalysisError,
    DecodeError,
    ExtractionError,
    PipelineError,
    TranscriptionError,
)
from openpulpit.domain.models import (
    AnalysisResult,
    ClipFailurePolicy,
    ClipHandle,
    EnrichedClip,
    Job,
    Stage,
)
from openpulpit.domain.services.transcription_channel import Transcriber, transcription_events

logger = logging.getLogger(__name__)

IDLE_MESSAGE = "Ready"
ERROR_MESSAGE = "Error. Please check the logs for details."

# Decoded audio and container duration rarely agree to the millisecond.
RANGE_TOLERANCE_SECONDS = 0.5


class Decoder(Protocol):
    def decode(self, source: Path) -> np.ndarray:
        """Return mono float samples in [-1, 1] at the transcriber's sample rate."""


class Analyzer(Protocol):
    def analyze(self, credential: str, transcript: str) -> AnalysisResult:
        """Return summary, candidate clips and social captions for a transcript."""


class ClipExtractor(Protocol):
    def extract(self, source: Path, start: float, end: float) -> ClipHandle:
        """Cut [start, end] seconds out of source into a playable file."""


class _JobSuperseded(Exception):
    """Raised inside a job task once a newer job owns the controller."""


@contextmanager
def _stage_errors(error_cls: Type[PipelineError], action: str) -> Iterator[None]:
    """Re-raise unexpected exceptions from a stage as that stage's error type."""
    try:
        yield
    except (PipelineError, _JobSuperseded):
        raise
    except Exception as exc:
        raise error_cls(f"{action} failed: {exc}") from exc


class PipelineController:
    def __init__(
        self,
        decoder: Decoder,
        transcriber: Transcriber,
        analyzer: Analyzer,
        extractor: ClipExtractor,
        *,
        failure_policy: ClipFailurePolicy = ClipFailurePolicy.FAIL_FAST,
        sample_rate: int = SAMPLE_RATE,
        on_update: Optional[Callable[[Job], None]] = None,
    ) -> None:
        self._decoder = decoder
        self._transcriber = transcriber
        self._analyzer = analyzer
        self._extractor = extractor
        self._failure_policy = failure_policy
        self._sample_rate = sample_rate
        self._on_update = on_update
        self._job: Optional[Job] = None
        self._task: Optional[asyncio.Task] = None

    # Observable state. Callers read it; only the controller mutates the job.

    @property
    def job(self) -> Optional[Job]:
        return self._job

    @property
    def stage(self) -> Stage:
        return self._job.stage if self._job else Stage.IDLE

    @property
    def status_message(self) -> str:
        return self._job.status_message if self._job else IDLE_MESSAGE

    @property
    def transcript(self) -> Optional[str]:
        return self._job.transcript if self._job else None

    @property
    def analysis(self) -> Optional[AnalysisResult]:
        return self._job.analysis if self._job else None

    @property
    def clips(self) -> Tuple[EnrichedClip, ...]:
        return tuple(self._job.clips) if self._job else ()

    @property
    def error_message(self) -> Optional[str]:
        return self._job.error_message if self._job else None

    def start(self, file: Optional[Path], credential: Optional[str]) -> None:
        """
        Begin a new job for ``file``, analysed with ``credential``.

        Does nothing when either argument is missing or the current job is
        not idle or failed. Must be called from inside a running event loop.
        """
        if not file or not credential:
            logger.debug("start() ignored: file and credential are both required")
            return
        if not self.stage.is_startable:
            logger.info("start() ignored: job %s is %s", self._job.id, self.stage.value)
            return

        loop = asyncio.get_running_loop()
        job = Job(source=Path(file), credential=credential)
        self._job = job
        logger.info("Job %s started for %s", job.id, job.source.name)
        self._notify(job)
        self._task = loop.create_task(self._run(job), name=f"pipeline-{job.id}")

    async def _run(self, job: Job) -> None:
        try:
            await self._transcribe(job)
            result = await self._analyze(job)
            if result.clips:
                await self._cut_clips(job, result)
        except _JobSuperseded:
            logger.info("Job %s was superseded, stopping", job.id)
        except Exception as exc:  # noqa: BLE001 - every failure ends in the error stage
            self._fail(job, exc)

    async def _transcribe(self, job: Job) -> None:
        with _stage_errors(DecodeError, "Decoding"):
            samples = await asyncio.to_thread(self._decoder.decode, job.source)
        duration = len(samples) / float(self._sample_rate)
        logger.info("Job %s: decoded %.1fs of audio", job.id, duration)
        self._update(job, duration=duration, status_message="Transcribing... 0%")

        text: Optional[str] = None
        async with aclosing(transcription_events(self._transcriber, samples)) as events:
            async for event in events:
                if event.kind == "progress":
                    logger.debug("Job %s transcription progress %.1f%%", job.id, event.progress)
                    self._update(job, status_message=f"Transcribing... {round(event.progress)}%")
                elif event.kind == "error":
                    if isinstance(event.error, PipelineError):
                        raise event.error
                    raise TranscriptionError(f"Transcription failed: {event.error}") from event.error
                else:
                    text = event.text

        text = (text or "").strip()
        if not text:
            raise TranscriptionError("Transcription produced no text")
        self._update(
            job,
            transcript=text,
            stage=Stage.ANALYZING,
            status_message="Analyzing transcript...",
        )

    async def _analyze(self, job: Job) -> AnalysisResult:
        with _stage_errors(AnalysisError, "Analysis"):
            result = await asyncio.to_thread(self._analyzer.analyze, job.credential, job.transcript)
        self._check_ranges(job, result)

        if not result.clips:
            self._update(
                job,
                analysis=result,
                stage=Stage.COMPLETE,
                status_message="Done. No clips were suggested.",
            )
        else:
            self._update(
                job,
                analysis=result,
                stage=Stage.CLIPPING,
                status_message="Generating Clips (this may take a moment)...",
            )
        return result

    def _check_ranges(self, job: Job, result: AnalysisResult) -> None:
        if job.duration is None:
            return
        limit = job.duration + RANGE_TOLERANCE_SECONDS
        for index, candidate in enumerate(result.clips, start=1):
            if candidate.end > limit:
                raise AnalysisError(
                    f"Clip {index} ends at {candidate.end:.1f}s, "
                    f"past the end of the source ({job.duration:.1f}s)"
                )

    async def _cut_clips(self, job: Job, result: AnalysisResult) -> None:
        total = len(result.clips)
        skipped = 0
        for index, candidate in enumerate(result.clips, start=1):
            self._update(job, status_message=f"Generating clip {index} of {total}...")
            try:
                with _stage_errors(ExtractionError, f"Clip {index}"):
                    handle = await asyncio.to_thread(
                        self._extractor.extract, job.source, candidate.start, candidate.end
                    )
            except ExtractionError:
                if self._failure_policy is ClipFailurePolicy.FAIL_FAST:
                    raise
                skipped += 1
                logger.warning("Job %s: skipping clip %d of %d", job.id, index, total, exc_info=True)
                continue
            self._update(job, clips=[*job.clips, EnrichedClip(candidate=candidate, handle=handle)])

        if skipped:
            message = f"Done. {total - skipped} of {total} clips ready."
        else:
            message = "Done."
        self._update(job, stage=Stage.COMPLETE, status_message=message)

    def _update(self, job: Job, **changes) -> None:
        """Apply changes to ``job`` if it is still the controller's current job."""
        if job is not self._job:
            logger.warning("Discarding late update for superseded job %s", job.id)
            raise _JobSuperseded(job.id)
        for name, value in changes.items():
            setattr(job, name, value)
        if "stage" in changes:
            logger.info("Job %s -> %s", job.id, job.stage.value)
        self._notify(job)

    def _fail(self, job: Job, exc: BaseException) -> None:
        if job is not self._job:
            logger.warning("Job %s failed after being superseded: %s", job.id, exc)
            return
        logger.error("Job %s failed during %s", job.id, job.stage.value, exc_info=exc)
        job.stage = Stage.ERROR
        job.status_message = ERROR_MESSAGE
        job.error_message = str(exc) or type(exc).__name__
        self._notify(job)

    def _notify(self, job: Job) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(job)
        except Exception:  # noqa: BLE001 - a broken listener must not break the job
            logger.exception("Update listener failed for job %s", job.id)
