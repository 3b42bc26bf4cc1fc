import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple


class Stage(str, Enum):
    IDLE = "idle"
    TRANSCRIBING = "transcribing"
    ANALYZING = "analyzing"
    CLIPPING = "clipping"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_running(self) -> bool:
        return self in (Stage.TRANSCRIBING, Stage.ANALYZING, Stage.CLIPPING)

    @property
    def is_startable(self) -> bool:
        # a finished job stays on display until its host is torn down
        return self in (Stage.IDLE, Stage.ERROR)


class ClipFailurePolicy(str, Enum):
    FAIL_FAST = "fail_fast"  # one bad clip fails the whole job
    SKIP = "skip"  # log the bad clip and keep cutting the rest


@dataclass(frozen=True)
class ClipCandidate:
    start: float  # seconds from the start of the source
    end: float
    reason: str


@dataclass(frozen=True)
class AnalysisResult:
    summary: str
    clips: Tuple[ClipCandidate, ...] = ()
    social_posts: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ClipHandle:
    """A trimmed, playable file on local disk."""
    path: Path


@dataclass(frozen=True)
class EnrichedClip:
    candidate: ClipCandidate
    handle: ClipHandle

    @property
    def start(self) -> float:
        return self.candidate.start

    @property
    def end(self) -> float:
        return self.candidate.end

    @property
    def reason(self) -> str:
        return self.candidate.reason


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Job:
    source: Path
    credential: str = field(repr=False)
    id: str = field(default_factory=new_job_id)
    stage: Stage = Stage.TRANSCRIBING
    status_message: str = "Preparing audio..."
    transcript: Optional[str] = None
    analysis: Optional[AnalysisResult] = None
    clips: List[EnrichedClip] = field(default_factory=list)
    error_message: Optional[str] = None
    duration: Optional[float] = None  # seconds of decoded audio
