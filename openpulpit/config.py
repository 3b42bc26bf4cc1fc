"""
Runtime configuration, read from environment variables.

The Gemini API key is not part of the configuration: it is supplied by the
caller with every job.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from openpulpit.domain.models import ClipFailurePolicy

# Whisper expects mono float samples at 16 kHz.
SAMPLE_RATE = 16000


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass
class Settings:
    whisper_model: str = "tiny"
    whisper_chunk_seconds: float = 30.0
    whisper_language: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    gemini_temperature: float = 0.4
    jobs_dir: Path = Path("jobs")
    clips_dir: Path = Path("jobs") / "clips"
    max_upload_mb: int = 0  # 0 means no limit
    clip_failure_policy: ClipFailurePolicy = ClipFailurePolicy.FAIL_FAST
    clip_video_codec: str = "libx264"
    clip_audio_codec: str = "aac"
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = ("*",)

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024 if self.max_upload_mb else 0

    @classmethod
    def from_env(cls) -> "Settings":
        policy = os.getenv("CLIP_FAILURE_POLICY", ClipFailurePolicy.FAIL_FAST.value).lower()
        try:
            clip_failure_policy = ClipFailurePolicy(policy)
        except ValueError as e:
            choices = ", ".join(p.value for p in ClipFailurePolicy)
            raise ValueError(f"CLIP_FAILURE_POLICY must be one of {choices}, got {policy!r}") from e

        chunk_seconds = _float_env("WHISPER_CHUNK_SECONDS", 30.0)
        if chunk_seconds <= 0:
            raise ValueError("WHISPER_CHUNK_SECONDS must be positive")

        max_upload_mb = _int_env("MAX_UPLOAD_MB", 0)
        if max_upload_mb < 0:
            raise ValueError("MAX_UPLOAD_MB must not be negative")

        jobs_dir = Path(os.getenv("JOBS_DIR", "jobs"))
        return cls(
            whisper_model=os.getenv("WHISPER_MODEL", "tiny"),
            whisper_chunk_seconds=chunk_seconds,
            whisper_language=os.getenv("WHISPER_LANGUAGE") or None,
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
            gemini_temperature=_float_env("GEMINI_TEMPERATURE", 0.4),
            jobs_dir=jobs_dir,
            clips_dir=Path(os.getenv("CLIPS_DIR", str(jobs_dir / "clips"))),
            max_upload_mb=max_upload_mb,
            clip_failure_policy=clip_failure_policy,
            clip_video_codec=os.getenv("CLIP_VIDEO_CODEC", "libx264"),
            clip_audio_codec=os.getenv("CLIP_AUDIO_CODEC", "aac"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=tuple(
                origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
            ),
        )
