import logging
from pathlib import Path

import ffmpeg
import librosa
import numpy as np

from openpulpit.config import SAMPLE_RATE
from openpulpit.domain.errors import DecodeError, ExtractionError
from openpulpit.domain.models import ClipHandle

logger = logging.getLogger(__name__)


def _stderr(e: ffmpeg.Error) -> str:
    return (e.stderr or b"").decode("utf-8", errors="replace").strip()


def extract_audio(input_video: Path, output_audio: Path, *, sample_rate: int = SAMPLE_RATE) -> None:
    """
    Extract mono WAV audio suitable for transcription from a video file.
    """
    try:
        (
            ffmpeg.input(str(input_video))
            .output(
                str(output_audio),
                ac=1,  # mono
                ar=sample_rate,
                format="wav",
            )
            .overwrite_output()
            .run(quiet=True)
        )
    except ffmpeg.Error as e:
        raise DecodeError(f"ffmpeg failed to extract audio: {_stderr(e) or e}") from e


def probe_duration(media: Path) -> float:
    """Duration of a media file in seconds, as reported by ffprobe."""
    try:
        info = ffmpeg.probe(str(media))
    except ffmpeg.Error as e:
        raise ExtractionError(f"ffprobe failed on {media.name}: {_stderr(e) or e}") from e

    duration = info.get("format", {}).get("duration")
    if duration is None:
        stream_durations = [float(s["duration"]) for s in info.get("streams", []) if s.get("duration")]
        if not stream_durations:
            raise ExtractionError(f"Could not determine the duration of {media.name}")
        return max(stream_durations)
    return float(duration)


class AudioDecoder:
    """Decode the audio track of any ffmpeg-readable file into float samples."""

    def __init__(self, sample_rate: int = SAMPLE_RATE) -> None:
        self.sample_rate = sample_rate

    def decode(self, source: Path) -> np.ndarray:
        source = Path(source)
        if not source.is_file():
            raise DecodeError(f"Source file not found: {source}")

        audio_path = source.with_suffix(".analysis.wav")
        try:
            extract_audio(source, audio_path, sample_rate=self.sample_rate)
            try:
                samples, _ = librosa.load(str(audio_path), sr=self.sample_rate, mono=True)
            except Exception as e:
                raise DecodeError(f"Could not read decoded audio: {e}") from e
        finally:
            audio_path.unlink(missing_ok=True)

        if samples.size == 0:
            raise DecodeError(f"{source.name} has no audio")
        logger.debug("Decoded %d samples from %s", samples.size, source.name)
        return samples.astype(np.float32, copy=False)


class ClipExtractor:
    """
    Cut time ranges out of a source video with ffmpeg.

    Clips are re-encoded rather than stream-copied so the cut lands on the
    requested timestamps instead of the nearest keyframe.
    """

    def __init__(
        self,
        output_dir: Path,
        *,
        video_codec: str = "libx264",
        audio_codec: str = "aac",
        tolerance: float = 0.5,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.video_codec = video_codec
        self.audio_codec = audio_codec
        self.tolerance = tolerance

    def output_path(self, source: Path, start: float, end: float) -> Path:
        return self.output_dir / f"{source.stem}_{int(start * 1000)}-{int(end * 1000)}.mp4"

    def extract(self, source: Path, start: float, end: float) -> ClipHandle:
        source = Path(source)
        if start < 0 or start >= end:
            raise ExtractionError(f"Invalid clip range {start:.2f}-{end:.2f}s")

        duration = probe_duration(source)
        if end > duration + self.tolerance:
            raise ExtractionError(
                f"Clip range {start:.2f}-{end:.2f}s is outside the source ({duration:.2f}s)"
            )

        self.output_dir.mkdir(parents=True, exist_ok=True)
        output = self.output_path(source, start, end)
        try:
            (
                ffmpeg.input(str(source), ss=start, t=end - start)
                .output(
                    str(output),
                    vcodec=self.video_codec,
                    acodec=self.audio_codec,
                    movflags="+faststart",
                )
                .overwrite_output()
                .run(quiet=True)
            )
        except ffmpeg.Error as e:
            output.unlink(missing_ok=True)
            raise ExtractionError(
                f"ffmpeg failed to cut {start:.2f}-{end:.2f}s: {_stderr(e) or e}"
            ) from e

        logger.info("Cut %s (%.1f-%.1fs)", output.name, start, end)
        return ClipHandle(path=output)
