"""
Whisper ASR adapter: turn decoded samples into transcript text.

Audio is fed to the model one fixed-size window at a time so that progress
can be reported while a long recording is transcribed.
"""
import logging
import threading
from typing import Callable, List, Optional

import numpy as np

from openpulpit.config import SAMPLE_RATE
from openpulpit.domain.errors import TranscriptionError

logger = logging.getLogger(__name__)


class WhisperTranscriber:
    def __init__(
        self,
        model_size: str = "tiny",
        *,
        chunk_seconds: float = 30.0,
        language: Optional[str] = None,
        sample_rate: int = SAMPLE_RATE,
    ) -> None:
        self.model_size = model_size
        self.chunk_seconds = chunk_seconds
        self.language = language
        self.sample_rate = sample_rate
        self._model = None
        self._model_lock = threading.Lock()

    def _load_model(self):
        """Load the model once and reuse it for every job."""
        with self._model_lock:
            if self._model is None:
                import whisper

                logger.info("Loading Whisper model %s", self.model_size)
                try:
                    self._model = whisper.load_model(self.model_size)
                except Exception as e:
                    raise TranscriptionError(f"Could not load Whisper model {self.model_size}: {e}") from e
            return self._model

    def transcribe(self, samples: np.ndarray, on_progress: Callable[[float], None]) -> str:
        samples = np.asarray(samples, dtype=np.float32)
        if samples.ndim != 1:
            raise TranscriptionError(f"Expected mono samples, got shape {samples.shape}")
        if samples.size == 0:
            raise TranscriptionError("No audio samples to transcribe")

        model = self._load_model()
        window = max(1, int(self.chunk_seconds * self.sample_rate))
        offsets = range(0, samples.size, window)
        total = len(offsets)

        parts: List[str] = []
        on_progress(0.0)
        for done, offset in enumerate(offsets, start=1):
            chunk = samples[offset : offset + window]
            try:
                result = model.transcribe(
                    chunk,
                    language=self.language,
                    fp16=False,
                    # previous window's text primes the next one
                    initial_prompt=parts[-1] if parts else None,
                )
            except Exception as e:
                raise TranscriptionError(f"Whisper failed on window {done}/{total}: {e}") from e
            text = (result.get("text") or "").strip()
            if text:
                parts.append(text)
            on_progress(100.0 * done / total)

        return " ".join(parts)
