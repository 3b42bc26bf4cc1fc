import asyncio
import threading
from pathlib import Path

import numpy as np
import pytest

from openpulpit.domain.errors import AnalysisError, ExtractionError
from openpulpit.domain.models import AnalysisResult, ClipCandidate, ClipHandle
from openpulpit.domain.services.pipeline import PipelineController

# Keeps fake sample buffers small: 100 samples per second of "audio".
TEST_SAMPLE_RATE = 100


class FakeDecoder:
    def __init__(self, seconds=300.0, error=None):
        self.seconds = seconds
        self.error = error
        self.calls = []

    def decode(self, source):
        self.calls.append(Path(source))
        if self.error:
            raise self.error
        return np.zeros(int(self.seconds * TEST_SAMPLE_RATE), dtype=np.float32)


class FakeTranscriber:
    def __init__(self, text="hello church", progress=(25.0, 50.0, 100.0), error=None, gate=None):
        self.text = text
        self.progress = progress
        self.error = error
        self.gate = gate
        self.calls = 0

    def transcribe(self, samples, on_progress):
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        for pct in self.progress:
            on_progress(pct)
        if self.error:
            raise self.error
        return self.text


class FakeAnalyzer:
    def __init__(self, result=None, error=None):
        self.result = result if result is not None else sermon_analysis()
        self.error = error
        self.calls = []

    def analyze(self, credential, transcript):
        self.calls.append((credential, transcript))
        if self.error:
            raise self.error
        return self.result


class FakeExtractor:
    """Records call order and how many extractions overlapped."""

    def __init__(self, output_dir=None, fail_on=()):
        self.output_dir = Path(output_dir) if output_dir else None
        self.fail_on = set(fail_on)
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def extract(self, source, start, end):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            index = len(self.calls)
            self.calls.append((start, end))
            if index in self.fail_on:
                raise ExtractionError(f"cannot cut {start}-{end}")
            path = Path(f"{Path(source).stem}-clip-{index}.mp4")
            if self.output_dir is not None:
                path = self.output_dir / path
                path.write_bytes(b"fake mp4")
            return ClipHandle(path=path)
        finally:
            with self._lock:
                self.active -= 1


def sermon_analysis():
    return AnalysisResult(
        summary="A sermon about hope.",
        clips=(
            ClipCandidate(start=10, end=40, reason="hook"),
            ClipCandidate(start=120, end=150, reason="altar call"),
        ),
        social_posts=("Post A", "Post B"),
    )


class Recorder:
    """on_update listener keeping (stage, status_message) for every change."""

    def __init__(self):
        self.updates = []

    def __call__(self, job):
        self.updates.append((job.stage, job.status_message))

    @property
    def stages(self):
        seen = []
        for stage, _ in self.updates:
            if not seen or seen[-1] != stage:
                seen.append(stage)
        return seen


def make_controller(decoder=None, transcriber=None, analyzer=None, extractor=None, **kwargs):
    return PipelineController(
        decoder or FakeDecoder(),
        transcriber or FakeTranscriber(),
        analyzer or FakeAnalyzer(),
        extractor or FakeExtractor(),
        sample_rate=TEST_SAMPLE_RATE,
        **kwargs,
    )


async def wait_until_settled(controller, timeout=5.0):
    async def poll():
        while controller.stage.is_running:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


def run_job(controller, file="sermon.mp4", credential="valid-key"):
    async def scenario():
        controller.start(Path(file) if file else file, credential)
        await wait_until_settled(controller)

    asyncio.run(scenario())


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def rejected_key():
    return AnalysisError("API key not valid")
