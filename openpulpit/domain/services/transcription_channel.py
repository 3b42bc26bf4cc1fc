"""
Background transcription behind an event channel.

The transcriber runs on its own thread so the event loop stays free to
serve status requests. Progress callbacks and the final result are posted
back to the loop as ``TranscriptionEvent`` messages through an
``asyncio.Queue`` and consumed in emission order.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Literal, Optional, Protocol

import numpy as np

logger = logging.getLogger(__name__)

EventKind = Literal["progress", "complete", "error"]


@dataclass(frozen=True)
class TranscriptionEvent:
    kind: EventKind
    progress: Optional[float] = None  # 0-100, progress events only
    text: Optional[str] = None  # complete events only
    error: Optional[BaseException] = None  # error events only

    @property
    def is_terminal(self) -> bool:
        return self.kind != "progress"


class Transcriber(Protocol):
    def transcribe(self, samples: np.ndarray, on_progress: Callable[[float], None]) -> str:
        """Return the recognized text, calling on_progress(0-100) as work advances."""


async def transcription_events(
    transcriber: Transcriber,
    samples: np.ndarray,
) -> AsyncIterator[TranscriptionEvent]:
    """
    Run ``transcriber`` on a worker thread and yield its events.

    Yields zero or more ``progress`` events with a non-decreasing
    percentage, then exactly one ``complete`` or ``error`` event.
    """
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[TranscriptionEvent]" = asyncio.Queue()
    last_progress = 0.0

    def post(event: TranscriptionEvent) -> None:
        try:
            loop.call_soon_threadsafe(queue.put_nowait, event)
        except RuntimeError:
            # Loop already closed, nobody is listening any more.
            logger.debug("Dropping %s event, event loop is closed", event.kind)

    def on_progress(percent: float) -> None:
        nonlocal last_progress
        last_progress = max(last_progress, min(100.0, max(0.0, float(percent))))
        post(TranscriptionEvent("progress", progress=last_progress))

    def work() -> None:
        try:
            text = transcriber.transcribe(samples, on_progress)
        except Exception as exc:  # noqa: BLE001 - forwarded to the consumer
            post(TranscriptionEvent("error", error=exc))
        else:
            post(TranscriptionEvent("complete", text=text))

    thread = threading.Thread(target=work, name="transcription", daemon=True)
    thread.start()

    while True:
        event = await queue.get()
        yield event
        if event.is_terminal:
            return
