"""
Gemini analysis adapter.

Asks the model for a summary, highlight clips and social captions as JSON
and validates the answer before it reaches the pipeline.
"""
import logging
import re
from typing import List

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator

from openpulpit.domain.errors import AnalysisError
from openpulpit.domain.models import AnalysisResult, ClipCandidate

logger = logging.getLogger(__name__)

PROMPT = """You are a social media manager for a church. Analyze this sermon transcript.
Return ONLY a JSON object with exactly these keys:
{{
  "summary": "a short summary of the sermon",
  "viral_clips": [
    {{"start_time": <seconds, number>, "end_time": <seconds, number>, "reason": "short label"}}
  ],
  "social_posts": ["caption 1", "caption 2"]
}}
Pick 3 viral clips between 15 and 60 seconds long. Times are seconds from the
start of the recording.

Transcript:
{transcript}
"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class ViralClipPayload(BaseModel):
    start_time: float = Field(validation_alias=AliasChoices("start_time", "start"))
    end_time: float = Field(validation_alias=AliasChoices("end_time", "end"))
    reason: str

    @model_validator(mode="after")
    def check_range(self) -> "ViralClipPayload":
        if self.start_time < 0:
            raise ValueError(f"start_time must not be negative, got {self.start_time}")
        if self.start_time >= self.end_time:
            raise ValueError(f"start_time {self.start_time} must be before end_time {self.end_time}")
        return self


class AnalysisPayload(BaseModel):
    summary: str
    viral_clips: List[ViralClipPayload]
    social_posts: List[str]

    def to_result(self) -> AnalysisResult:
        return AnalysisResult(
            summary=self.summary,
            clips=tuple(
                ClipCandidate(start=c.start_time, end=c.end_time, reason=c.reason)
                for c in self.viral_clips
            ),
            social_posts=tuple(self.social_posts),
        )


def parse_analysis(raw: str) -> AnalysisResult:
    """Parse the model's JSON answer, tolerating a markdown code fence around it."""
    text = (raw or "").strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)
    if not text:
        raise AnalysisError("Analysis response was empty")
    try:
        payload = AnalysisPayload.model_validate_json(text)
    except ValidationError as e:
        raise AnalysisError(f"Malformed analysis response: {e}") from e
    return payload.to_result()


class GeminiAnalyzer:
    def __init__(self, model_name: str = "gemini-1.5-flash", *, temperature: float = 0.4) -> None:
        self.model_name = model_name
        self.temperature = temperature

    def analyze(self, credential: str, transcript: str) -> AnalysisResult:
        genai.configure(api_key=credential)
        model = genai.GenerativeModel(self.model_name)
        logger.info("Calling Gemini model %s on %d characters of transcript", self.model_name, len(transcript))
        try:
            response = model.generate_content(
                PROMPT.format(transcript=transcript),
                generation_config={
                    "temperature": self.temperature,
                    "response_mime_type": "application/json",
                },
            )
            text = response.text
        except google_exceptions.GoogleAPIError as e:
            raise AnalysisError(f"Gemini request failed: {e}") from e
        except ValueError as e:
            # response.text raises ValueError when the answer was blocked or empty
            raise AnalysisError(f"Gemini returned no usable text: {e}") from e
        return parse_analysis(text)
