from typing import List

from pydantic import BaseModel


class CandidateOut(BaseModel):
    start: float
    end: float
    reason: str


class ClipOut(CandidateOut):
    index: int
    url: str


class AnalysisOut(BaseModel):
    summary: str
    viral_clips: List[CandidateOut] = []
    social_posts: List[str] = []
