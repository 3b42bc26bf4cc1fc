from typing import List, Optional

from pydantic import BaseModel

from openpulpit.app.schemas.clips import AnalysisOut, ClipOut
from openpulpit.domain.models import Stage


class JobDetail(BaseModel):
    id: Optional[str] = None
    stage: Stage
    status_message: str
    transcript: Optional[str] = None
    analysis: Optional[AnalysisOut] = None
    clips: List[ClipOut] = []
    error_message: Optional[str] = None


class JobCreatedResponse(JobDetail):
    pass
