from pydantic import BaseModel
from typing import Any, Dict, Optional

from app.models.domain_models import (
    Application,
    ApplicationStatus,
    CollectionStep,
    ConversationStage,
)


class Transition(BaseModel):
    """Outcome of one pure stage-machine step."""

    next_stage: ConversationStage
    next_step: Optional[CollectionStep] = None
    patch: Dict[str, Any] = {}
    reply: str

    # set when the user asked to start over from a terminal stage
    reset: bool = False


class TurnResult(BaseModel):
    reply: str
    application: Optional[Application] = None
    stage: Optional[ConversationStage] = None
    status: ApplicationStatus = ApplicationStatus.IN_PROGRESS
    is_terminal: bool = False
    pdf_url: Optional[str] = None
