# app/schemas/chat_schemas.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.domain_models import (
    Application,
    ApplicationStatus,
    CollectionStep,
    ConversationStage,
)


class ChatRequest(BaseModel):
    """Accepts the web client's ``sessionId`` as well as ``session_id``."""

    model_config = ConfigDict(populate_by_name=True)

    # both are validated in the route so blanks get a 400 rather than a 422
    message: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class ChatResponse(BaseModel):
    """Serialized with the web client's names: ``pdfUrl``, ``isTerminal`` and an upper-case ``status``."""

    model_config = ConfigDict(populate_by_name=True)

    reply: str
    status: str
    is_terminal: bool = Field(alias="isTerminal")
    stage: Optional[ConversationStage] = None
    pdf_url: Optional[str] = Field(default=None, alias="pdfUrl")
    application: Optional[Application] = None

    @classmethod
    def wire_status(cls, status: ApplicationStatus) -> str:
        return status.value.upper()


class SessionSummary(BaseModel):
    session_id: str
    stage: ConversationStage
    step: Optional[CollectionStep] = None
    application: Application
    message_count: int
    sanction_letter_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
