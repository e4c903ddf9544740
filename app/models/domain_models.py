# app/models/domain_models.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field
from sqlalchemy import Column
from sqlalchemy import JSON  # cross-db JSON
from sqlmodel import SQLModel
from sqlmodel import Field as SQLField


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_application_id() -> str:
    return f"LOAN{uuid.uuid4().hex[:10].upper()}"


class ConversationStage(str, Enum):
    GREETING = "GREETING"
    LOAN_TYPE = "LOAN_TYPE"
    AMOUNT = "AMOUNT"
    TENURE = "TENURE"
    PERSONAL_INFO = "PERSONAL_INFO"
    EMPLOYMENT_INFO = "EMPLOYMENT_INFO"
    VERIFICATION = "VERIFICATION"
    UNDERWRITING = "UNDERWRITING"
    DECISION = "DECISION"
    COMPLETED = "COMPLETED"


STAGE_ORDER: List[ConversationStage] = list(ConversationStage)
TERMINAL_STAGES = {ConversationStage.DECISION, ConversationStage.COMPLETED}


class CollectionStep(str, Enum):
    """Sub-state inside PERSONAL_INFO and EMPLOYMENT_INFO."""

    NAME = "NAME"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    EMPLOYMENT_TYPE = "EMPLOYMENT_TYPE"
    EMPLOYER = "EMPLOYER"
    SALARY = "SALARY"


class EmploymentType(str, Enum):
    SALARIED = "salaried"
    SELF_EMPLOYED = "self-employed"


class DecisionOutcome(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ApplicationStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"


class Speaker(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Application(BaseModel):
    application_id: str = Field(default_factory=new_application_id)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # loan facts
    loan_type: Optional[str] = None
    loan_type_name: Optional[str] = None
    requested_amount: Optional[int] = None
    tenure_months: Optional[int] = None

    # applicant facts
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None
    date_of_birth: Optional[str] = None

    # employment facts
    employment_type: Optional[EmploymentType] = None
    employer: Optional[str] = None
    monthly_salary: Optional[int] = None
    years_employed: Optional[int] = None

    # verification facts
    credit_score: Optional[int] = None
    credit_score_source: Optional[str] = None  # "bureau" | "synthesized"
    identity_verified: bool = False

    # decision facts
    decision: Optional[DecisionOutcome] = None
    decision_reason: Optional[str] = None
    approved_amount: Optional[int] = None
    interest_rate: Optional[float] = None
    monthly_installment: Optional[int] = None
    risk_score: Optional[int] = None

    def merged(self, patch: Dict[str, Any], at: datetime) -> "Application":
        """Return a copy with ``patch`` applied.

        ``None`` values in the patch are dropped, so a patch can never clear
        a field that was already collected.
        """
        updates = {k: v for k, v in patch.items() if v is not None}
        updates.pop("application_id", None)
        updates.pop("created_at", None)
        updates["updated_at"] = max(at, self.updated_at)
        return self.model_copy(update=updates)

    @property
    def status(self) -> ApplicationStatus:
        if self.decision == DecisionOutcome.APPROVED:
            return ApplicationStatus.APPROVED
        if self.decision == DecisionOutcome.REJECTED:
            return ApplicationStatus.REJECTED
        return ApplicationStatus.IN_PROGRESS


class HistoryEntry(BaseModel):
    speaker: Speaker
    text: str
    timestamp: datetime = Field(default_factory=utcnow)


class LoanSession(BaseModel):
    session_id: str
    application: Application = Field(default_factory=Application)
    stage: ConversationStage = ConversationStage.GREETING
    step: Optional[CollectionStep] = None
    history: List[HistoryEntry] = Field(default_factory=list)
    sanction_letter_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def start(cls, session_id: str, at: Optional[datetime] = None) -> "LoanSession":
        at = at or utcnow()
        return cls(
            session_id=session_id,
            application=Application(created_at=at, updated_at=at),
            created_at=at,
            updated_at=at,
        )

    def with_message(self, speaker: Speaker, text: str, at: datetime) -> "LoanSession":
        entry = HistoryEntry(speaker=speaker, text=text, timestamp=at)
        return self.model_copy(
            update={"history": [*self.history, entry], "updated_at": max(at, self.updated_at)}
        )

    def advanced(
        self,
        stage: ConversationStage,
        step: Optional[CollectionStep],
        patch: Dict[str, Any],
        at: datetime,
    ) -> "LoanSession":
        application = self.application.merged(patch, at) if patch else self.application
        return self.model_copy(
            update={
                "stage": stage,
                "step": step,
                "application": application,
                "updated_at": max(at, self.updated_at),
            }
        )

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES


class SessionRecord(SQLModel, table=True):
    """Row backing one LoanSession in the SQL session store."""

    session_id: str = SQLField(primary_key=True)
    stage: str = SQLField(index=True)
    payload: Dict[str, Any] = SQLField(sa_column=Column(JSON), default_factory=dict)
    created_at: datetime = SQLField(default_factory=utcnow)
    updated_at: datetime = SQLField(default_factory=utcnow, index=True)
