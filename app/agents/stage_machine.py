# app/agents/stage_machine.py
"""Stage state machine: one pure step per inbound message."""
import re
from typing import Optional

from app.models.domain_models import (
    Application,
    CollectionStep,
    ConversationStage as Stage,
    DecisionOutcome,
    STAGE_ORDER,
)
from app.models.responses import Transition
from app.agents import sales_agent, verification_agent
from app.agents.verification_agent import IdentityCheck
from app.services.mock_data_service import LoanCatalog
from app.services.utils import format_inr

RESTART_MESSAGE = "Hi, I want to apply for a loan"

DOWNLOAD_PATTERN = re.compile(r"\b(download|letter|pdf)\b", re.IGNORECASE)
RESTART_APPROVED_PATTERN = re.compile(r"\b(new|another)\b|start over", re.IGNORECASE)
RESTART_REJECTED_PATTERN = re.compile(r"\b(new|another)\b|start over|try again", re.IGNORECASE)


def stage_index(stage: Stage) -> int:
    return STAGE_ORDER.index(stage)


def _handle_terminal(stage: Stage, text: str, application: Application) -> Transition:
    if application.decision == DecisionOutcome.APPROVED:
        if DOWNLOAD_PATTERN.search(text):
            return Transition(
                next_stage=stage,
                reply=(
                    "You can download your sanction letter using the link provided above.\n\n"
                    "If you need any assistance, please contact our customer support."
                ),
            )
        if RESTART_APPROVED_PATTERN.search(text):
            return Transition(next_stage=Stage.GREETING, reply="", reset=True)
        return Transition(
            next_stage=stage,
            reply=(
                f"Your **{application.loan_type_name}** of "
                f"{format_inr(application.approved_amount or 0)} has been approved!\n\n"
                "Is there anything else I can help you with?\n"
                "• Download your sanction letter\n"
                "• Apply for another loan\n"
                "• Get help with your application"
            ),
        )

    if RESTART_REJECTED_PATTERN.search(text):
        return Transition(next_stage=Stage.GREETING, reply="", reset=True)
    return Transition(
        next_stage=stage,
        reply=(
            "I'm sorry your previous application wasn't approved. Would you like to try again "
            'with different parameters?\n\nType "new application" to start fresh.'
        ),
    )


def transition(
    stage: Stage,
    step: Optional[CollectionStep],
    application: Application,
    text: str,
    catalog: LoanCatalog,
    identity: Optional[IdentityCheck] = None,
) -> Transition:
    """
    Decide the next stage, the field updates and the reply for one message.

    No I/O and no clock: identity lookups are resolved by the caller and
    passed in as ``identity``; timestamps are stamped when the caller commits.
    """
    if stage == Stage.GREETING:
        return sales_agent.handle_greeting(text, catalog)
    if stage == Stage.LOAN_TYPE:
        return sales_agent.handle_loan_type(text, catalog)
    if stage == Stage.AMOUNT:
        return sales_agent.handle_amount(text, application, catalog)
    if stage == Stage.TENURE:
        return sales_agent.handle_tenure(text, application, catalog)
    if stage == Stage.PERSONAL_INFO:
        return sales_agent.handle_personal_info(text, step)
    if stage == Stage.EMPLOYMENT_INFO:
        return sales_agent.handle_employment_info(text, step)
    if stage == Stage.VERIFICATION:
        return verification_agent.handle_verification(text, application, catalog, identity)
    if stage == Stage.UNDERWRITING:
        return Transition(next_stage=stage, reply="Your application is being processed. Please wait...")
    if stage in (Stage.DECISION, Stage.COMPLETED):
        return _handle_terminal(stage, text, application)

    raise ValueError(f"unknown stage {stage!r}")
