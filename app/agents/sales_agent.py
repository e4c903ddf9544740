# app/agents/sales_agent.py
"""
Sales agent: collects the loan and applicant details, one datum per turn.

Handles GREETING, LOAN_TYPE, AMOUNT, TENURE, PERSONAL_INFO and
EMPLOYMENT_INFO. Every handler is pure; a failed extraction returns the same
stage and step with an empty patch.
"""
from typing import List, Optional

from app.models.domain_models import (
    Application,
    CollectionStep,
    ConversationStage as Stage,
    EmploymentType,
)
from app.models.responses import Transition
from app.services import extractors
from app.services.mock_data_service import LoanCatalog, LoanType
from app.services.utils import format_inr, format_tenure


def snap_tenure(requested_months: int, allowed: List[int]) -> int:
    """
    Nearest allowed tenure. On a tie the candidate listed first wins.
    """
    if not allowed:
        return requested_months
    closest = allowed[0]
    for candidate in allowed[1:]:
        if abs(candidate - requested_months) < abs(closest - requested_months):
            closest = candidate
    return closest


def loan_types_display(catalog: LoanCatalog) -> str:
    return "\n".join(
        f"{i}. **{lt.name}** ({lt.interest_rate}% p.a.)" for i, lt in enumerate(catalog, start=1)
    )


def _stay(stage: Stage, step: Optional[CollectionStep], reply: str) -> Transition:
    return Transition(next_stage=stage, next_step=step, patch={}, reply=reply)


def _loan_type_patch(loan_type: LoanType) -> dict:
    return {"loan_type": loan_type.id, "loan_type_name": loan_type.name}


def handle_greeting(text: str, catalog: LoanCatalog) -> Transition:
    loan_type = extractors.extract_loan_type(text, catalog)
    if loan_type:
        return Transition(
            next_stage=Stage.AMOUNT,
            patch=_loan_type_patch(loan_type),
            reply=(
                f"Excellent choice! A **{loan_type.name}** is a great option. "
                f"We offer amounts from {format_inr(loan_type.min_amount)} to "
                f"{format_inr(loan_type.max_amount)} at {loan_type.interest_rate}% p.a.\n\n"
                f"How much loan amount do you need?"
            ),
        )

    return Transition(
        next_stage=Stage.LOAN_TYPE,
        reply=(
            "Welcome! I'm your loan assistant, and I'll help you apply for a loan in just "
            "a few minutes.\n\n"
            f"Which type of loan interests you?\n{loan_types_display(catalog)}"
        ),
    )


def handle_loan_type(text: str, catalog: LoanCatalog) -> Transition:
    loan_type = extractors.extract_loan_type(text, catalog)
    if not loan_type:
        return _stay(
            Stage.LOAN_TYPE,
            None,
            f"Please select a loan type to continue:\n{loan_types_display(catalog)}",
        )

    tenures = loan_type.tenure_months
    return Transition(
        next_stage=Stage.AMOUNT,
        patch=_loan_type_patch(loan_type),
        reply=(
            f"Great! **{loan_type.name}** is an excellent choice!\n\n"
            f"Here's what we offer:\n"
            f"• Amount: {format_inr(loan_type.min_amount)} - {format_inr(loan_type.max_amount)}\n"
            f"• Interest Rate: {loan_type.interest_rate}% p.a.\n"
            f"• Tenure: {tenures[0]} - {tenures[-1]} months\n\n"
            f"How much loan amount would you like to apply for?"
        ),
    )


def amount_bound_message(amount: int, loan_type: LoanType) -> Optional[str]:
    """Corrective prompt naming the violated bound, or None when the amount is on offer."""
    if amount < loan_type.min_amount:
        return (
            f"The minimum amount for {loan_type.name} is {format_inr(loan_type.min_amount)}. "
            f"Please enter a higher amount."
        )
    if amount > loan_type.max_amount:
        return (
            f"The maximum amount for {loan_type.name} is {format_inr(loan_type.max_amount)}. "
            f"Please enter a lower amount."
        )
    return None


def handle_amount(text: str, application: Application, catalog: LoanCatalog) -> Transition:
    loan_type = catalog.get(application.loan_type)
    amount = extractors.extract_amount(text)

    if amount is None or loan_type is None:
        return _stay(
            Stage.AMOUNT, None, 'Please enter a valid loan amount. For example: "5 lakhs" or "500000"'
        )

    bound = amount_bound_message(amount, loan_type)
    if bound:
        return _stay(Stage.AMOUNT, None, bound)

    options = ", ".join(format_tenure(t) for t in loan_type.tenure_months)
    return Transition(
        next_stage=Stage.TENURE,
        patch={"requested_amount": amount},
        reply=(
            f"Got it! You're applying for **{format_inr(amount)}**.\n\n"
            f"What repayment tenure would you prefer?\nAvailable options: {options}"
        ),
    )


def handle_tenure(text: str, application: Application, catalog: LoanCatalog) -> Transition:
    loan_type = catalog.get(application.loan_type)
    requested = extractors.extract_tenure(text)

    if requested is None or loan_type is None:
        return _stay(
            Stage.TENURE, None, 'Please specify a valid tenure. For example: "3 years" or "36 months"'
        )

    tenure = snap_tenure(requested, loan_type.tenure_months)
    return Transition(
        next_stage=Stage.PERSONAL_INFO,
        next_step=CollectionStep.NAME,
        patch={"tenure_months": tenure},
        reply=(
            f"Perfect! Your loan tenure is set to **{tenure} months** ({tenure / 12:.1f} years).\n\n"
            f"Now, I'll need some personal details.\n\n"
            f"What is your **full name** (as per PAN card)?"
        ),
    )


def handle_personal_info(text: str, step: Optional[CollectionStep]) -> Transition:
    step = step or CollectionStep.NAME

    if step == CollectionStep.NAME:
        name = extractors.extract_name(text)
        if not name:
            return _stay(
                Stage.PERSONAL_INFO, step, "Please enter your full name (as it appears on your PAN card)."
            )
        return Transition(
            next_stage=Stage.PERSONAL_INFO,
            next_step=CollectionStep.EMAIL,
            patch={"full_name": name},
            reply=f"Nice to meet you, **{name}**!\n\nWhat is your **email address**?",
        )

    if step == CollectionStep.EMAIL:
        email = extractors.extract_email(text)
        if not email:
            return _stay(
                Stage.PERSONAL_INFO, step, "Please enter a valid email address (e.g., name@example.com)"
            )
        return Transition(
            next_stage=Stage.PERSONAL_INFO,
            next_step=CollectionStep.PHONE,
            patch={"email": email},
            reply="Got it!\n\nWhat is your **mobile number**?",
        )

    phone = extractors.extract_phone(text)
    if not phone:
        return _stay(Stage.PERSONAL_INFO, CollectionStep.PHONE, "Please enter a valid 10-digit mobile number.")
    return Transition(
        next_stage=Stage.EMPLOYMENT_INFO,
        next_step=CollectionStep.EMPLOYMENT_TYPE,
        patch={"phone": phone},
        reply="Great!\n\nNow for employment details.\n\nAre you **salaried** or **self-employed**?",
    )


def handle_employment_info(text: str, step: Optional[CollectionStep]) -> Transition:
    step = step or CollectionStep.EMPLOYMENT_TYPE

    if step == CollectionStep.EMPLOYMENT_TYPE:
        employment_type = extractors.extract_employment_type(text)
        if employment_type is None:
            return _stay(
                Stage.EMPLOYMENT_INFO, step, "Please specify if you are **salaried** or **self-employed**."
            )
        question = (
            "What is the name of your **employer/company**?"
            if employment_type == EmploymentType.SALARIED
            else "What is the name of your **business**?"
        )
        return Transition(
            next_stage=Stage.EMPLOYMENT_INFO,
            next_step=CollectionStep.EMPLOYER,
            patch={"employment_type": employment_type},
            reply=question,
        )

    if step == CollectionStep.EMPLOYER:
        employer = extractors.extract_employer(text)
        if not employer:
            return _stay(Stage.EMPLOYMENT_INFO, step, "Please tell me the name of your employer or business.")
        return Transition(
            next_stage=Stage.EMPLOYMENT_INFO,
            next_step=CollectionStep.SALARY,
            patch={"employer": employer},
            reply="And what is your **monthly income/salary** (take-home)?",
        )

    salary = extractors.extract_salary(text)
    if salary is None:
        return _stay(
            Stage.EMPLOYMENT_INFO,
            CollectionStep.SALARY,
            'Please enter your monthly salary in rupees (e.g., "50000" or "50,000")',
        )
    return Transition(
        next_stage=Stage.VERIFICATION,
        patch={"monthly_salary": salary},
        reply="Thank you!\n\nLast step: Please provide your **PAN number** for verification.",
    )
