# app/agents/underwriting_agent.py
"""
Deterministic underwriting.

Rules are evaluated in order and the first applicable rule decides:

1. income floor          -> reject
2. credit floor          -> reject
3. affordability cap     -> approve a reduced amount
4. installment ratio     -> approve a conservative amount
5. full approval         -> approve the requested amount

The personalised interest rate and the informational risk score are computed
up front for every application, whichever rule fires.
"""
from dataclasses import dataclass
import math
from typing import Callable, List, Optional

from app.models.domain_models import Application, DecisionOutcome, EmploymentType
from app.services.mock_data_service import LoanCatalog, load_loan_catalog
from app.services.utils import format_inr

MIN_SALARY = 25_000
MIN_CREDIT_SCORE = 650
MAX_DTI_RATIO = 0.5
CREDIT_SCORE_EXCELLENT = 750
CREDIT_SCORE_GOOD = 700
DEFAULT_BASE_RATE = 12.0
DEFAULT_TENURE_MONTHS = 12
CAP_ROUNDING_UNIT = 10_000
CONSERVATIVE_HAIRCUT = 0.7


def calculate_installment(principal: float, annual_rate: float, tenure_months: int) -> int:
    """Amortised monthly installment, rounded half-up to a whole unit."""
    if tenure_months <= 0:
        raise ValueError("tenure_months must be positive")
    r = annual_rate / 12 / 100
    if r == 0:
        return int(math.floor(principal / tenure_months + 0.5))
    growth = (1 + r) ** tenure_months
    installment = principal * r * growth / (growth - 1)
    return int(math.floor(installment + 0.5))


def max_principal_for_installment(installment: float, annual_rate: float, tenure_months: int) -> float:
    r = annual_rate / 12 / 100
    if r == 0:
        return installment * tenure_months
    growth = (1 + r) ** tenure_months
    return installment * (growth - 1) / (r * growth)


def max_eligible_amount(monthly_salary: int, annual_rate: float, tenure_months: int) -> int:
    max_installment = monthly_salary * MAX_DTI_RATIO
    principal = max_principal_for_installment(max_installment, annual_rate, tenure_months)
    return int(math.floor(principal / CAP_ROUNDING_UNIT)) * CAP_ROUNDING_UNIT


def personalised_rate(credit_score: int, base_rate: float) -> float:
    if credit_score >= CREDIT_SCORE_EXCELLENT:
        return base_rate
    if credit_score >= CREDIT_SCORE_GOOD:
        return base_rate + 0.5
    if credit_score >= MIN_CREDIT_SCORE:
        return base_rate + 1.0
    return base_rate + 2.0


def calculate_risk_score(application: Application) -> int:
    """Higher is better. Informational only; never feeds the decision."""
    score = 0

    # credit score (40)
    credit = application.credit_score
    if credit:
        if credit >= CREDIT_SCORE_EXCELLENT:
            score += 40
        elif credit >= CREDIT_SCORE_GOOD:
            score += 30
        elif credit >= MIN_CREDIT_SCORE:
            score += 20
        else:
            score += 5

    # income (30)
    salary = application.monthly_salary
    if salary:
        if salary >= 100_000:
            score += 30
        elif salary >= 50_000:
            score += 25
        elif salary >= MIN_SALARY:
            score += 15
        else:
            score += 5

    # employment stability (20)
    if application.employment_type == EmploymentType.SALARIED:
        score += 20
    else:
        score += 12

    # loan to annual income (10)
    if application.requested_amount and salary:
        loan_to_income = application.requested_amount / (salary * 12)
        if loan_to_income <= 2:
            score += 10
        elif loan_to_income <= 4:
            score += 7
        elif loan_to_income <= 6:
            score += 4

    return min(score, 100)


@dataclass(frozen=True)
class UnderwritingContext:
    application: Application
    salary: int
    credit_score: int
    requested_amount: int
    tenure_months: int
    base_rate: float
    interest_rate: float
    max_eligible: int
    risk_score: int


@dataclass(frozen=True)
class UnderwritingDecision:
    decision: DecisionOutcome
    reason: str
    risk_score: int
    rule: str
    approved_amount: Optional[int] = None
    interest_rate: Optional[float] = None

    @property
    def approved(self) -> bool:
        return self.decision == DecisionOutcome.APPROVED


@dataclass(frozen=True)
class UnderwritingRule:
    name: str
    applies: Callable[[UnderwritingContext], bool]
    outcome: Callable[[UnderwritingContext], UnderwritingDecision]


def _reject(ctx: UnderwritingContext, rule: str, reason: str) -> UnderwritingDecision:
    return UnderwritingDecision(
        decision=DecisionOutcome.REJECTED,
        reason=reason,
        risk_score=ctx.risk_score,
        rule=rule,
    )


def _approve(ctx: UnderwritingContext, rule: str, amount: int, reason: str) -> UnderwritingDecision:
    return UnderwritingDecision(
        decision=DecisionOutcome.APPROVED,
        reason=reason,
        risk_score=ctx.risk_score,
        rule=rule,
        approved_amount=amount,
        interest_rate=ctx.interest_rate,
    )


def _income_floor(ctx: UnderwritingContext) -> UnderwritingDecision:
    return _reject(
        ctx,
        "income_floor",
        f"Monthly salary of {format_inr(ctx.salary)} is below our minimum requirement "
        f"of {format_inr(MIN_SALARY)}.",
    )


def _credit_floor(ctx: UnderwritingContext) -> UnderwritingDecision:
    return _reject(
        ctx,
        "credit_floor",
        f"Credit score of {ctx.credit_score} is below our minimum requirement of "
        f"{MIN_CREDIT_SCORE}. Consider improving your credit score by paying bills on "
        f"time and reducing outstanding debt.",
    )


def _affordability_cap(ctx: UnderwritingContext) -> UnderwritingDecision:
    return _approve(
        ctx,
        "affordability_cap",
        ctx.max_eligible,
        f"Based on your income of {format_inr(ctx.salary)}/month, we can approve "
        f"{format_inr(ctx.max_eligible)} (reduced from your requested "
        f"{format_inr(ctx.requested_amount)}) to maintain a healthy EMI-to-income ratio.",
    )


def _installment_ratio_exceeded(ctx: UnderwritingContext) -> bool:
    installment = calculate_installment(ctx.requested_amount, ctx.interest_rate, ctx.tenure_months)
    return installment / ctx.salary > MAX_DTI_RATIO


def _installment_ratio(ctx: UnderwritingContext) -> UnderwritingDecision:
    adjusted = int(math.floor(ctx.salary * MAX_DTI_RATIO * ctx.tenure_months * CONSERVATIVE_HAIRCUT))
    adjusted_installment = calculate_installment(adjusted, ctx.interest_rate, ctx.tenure_months)
    return _approve(
        ctx,
        "installment_ratio",
        adjusted,
        f"To ensure comfortable repayment, we've adjusted your loan to {format_inr(adjusted)} "
        f"with an EMI of {format_inr(adjusted_installment)}.",
    )


def _full_approval(ctx: UnderwritingContext) -> UnderwritingDecision:
    loan_name = ctx.application.loan_type_name or "loan"
    return _approve(
        ctx,
        "full_approval",
        ctx.requested_amount,
        f"Congratulations! Your {loan_name} application meets all our criteria. Your credit "
        f"score of {ctx.credit_score} qualifies you for a competitive interest rate of "
        f"{ctx.interest_rate}% p.a.",
    )


RULES: List[UnderwritingRule] = [
    UnderwritingRule("income_floor", lambda ctx: ctx.salary < MIN_SALARY, _income_floor),
    UnderwritingRule("credit_floor", lambda ctx: ctx.credit_score < MIN_CREDIT_SCORE, _credit_floor),
    UnderwritingRule(
        "affordability_cap",
        lambda ctx: ctx.requested_amount > ctx.max_eligible,
        _affordability_cap,
    ),
    UnderwritingRule("installment_ratio", _installment_ratio_exceeded, _installment_ratio),
    UnderwritingRule("full_approval", lambda ctx: True, _full_approval),
]


def build_context(application: Application, catalog: LoanCatalog) -> UnderwritingContext:
    loan_type = catalog.get(application.loan_type)
    base_rate = loan_type.interest_rate if loan_type else DEFAULT_BASE_RATE
    salary = application.monthly_salary or 0
    credit_score = application.credit_score or 0
    tenure = application.tenure_months or DEFAULT_TENURE_MONTHS
    interest_rate = personalised_rate(credit_score, base_rate)
    max_eligible = max_eligible_amount(salary, interest_rate, tenure) if salary > 0 else 0

    return UnderwritingContext(
        application=application,
        salary=salary,
        credit_score=credit_score,
        requested_amount=application.requested_amount or 0,
        tenure_months=tenure,
        base_rate=base_rate,
        interest_rate=interest_rate,
        max_eligible=max_eligible,
        risk_score=calculate_risk_score(application),
    )


def decide(
    application: Application,
    catalog: Optional[LoanCatalog] = None,
    rules: Optional[List[UnderwritingRule]] = None,
) -> UnderwritingDecision:
    """
    Decide a complete application. Pure: same input, same output.
    """
    ctx = build_context(application, catalog or load_loan_catalog())
    for rule in rules or RULES:
        if rule.applies(ctx):
            return rule.outcome(ctx)
    raise RuntimeError("no underwriting rule applied")


def decision_patch(result: UnderwritingDecision, tenure_months: Optional[int]) -> dict:
    """All decision fields for the application, as one patch."""
    patch = {
        "decision": result.decision,
        "decision_reason": result.reason,
        "risk_score": result.risk_score,
    }
    if result.approved:
        patch["approved_amount"] = result.approved_amount
        patch["interest_rate"] = result.interest_rate
        patch["monthly_installment"] = calculate_installment(
            result.approved_amount, result.interest_rate, tenure_months or DEFAULT_TENURE_MONTHS
        )
    return patch
