# app/agents/verification_agent.py
import asyncio
import hashlib
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from app.models.domain_models import Application, ConversationStage as Stage, EmploymentType
from app.models.responses import Transition
from app.agents.sales_agent import amount_bound_message, snap_tenure
from app.services import extractors
from app.services.mock_data_service import LoanCatalog, get_customer_by_pan

logger = logging.getLogger(__name__)

MIN_VALID_SCORE = 300
MAX_VALID_SCORE = 900
SYNTHETIC_SCORE_FLOOR = 550
SYNTHETIC_SCORE_SPAN = 250

REQUIRED_FIELDS: List[str] = [
    "loan_type",
    "requested_amount",
    "tenure_months",
    "full_name",
    "email",
    "phone",
    "employment_type",
    "employer",
    "monthly_salary",
    "tax_id",
    "credit_score",
]

FIELD_LABELS: Dict[str, str] = {
    "loan_type": "Loan Type",
    "requested_amount": "Loan Amount",
    "tenure_months": "Loan Tenure",
    "full_name": "Full Name",
    "email": "Email Address",
    "phone": "Phone Number",
    "employment_type": "Employment Type",
    "employer": "Employer",
    "monthly_salary": "Monthly Salary",
    "tax_id": "PAN Number",
    "credit_score": "Credit Score",
}

# identity record field -> application field
BACKFILL_FIELDS: Dict[str, str] = {
    "name": "full_name",
    "email": "email",
    "phone": "phone",
    "salary": "monthly_salary",
    "employer": "employer",
    "employment_type": "employment_type",
    "date_of_birth": "date_of_birth",
}


class IdentityRecord(BaseModel):
    pan: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    salary: Optional[int] = None
    employer: Optional[str] = None
    employment_type: Optional[EmploymentType] = None
    credit_score: Optional[int] = None
    date_of_birth: Optional[str] = None


class IdentityCheck(BaseModel):
    tax_id: str
    credit_score: int
    source: str  # "bureau" | "synthesized"
    record: Optional[IdentityRecord] = None


class MockIdentityDirectory:
    """Identity records from the bundled customers.json."""

    async def lookup(self, tax_id: str) -> Optional[IdentityRecord]:
        customer = get_customer_by_pan(tax_id)
        if not customer:
            return None
        return IdentityRecord(**customer)


def synthesize_credit_score(tax_id: str) -> int:
    """Stable stand-in score for applicants we have no record of."""
    digest = hashlib.sha256(tax_id.upper().encode("utf-8")).hexdigest()
    return SYNTHETIC_SCORE_FLOOR + int(digest, 16) % SYNTHETIC_SCORE_SPAN


class IdentityVerifier:
    """
    Resolves a PAN to a credit score.

    A missing record, an unusable score and an unavailable directory all fall
    back to a synthesized score so the demo flow never stalls. The three cases
    are logged differently; treating them the same is a product decision that
    needs sign-off before any production use.
    """

    def __init__(self, directory=None, timeout: Optional[float] = 5.0):
        self.directory = directory or MockIdentityDirectory()
        self.timeout = timeout

    async def verify(self, tax_id: str) -> IdentityCheck:
        try:
            record = await asyncio.wait_for(self.directory.lookup(tax_id), timeout=self.timeout)
        except Exception as exc:
            logger.warning("identity directory unavailable for %s (%s); synthesizing score", tax_id, exc)
            return self._synthesized(tax_id)

        if record is None:
            logger.info("no identity record for %s; treating as new applicant", tax_id)
            return self._synthesized(tax_id)

        score = record.credit_score
        if score is None or not (MIN_VALID_SCORE <= score <= MAX_VALID_SCORE):
            logger.warning("identity record for %s has unusable credit score %s; synthesizing", tax_id, score)
            return self._synthesized(tax_id, record)

        logger.info("identity record matched for %s", tax_id)
        return IdentityCheck(tax_id=tax_id, credit_score=score, source="bureau", record=record)

    @staticmethod
    def _synthesized(tax_id: str, record: Optional[IdentityRecord] = None) -> IdentityCheck:
        return IdentityCheck(
            tax_id=tax_id,
            credit_score=synthesize_credit_score(tax_id),
            source="synthesized",
            record=record,
        )


def missing_fields(application: Application) -> List[str]:
    return [field for field in REQUIRED_FIELDS if getattr(application, field) in (None, "")]


def format_missing_fields(fields: List[str]) -> str:
    return ", ".join(FIELD_LABELS.get(f, f) for f in fields)


def backfill_from_record(application: Application, record: Optional[IdentityRecord]) -> Dict[str, Any]:
    """Fill gaps from the matched identity record; known values are never overwritten."""
    if record is None:
        return {}
    patch = {}
    for source, target in BACKFILL_FIELDS.items():
        value = getattr(record, source)
        if value is not None and getattr(application, target) in (None, ""):
            patch[target] = value
    return patch


def _collect_field(field: str, text: str, application: Application, catalog: LoanCatalog) -> Dict[str, Any]:
    if field == "loan_type":
        loan_type = extractors.extract_loan_type(text, catalog)
        return {"loan_type": loan_type.id, "loan_type_name": loan_type.name} if loan_type else {}

    if field == "requested_amount":
        loan_type = catalog.get(application.loan_type)
        amount = extractors.extract_amount(text)
        if amount is None or loan_type is None:
            return {}
        if not loan_type.min_amount <= amount <= loan_type.max_amount:
            return {}
        return {"requested_amount": amount}

    if field == "tenure_months":
        loan_type = catalog.get(application.loan_type)
        tenure = extractors.extract_tenure(text)
        if tenure is None or loan_type is None:
            return {}
        return {"tenure_months": snap_tenure(tenure, loan_type.tenure_months)}

    simple = {
        "full_name": extractors.extract_name,
        "email": extractors.extract_email,
        "phone": extractors.extract_phone,
        "employment_type": extractors.extract_employment_type,
        "employer": extractors.extract_employer,
        "monthly_salary": extractors.extract_salary,
    }
    extractor = simple.get(field)
    if extractor is None:
        return {}
    value = extractor(text)
    return {field: value} if value is not None else {}


def _amount_out_of_bounds(text: str, application: Application, catalog: LoanCatalog) -> Optional[str]:
    loan_type = catalog.get(application.loan_type)
    amount = extractors.extract_amount(text)
    if amount is None or loan_type is None:
        return None
    return amount_bound_message(amount, loan_type)


def _ready_or_missing(application: Application, patch: Dict[str, Any], verified_banner: str) -> Transition:
    candidate = application.model_copy(update=patch)
    missing = missing_fields(candidate)

    if not missing:
        return Transition(
            next_stage=Stage.UNDERWRITING,
            patch=patch,
            reply=(
                f"{verified_banner}"
                "All your information has been verified. I'm now processing your loan application..."
            ),
        )

    return Transition(
        next_stage=Stage.VERIFICATION,
        patch=patch,
        reply=(
            f"{verified_banner}"
            f"However, we still need: {format_missing_fields(missing)}\n\n"
            f"Please provide your **{FIELD_LABELS.get(missing[0], missing[0])}**."
        ),
    )


def handle_verification(
    text: str,
    application: Application,
    catalog: LoanCatalog,
    identity: Optional[IdentityCheck] = None,
) -> Transition:
    # PAN not verified yet: nothing else is accepted in this stage
    if application.credit_score is None:
        tax_id = extractors.extract_tax_id(text)
        if not tax_id or identity is None or identity.tax_id != tax_id:
            return Transition(
                next_stage=Stage.VERIFICATION,
                reply=(
                    "Please enter a valid **PAN number** (e.g., ABCDE1234F).\n\n"
                    "This is required for KYC verification."
                ),
            )

        patch: Dict[str, Any] = {
            "tax_id": tax_id,
            "credit_score": identity.credit_score,
            "credit_score_source": identity.source,
            "identity_verified": True,
        }
        patch.update(backfill_from_record(application, identity.record))
        banner = (
            "✅ **KYC Verification Successful!**\n\n"
            f"• PAN: {tax_id}\n"
            f"• Credit Score: {identity.credit_score}\n"
            "• Status: Verified\n\n"
        )
        return _ready_or_missing(application, patch, banner)

    # verified, but an earlier field is still empty
    missing = missing_fields(application)
    if not missing:
        return _ready_or_missing(application, {}, "")

    if missing[0] == "requested_amount":
        bound = _amount_out_of_bounds(text, application, catalog)
        if bound:
            return Transition(next_stage=Stage.VERIFICATION, reply=bound)

    patch = _collect_field(missing[0], text, application, catalog)
    if not patch:
        return Transition(
            next_stage=Stage.VERIFICATION,
            reply=(
                f"We still need: {format_missing_fields(missing)}\n\n"
                f"Please provide your **{FIELD_LABELS.get(missing[0], missing[0])}**."
            ),
        )
    return _ready_or_missing(application, patch, "Thanks, noted.\n\n")
