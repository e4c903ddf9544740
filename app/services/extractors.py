# app/services/extractors.py
"""Free-text field extraction.

Every extractor takes the raw chat text and returns the parsed value, or
``None`` when nothing usable was found. They never raise on bad input.
"""
import re
from typing import Iterable, Iterator, Optional

from app.models.domain_models import EmploymentType
from app.services.mock_data_service import LoanType

AMOUNT_PATTERN = re.compile(
    r"(?:rs\.?|₹|inr)?\s*(\d+(?:,\d+)*(?:\.\d+)?)\s*(lakhs?|lacs?|crores?|cr|k)?\b",
    re.IGNORECASE,
)
YEARS_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(?:years?|yrs?)\b", re.IGNORECASE)
MONTHS_PATTERN = re.compile(r"(\d+)\s*(?:months?|mos?)\b", re.IGNORECASE)
BARE_NUMBER_PATTERN = re.compile(r"\b(\d+)\b")
EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_PATTERN = re.compile(r"(?<!\d)[6-9]\d{9}(?!\d)")
PAN_PATTERN = re.compile(r"\b[A-Z]{5}[0-9]{4}[A-Z]\b", re.IGNORECASE)
NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z .'\-]*$")

SELF_EMPLOYED_PATTERN = re.compile(
    r"\b(self[\s-]?employed|self|business|own|freelanc\w*|entrepreneur|proprietor)\b",
    re.IGNORECASE,
)
SALARIED_PATTERN = re.compile(
    r"\b(salaried|salary|employed|employee|job|service|work(?:ing)?)\b", re.IGNORECASE
)
NAME_PREFIX_PATTERN = re.compile(
    r"^(?:my name is|my full name is|i am|i'm|this is|name is|name:)\s*", re.IGNORECASE
)

UNIT_MULTIPLIERS = {
    "lakh": 100_000,
    "lakhs": 100_000,
    "lac": 100_000,
    "lacs": 100_000,
    "crore": 10_000_000,
    "crores": 10_000_000,
    "cr": 10_000_000,
    "k": 1_000,
}

MIN_PLAUSIBLE_SALARY = 5_000
MAX_PLAUSIBLE_SALARY = 10_000_000

# bare numbers up to this are read as years, above it as months
BARE_TENURE_YEARS_LIMIT = 30


def extract_loan_type(text: str, loan_types: Iterable[LoanType]) -> Optional[LoanType]:
    lowered = text.lower()
    for loan_type in loan_types:
        for keyword in loan_type.keywords:
            if re.search(rf"\b{re.escape(keyword.lower())}\b", lowered):
                return loan_type
    return None


def _amounts(text: str) -> Iterator[int]:
    """Every positive amount in the text, in order of appearance."""
    for match in AMOUNT_PATTERN.finditer(text):
        digits = match.group(1).replace(",", "")
        try:
            amount = float(digits)
        except ValueError:
            continue
        unit = (match.group(2) or "").lower()
        amount *= UNIT_MULTIPLIERS.get(unit, 1)
        value = int(round(amount))
        if value > 0:
            yield value


def extract_amount(text: str) -> Optional[int]:
    return next(_amounts(text), None)


def extract_tenure(text: str) -> Optional[int]:
    """Tenure in months."""
    years = YEARS_PATTERN.search(text)
    if years:
        months = int(round(float(years.group(1)) * 12))
        return months or None

    months = MONTHS_PATTERN.search(text)
    if months:
        return int(months.group(1)) or None

    bare = BARE_NUMBER_PATTERN.search(text)
    if bare:
        num = int(bare.group(1))
        if num <= 0:
            return None
        return num * 12 if num <= BARE_TENURE_YEARS_LIMIT else num

    return None


def extract_name(text: str) -> Optional[str]:
    candidate = NAME_PREFIX_PATTERN.sub("", " ".join(text.split())).strip()
    if not NAME_PATTERN.match(candidate):
        return None
    if sum(ch.isalpha() for ch in candidate) < 2:
        return None
    return candidate


def extract_email(text: str) -> Optional[str]:
    match = EMAIL_PATTERN.search(text)
    return match.group(0) if match else None


def extract_phone(text: str) -> Optional[str]:
    compact = re.sub(r"[\s\-()]", "", text)
    if compact.startswith("+91"):
        compact = compact[3:]
    match = PHONE_PATTERN.search(compact)
    return match.group(0) if match else None


def extract_employment_type(text: str) -> Optional[EmploymentType]:
    # "self-employed" also contains "employed", so check it first
    if SELF_EMPLOYED_PATTERN.search(text):
        return EmploymentType.SELF_EMPLOYED
    if SALARIED_PATTERN.search(text):
        return EmploymentType.SALARIED
    return None


def extract_employer(text: str) -> Optional[str]:
    employer = text.strip()
    return employer or None


def extract_salary(text: str) -> Optional[int]:
    # skip counts like "2 jobs" that come before the actual figure
    for amount in _amounts(text):
        if MIN_PLAUSIBLE_SALARY <= amount <= MAX_PLAUSIBLE_SALARY:
            return amount
    return None


def extract_tax_id(text: str) -> Optional[str]:
    match = PAN_PATTERN.search(text)
    return match.group(0).upper() if match else None
