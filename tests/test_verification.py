import asyncio
import logging

from app.agents.verification_agent import (
    IdentityCheck,
    IdentityRecord,
    IdentityVerifier,
    backfill_from_record,
    format_missing_fields,
    handle_verification,
    missing_fields,
    synthesize_credit_score,
)
from app.models.domain_models import Application, ConversationStage as Stage, EmploymentType
from app.services.mock_data_service import load_loan_catalog


class BrokenDirectory:
    async def lookup(self, tax_id):
        raise ConnectionError("bureau down")


class SlowDirectory:
    async def lookup(self, tax_id):
        await asyncio.sleep(1)
        return None


def test_known_pan_uses_bureau_score():
    check = asyncio.run(IdentityVerifier().verify("ABCDE1234F"))
    assert check.source == "bureau"
    assert check.credit_score == 780
    assert check.record.name == "Rahul Sharma"


def test_unknown_pan_synthesizes_a_stable_score(caplog):
    with caplog.at_level(logging.INFO, logger="app.agents.verification_agent"):
        check = asyncio.run(IdentityVerifier().verify("QWERT1234Y"))

    assert check.source == "synthesized"
    assert check.record is None
    assert 550 <= check.credit_score < 800
    assert check.credit_score == synthesize_credit_score("QWERT1234Y")
    assert any(r.levelno == logging.INFO and "no identity record" in r.getMessage() for r in caplog.records)


def test_out_of_range_score_is_replaced_but_record_kept(caplog):
    with caplog.at_level(logging.INFO, logger="app.agents.verification_agent"):
        check = asyncio.run(IdentityVerifier().verify("ZZZZZ9999Z"))

    assert check.source == "synthesized"
    assert 550 <= check.credit_score < 800
    assert check.record is not None
    assert any(r.levelno == logging.WARNING for r in caplog.records)


def test_unavailable_directory_falls_back(caplog):
    with caplog.at_level(logging.INFO, logger="app.agents.verification_agent"):
        check = asyncio.run(IdentityVerifier(directory=BrokenDirectory()).verify("ABCDE1234F"))

    assert check.source == "synthesized"
    assert any(r.levelno == logging.WARNING and "unavailable" in r.getMessage() for r in caplog.records)


def test_slow_directory_times_out():
    check = asyncio.run(IdentityVerifier(directory=SlowDirectory(), timeout=0.01).verify("ABCDE1234F"))
    assert check.source == "synthesized"


def test_backfill_never_overwrites():
    record = IdentityRecord(
        pan="ABCDE1234F",
        name="Rahul Sharma",
        email="rahul.sharma@example.com",
        salary=85_000,
        employer="Infosys Ltd",
        employment_type=EmploymentType.SALARIED,
    )
    application = Application(full_name="R. Sharma", monthly_salary=90_000)
    patch = backfill_from_record(application, record)

    assert "full_name" not in patch
    assert "monthly_salary" not in patch
    assert patch["email"] == "rahul.sharma@example.com"
    assert patch["employer"] == "Infosys Ltd"
    assert backfill_from_record(application, None) == {}


def test_missing_fields_in_order():
    application = Application(loan_type="personal", requested_amount=100_000, tenure_months=12)
    missing = missing_fields(application)
    assert missing[0] == "full_name"
    assert missing[-1] == "credit_score"
    assert "Full Name" in format_missing_fields(missing)


def test_verified_session_collects_missing_fields_one_at_a_time():
    catalog = load_loan_catalog()
    application = Application(
        loan_type="personal",
        loan_type_name="Personal Loan",
        requested_amount=500_000,
        tenure_months=36,
        full_name="Priya Nair",
        email="priya.nair@example.com",
        employment_type=EmploymentType.SELF_EMPLOYED,
        employer="Nair Textiles",
        monthly_salary=42_000,
        tax_id="PQRST5678K",
        credit_score=705,
    )

    asked = handle_verification("hello", application, catalog)
    assert asked.next_stage == Stage.VERIFICATION
    assert asked.patch == {}
    assert "Phone Number" in asked.reply

    answered = handle_verification("9123456780", application, catalog)
    assert answered.next_stage == Stage.UNDERWRITING
    assert answered.patch == {"phone": "9123456780"}


def test_pan_match_backfills_from_record():
    catalog = load_loan_catalog()
    application = Application(loan_type="personal", requested_amount=500_000, tenure_months=36)
    record = IdentityRecord(
        pan="ABCDE1234F",
        name="Rahul Sharma",
        email="rahul.sharma@example.com",
        phone="9876543210",
        salary=85_000,
        employer="Infosys Ltd",
        employment_type=EmploymentType.SALARIED,
        credit_score=780,
    )
    identity = IdentityCheck(tax_id="ABCDE1234F", credit_score=780, source="bureau", record=record)

    step = handle_verification("ABCDE1234F", application, catalog, identity)
    assert step.next_stage == Stage.UNDERWRITING
    assert step.patch["full_name"] == "Rahul Sharma"
    assert step.patch["monthly_salary"] == 85_000


def test_out_of_range_amount_after_kyc_names_the_bound():
    catalog = load_loan_catalog()
    application = Application(
        loan_type="personal",
        loan_type_name="Personal Loan",
        tenure_months=36,
        full_name="Rahul Sharma",
        email="rahul.sharma@example.com",
        phone="9876543210",
        employment_type=EmploymentType.SALARIED,
        employer="Infosys Ltd",
        monthly_salary=85_000,
        tax_id="ABCDE1234F",
        credit_score=780,
    )

    low = handle_verification("10000", application, catalog)
    assert low.next_stage == Stage.VERIFICATION
    assert low.patch == {}
    assert "minimum amount for Personal Loan is ₹50,000" in low.reply

    high = handle_verification("5 crore", application, catalog)
    assert "maximum amount for Personal Loan is ₹25,00,000" in high.reply

    ok = handle_verification("5 lakhs", application, catalog)
    assert ok.next_stage == Stage.UNDERWRITING
    assert ok.patch == {"requested_amount": 500_000}
