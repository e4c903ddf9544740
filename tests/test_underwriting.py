import math

import pytest

from app.agents.sales_agent import snap_tenure
from app.agents.underwriting_agent import (
    RULES,
    calculate_installment,
    calculate_risk_score,
    decide,
    decision_patch,
    max_eligible_amount,
)
from app.models.domain_models import Application, DecisionOutcome, EmploymentType
from app.services.mock_data_service import LoanCatalog, load_loan_catalog


FLAT_RATE_CATALOG = LoanCatalog.from_dicts(
    [
        {
            "id": "flat",
            "name": "Flat Rate Loan",
            "keywords": ["flat"],
            "min_amount": 10_000,
            "max_amount": 5_000_000,
            "interest_rate": 12.0,
            "tenure_months": [12, 24, 36],
        }
    ]
)


def make_application(**overrides):
    fields = dict(
        loan_type="personal",
        loan_type_name="Personal Loan",
        requested_amount=500_000,
        tenure_months=36,
        full_name="Rahul Sharma",
        email="rahul.sharma@example.com",
        phone="9876543210",
        employment_type=EmploymentType.SALARIED,
        employer="Infosys Ltd",
        monthly_salary=75_000,
        tax_id="ABCDE1234F",
        credit_score=750,
    )
    fields.update(overrides)
    return Application(**fields)


def expected_installment(principal, annual_rate, months):
    r = annual_rate / 12 / 100
    growth = (1 + r) ** months
    return math.floor(principal * r * growth / (growth - 1) + 0.5)


def test_snap_tenure_picks_nearest_and_first_on_tie():
    assert snap_tenure(20, [12, 24, 36]) == 24
    assert snap_tenure(18, [12, 24, 36]) == 12
    assert snap_tenure(100, [12, 24, 36]) == 36
    assert snap_tenure(7, []) == 7


def test_installment_formula_and_edges():
    assert calculate_installment(100_000, 12.0, 12) == expected_installment(100_000, 12.0, 12)
    assert calculate_installment(120_000, 0, 12) == 10_000
    with pytest.raises(ValueError):
        calculate_installment(100_000, 12.0, 0)


def test_full_approval_scenario():
    application = make_application()
    result = decide(application, load_loan_catalog())

    assert result.decision == DecisionOutcome.APPROVED
    assert result.rule == "full_approval"
    assert result.approved_amount == 500_000
    assert result.interest_rate == 12.5

    patch = decision_patch(result, application.tenure_months)
    assert patch["monthly_installment"] == expected_installment(500_000, 12.5, 36)
    assert patch["approved_amount"] == 500_000


def test_low_salary_is_rejected_without_amount():
    application = make_application(monthly_salary=20_000, credit_score=700)
    result = decide(application, load_loan_catalog())

    assert result.decision == DecisionOutcome.REJECTED
    assert result.rule == "income_floor"
    assert "minimum requirement" in result.reason
    assert result.approved_amount is None

    patch = decision_patch(result, application.tenure_months)
    assert "approved_amount" not in patch
    assert "monthly_installment" not in patch


def test_thresholds_are_inclusive_floors():
    assert decide(make_application(monthly_salary=24_999, credit_score=800)).rule == "income_floor"
    assert decide(make_application(monthly_salary=25_000, credit_score=800)).approved

    assert decide(make_application(credit_score=649)).rule == "credit_floor"
    assert decide(make_application(credit_score=650)).approved


def test_affordability_cap_keeps_installment_within_half_of_salary():
    application = make_application(
        loan_type="flat",
        loan_type_name="Flat Rate Loan",
        monthly_salary=30_000,
        tenure_months=12,
        credit_score=780,
        requested_amount=1_000_000,
    )
    result = decide(application, FLAT_RATE_CATALOG)

    assert result.rule == "affordability_cap"
    assert result.interest_rate == 12.0
    assert result.approved_amount == max_eligible_amount(30_000, 12.0, 12)
    assert result.approved_amount % 10_000 == 0
    assert calculate_installment(result.approved_amount, 12.0, 12) <= 15_000 + 1


def test_installment_ratio_rule_applies_when_cap_is_skipped():
    rules = [rule for rule in RULES if rule.name != "affordability_cap"]
    application = make_application(
        loan_type="flat",
        monthly_salary=30_000,
        tenure_months=12,
        credit_score=780,
        requested_amount=1_000_000,
    )
    result = decide(application, FLAT_RATE_CATALOG, rules=rules)

    assert result.rule == "installment_ratio"
    assert result.approved_amount == math.floor(30_000 * 0.5 * 12 * 0.7)


def test_rate_is_personalised_by_credit_band():
    catalog = load_loan_catalog()
    assert decide(make_application(credit_score=760), catalog).interest_rate == 12.5
    assert decide(make_application(credit_score=720), catalog).interest_rate == 13.0
    assert decide(make_application(credit_score=660), catalog).interest_rate == 13.5


def test_decide_is_idempotent():
    application = make_application(monthly_salary=30_000, requested_amount=2_000_000)
    assert decide(application) == decide(application)


def test_risk_score():
    application = make_application(credit_score=780, monthly_salary=85_000)
    assert calculate_risk_score(application) == 95

    weak = make_application(
        credit_score=600,
        monthly_salary=20_000,
        employment_type=EmploymentType.SELF_EMPLOYED,
        requested_amount=2_000_000,
    )
    # 5 + 5 + 12, loan is more than six years of income
    assert calculate_risk_score(weak) == 22
