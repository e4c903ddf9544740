# app/agents/sanction_agent.py
from app.agents.underwriting_agent import UnderwritingDecision, calculate_installment
from app.models.domain_models import Application, DecisionOutcome
from app.services.utils import format_inr


def generate_decision_summary(application: Application, result: UnderwritingDecision) -> str:
    if result.approved:
        tenure = application.tenure_months
        emi = calculate_installment(result.approved_amount, result.interest_rate, tenure)
        total_payable = emi * tenure
        total_interest = total_payable - result.approved_amount
        return (
            "📊 **Loan Decision Summary**\n\n"
            "**Status:** ✅ APPROVED\n\n"
            f"**Applicant:** {application.full_name}\n"
            f"**Loan Type:** {application.loan_type_name}\n\n"
            f"**Approved Amount:** {format_inr(result.approved_amount)}\n"
            f"**Interest Rate:** {result.interest_rate}% p.a.\n"
            f"**Tenure:** {tenure} months\n"
            f"**Monthly EMI:** {format_inr(emi)}\n\n"
            f"**Total Interest:** {format_inr(total_interest)}\n"
            f"**Total Payable:** {format_inr(total_payable)}\n\n"
            f"**Risk Score:** {result.risk_score}/100\n\n"
            f"{result.reason}"
        )

    return (
        "📊 **Loan Decision Summary**\n\n"
        "**Status:** ❌ NOT APPROVED\n\n"
        f"**Applicant:** {application.full_name}\n"
        f"**Loan Type:** {application.loan_type_name}\n"
        f"**Requested Amount:** {format_inr(application.requested_amount or 0)}\n\n"
        f"**Reason:** {result.reason}\n\n"
        "**Your Profile:**\n"
        f"• Monthly Income: {format_inr(application.monthly_salary or 0)}\n"
        f"• Credit Score: {application.credit_score}"
    )


def generate_sanction_message(application: Application, bank_name: str) -> str:
    """Reply once the sanction letter is ready. ``application`` carries the decision."""
    return (
        f"🎉 **Congratulations, {application.full_name}!**\n\n"
        f"Your **{application.loan_type_name}** has been sanctioned!\n\n"
        "**Loan Details:**\n"
        f"• Approved Amount: {format_inr(application.approved_amount)}\n"
        f"• Interest Rate: {application.interest_rate}% p.a.\n"
        f"• Tenure: {application.tenure_months} months\n"
        f"• Monthly EMI: {format_inr(application.monthly_installment)}\n\n"
        "📄 Your sanction letter has been generated. Click below to download.\n\n"
        "Next steps:\n"
        "1. Review your sanction letter\n"
        "2. Complete e-KYC verification\n"
        "3. Receive funds in your account within 24 hours\n\n"
        f"Thank you for choosing **{bank_name}**!"
    )


def generate_rejection_response(application: Application, reason: str, bank_name: str) -> str:
    return (
        f"We regret to inform you that your **{application.loan_type_name}** application "
        f"for {format_inr(application.requested_amount or 0)} has not been approved at this time.\n\n"
        f"**Reason:** {reason}\n\n"
        "**Suggestions to improve your eligibility:**\n"
        "• Maintain a credit score above 650\n"
        "• Ensure your monthly income is at least ₹25,000\n"
        "• Pay off existing loans to reduce debt burden\n"
        "• Consider applying for a smaller loan amount\n\n"
        "You may reapply after 3 months or contact our customer support for guidance.\n\n"
        f'Thank you for considering **{bank_name}**. Type "new application" to start again.'
    )


def sanction_letter_fields(application: Application) -> dict:
    """
    Inputs for the sanction letter. Only valid for an approved application.
    """
    if application.decision != DecisionOutcome.APPROVED:
        raise ValueError("sanction letters are only issued for approved applications")
    if not (application.approved_amount and application.interest_rate and application.tenure_months):
        raise ValueError("approved application is missing amount, rate or tenure")

    return {
        "application_id": application.application_id,
        "applicant_name": application.full_name or "Valued Customer",
        "loan_type": application.loan_type_name or "Personal Loan",
        "approved_amount": application.approved_amount,
        "interest_rate": application.interest_rate,
        "tenure_months": application.tenure_months,
        "monthly_installment": application.monthly_installment,
    }
