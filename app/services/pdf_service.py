# app/services/pdf_service.py
from datetime import datetime, timezone
import os
from pathlib import Path
from typing import Dict
import uuid

from pypdf import PdfReader, PdfWriter
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from app.services.utils import format_inr


def _rupees(amount) -> str:
    # the built-in Helvetica has no rupee glyph
    return format_inr(amount).replace("₹", "Rs. ")


def generate_sanction_letter(output_dir: str, letter: dict, bank_name: str) -> str:
    """
    Render a sanction letter and return its file name (relative to ``output_dir``).

    ``letter`` is the dict produced by ``sanction_letter_fields``.
    """
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    reference_id = uuid.uuid4().hex[:8]
    filename = f"sanction_letter_{letter['application_id']}_{reference_id}.pdf"
    out = out_dir / filename

    c = canvas.Canvas(str(out), pagesize=A4)
    width, height = A4

    # Header
    c.setFont("Helvetica-Bold", 16)
    c.drawString(50, height - 80, f"{bank_name} - Loan Sanction Letter")
    c.setFont("Helvetica", 10)
    issued = datetime.now(timezone.utc).strftime("%d %B %Y")
    c.drawString(50, height - 100, f"Date: {issued}    Ref: {letter['application_id']}-{reference_id}")

    # Applicant & terms
    c.setFont("Helvetica-Bold", 12)
    c.drawString(50, height - 140, f"Dear {letter['applicant_name']},")
    c.setFont("Helvetica", 10)
    c.drawString(
        50,
        height - 160,
        f"We are pleased to inform you that your {letter['loan_type']} has been sanctioned "
        "on the following terms:",
    )
    y = height - 190
    lines = [
        f"Loan Type: {letter['loan_type']}",
        f"Sanctioned Amount: {_rupees(letter['approved_amount'])}",
        f"Interest Rate (% p.a.): {letter['interest_rate']}",
        f"Tenure (months): {letter['tenure_months']}",
        f"Monthly EMI: {_rupees(letter['monthly_installment'])}",
        f"Total Payable: {_rupees(letter['monthly_installment'] * letter['tenure_months'])}",
    ]
    for ln in lines:
        c.drawString(70, y, ln)
        y -= 16

    y -= 10
    c.setFont("Helvetica-Bold", 11)
    c.drawString(50, y, "Terms and conditions")
    y -= 18
    c.setFont("Helvetica", 9)
    terms = [
        "1. This sanction is valid for 30 days from the date of issue.",
        "2. Disbursement is subject to completion of e-KYC and signing of the loan agreement.",
        "3. EMIs are payable monthly by auto-debit from the registered bank account.",
        "4. Prepayment and foreclosure charges apply as per the prevailing schedule of charges.",
    ]
    for term in terms:
        c.drawString(50, y, term)
        y -= 14

    c.setFont("Helvetica-Oblique", 8)
    c.drawString(50, 60, "This is a system generated letter and does not require a signature.")

    c.showPage()
    c.save()

    augment_pdf_with_pypdf(
        str(out),
        {"Title": f"Sanction Letter {letter['application_id']}", "Author": bank_name, "Ref": reference_id},
    )
    return filename


def augment_pdf_with_pypdf(pdf_path: str, metadata: Dict[str, str]) -> str:
    """Stamp document metadata onto ``pdf_path`` in place."""
    target = Path(pdf_path)
    staging = target.with_name(f"{target.stem}_meta{target.suffix}")

    writer = PdfWriter(clone_from=PdfReader(str(target)))
    writer.add_metadata({f"/{key}": str(value) for key, value in metadata.items()})
    with open(staging, "wb") as fh:
        writer.write(fh)
    os.replace(staging, target)
    return str(target)
