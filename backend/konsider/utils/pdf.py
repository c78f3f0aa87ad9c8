"""Render a software review as a one-page A4 PDF."""

from __future__ import annotations

import textwrap
from datetime import datetime
from io import BytesIO
from typing import Mapping

from reportlab.lib import colors
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from ..models import REVIEW_OPTION_FIELDS, ReviewOptions

TITLE = "BITS Application Security Review"

CRITERIA_LABELS = {
    "is_supported": "Still supported by developer",
    "is_current_version": "Current version is requested",
    "is_reputation_good": "Developer reputation is good",
    "is_installation_from_developer": "Installation package received from developer/vendor",
    "is_local_admin_required": "Local administrator not required for daily use",
    "is_connected_to_brockport_cloud": "Doesn't connect to SUNY Brockport cloud accounts",
    "is_connected_to_cloud_services_or_client": (
        "Doesn't connect to any other cloud services or serve as a client for cloud services"
    ),
    "is_security_or_optimization_software": "Isn't computer security software or optimization software",
    "is_supported_by_current_os": "Supports the current operating systems deployed on campus",
}

# ZapfDingbats "4" is a check mark and "8" a heavy cross
_GLYPHS = {
    ReviewOptions.TRUE: ("4", "ZapfDingbats", colors.green),
    ReviewOptions.FALSE: ("8", "ZapfDingbats", colors.red),
    ReviewOptions.NOT_SURE: ("?", "Helvetica-Bold", HexColor("#050505")),
}

PAGE_WIDTH, PAGE_HEIGHT = A4
PADDING = 15 * mm
LINE_HEIGHT = 7 * mm
NOTES_WIDTH = 80


def wrap_notes(text: str, width: int = NOTES_WIDTH) -> list[str]:
    """Split notes into lines of at most `width` characters on word boundaries."""
    return textwrap.wrap(text or "", width=width, break_long_words=False, break_on_hyphens=False)


class _Writer:
    """Top-down line cursor over a reportlab canvas."""

    def __init__(self, pdf: canvas.Canvas):
        self.pdf = pdf
        self.y = PAGE_HEIGHT - 20 * mm - PADDING

    def line(self, text: str, font: str = "Helvetica", size: float = 11) -> None:
        self._ensure_room()
        self.pdf.setFont(font, size)
        self.pdf.drawString(PADDING, self.y, text)
        self.y -= LINE_HEIGHT

    def blank(self) -> None:
        self.y -= LINE_HEIGHT

    def criterion(self, answer: ReviewOptions, label: str) -> None:
        self._ensure_room()
        glyph, font, color = _GLYPHS[ReviewOptions(answer)]
        self.pdf.setFillColor(color)
        self.pdf.setFont(font, 13)
        self.pdf.drawString(PADDING, self.y, glyph)
        self.pdf.setFillColor(colors.black)
        self.pdf.setFont("Helvetica", 11)
        self.pdf.drawString(PADDING + 6 * mm, self.y, f"| {label}")
        self.y -= LINE_HEIGHT

    def _ensure_room(self) -> None:
        if self.y < PADDING:
            self.pdf.showPage()
            self.y = PAGE_HEIGHT - PADDING


def render_review_pdf(
    *,
    software_name: str,
    td_request_id: str,
    reviewed_at: datetime,
    reviewer_name: str,
    answers: Mapping[str, ReviewOptions],
    review_notes: str,
) -> bytes:
    """Return the PDF bytes for a review.

    `answers` maps each name in `REVIEW_OPTION_FIELDS` to its answer; the
    criteria are always printed in that order.
    """
    buf = BytesIO()
    pdf = canvas.Canvas(buf, pagesize=A4)
    pdf.setTitle(software_name)
    pdf.setAuthor(reviewer_name)

    out = _Writer(pdf)
    out.line(TITLE, font="Helvetica-Bold", size=16)
    out.line(software_name)
    out.line(f"Request #{td_request_id}")
    out.line(f"Date: {reviewed_at.strftime('%m/%d/%Y')}")
    out.line(f"Reviewer Name: {reviewer_name}")
    out.blank()

    out.line("Installation Criteria", font="Helvetica-Bold", size=14)
    for field in REVIEW_OPTION_FIELDS:
        out.criterion(answers[field], CRITERIA_LABELS[field])
    out.blank()

    out.line("Notes", font="Helvetica-Bold", size=14)
    for text in wrap_notes(review_notes):
        out.line(text)

    pdf.showPage()
    pdf.save()
    return buf.getvalue()
