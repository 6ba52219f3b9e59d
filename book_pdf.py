"""Render finished chapters into a paginated PDF with fpdf2."""

import datetime
import unicodedata
from typing import List

from fpdf import FPDF

PAGE_FORMAT = "Letter"
MARGIN_MM = 18
BODY_FONT_SIZE = 12
LINE_HEIGHT_MM = 6

_LATIN1_REPLACEMENTS = {
    ord("\u2010"): "-",
    ord("\u2011"): "-",
    ord("\u2012"): "-",
    ord("\u2013"): "-",
    ord("\u2014"): "--",
    ord("\u2015"): "--",
    ord("\u2212"): "-",
    ord("\u2018"): "'",
    ord("\u2019"): "'",
    ord("\u201A"): "'",
    ord("\u201B"): "'",
    ord("\u201C"): '"',
    ord("\u201D"): '"',
    ord("\u201E"): '"',
    ord("\u2026"): "...",
    ord("\u00A0"): " ",
    ord("\u2009"): " ",
    ord("\u202F"): " ",
    ord("\u200B"): "",
    ord("\uFEFF"): "",
}


class PDFExportError(RuntimeError):
    """Raised when the book cannot be rendered."""


def pdf_safe_text(text: str) -> str:
    """Return ``text`` normalised for the Latin-1 core fonts."""
    normalized = unicodedata.normalize("NFKC", text or "")
    normalized = normalized.replace("\t", "    ")
    replaced = normalized.translate(_LATIN1_REPLACEMENTS)
    return replaced.encode("latin-1", "replace").decode("latin-1")


def split_paragraphs(text: str) -> List[str]:
    """Paragraphs separated by blank lines, with hard wraps inside a paragraph joined."""
    paragraphs = []
    for block in text.replace("\r\n", "\n").split("\n\n"):
        cleaned = " ".join(line.strip() for line in block.split("\n") if line.strip())
        if cleaned:
            paragraphs.append(cleaned)
    return paragraphs


def _write_block(pdf: FPDF, height: float, text: str) -> None:
    width = pdf.w - pdf.l_margin - pdf.r_margin
    pdf.set_x(pdf.l_margin)
    pdf.multi_cell(width, height, pdf_safe_text(text) or " ")


def build_book_pdf(title: str, genre: str, chapters: List[str]) -> bytes:
    """Lay out a title page and one section per chapter; return the PDF bytes."""
    pdf = FPDF(orientation="P", unit="mm", format=PAGE_FORMAT)
    pdf.set_auto_page_break(auto=True, margin=MARGIN_MM)
    pdf.set_margins(left=MARGIN_MM, top=MARGIN_MM, right=MARGIN_MM)

    # Title page
    pdf.add_page()
    pdf.set_y(pdf.h / 4)
    pdf.set_font("Times", "B", 32)
    _write_block(pdf, 14, title)
    pdf.ln(6)
    pdf.set_font("Times", "", 18)
    _write_block(pdf, 10, f"A {genre} Novel")
    pdf.set_y(pdf.h - MARGIN_MM - 10)
    pdf.set_font("Times", "", 11)
    _write_block(pdf, 6, f"Generated on {datetime.date.today().isoformat()}")

    for number, chapter_text in enumerate(chapters, 1):
        pdf.add_page()
        pdf.set_font("Times", "B", 18)
        _write_block(pdf, 10, f"Chapter {number}")
        pdf.ln(LINE_HEIGHT_MM)

        pdf.set_font("Times", "", BODY_FONT_SIZE)
        for paragraph in split_paragraphs(chapter_text):
            _write_block(pdf, LINE_HEIGHT_MM, paragraph)
            pdf.ln(LINE_HEIGHT_MM / 2)

    try:
        return bytes(pdf.output())
    except Exception as e:
        raise PDFExportError(f"Unable to export PDF: {e}") from e
