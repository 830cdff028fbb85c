# Response exports: CSV / Excel via pandas, single-submission PDF via reportlab
from __future__ import annotations
import io
from typing import Iterable, Optional

import pandas as pd
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

EXPORT_COLUMNS = [
    "submission_id", "submitted_at", "respondent_email", "run_id",
    "question_order", "question", "answer_text", "answer_number",
]

PAGE_W, PAGE_H = A4
MARGIN = 48
CONTENT_W = PAGE_W - 2 * MARGIN
TITLE_FONT = "Helvetica-Bold"
BODY_FONT = "Helvetica"
LEADING = 14


def submissions_frame(rows: Iterable[dict]) -> pd.DataFrame:
    """One row per answer, sorted by submission then question order."""
    df = pd.DataFrame(list(rows), columns=EXPORT_COLUMNS)
    if not df.empty:
        df = df.sort_values(["submission_id", "question_order"], kind="stable")
    return df


def to_csv_bytes(df: pd.DataFrame) -> bytes:
    # BOM so spreadsheet apps pick up UTF-8
    return df.to_csv(index=False).encode("utf-8-sig")


def to_xlsx_bytes(df: pd.DataFrame, sheet_name: str = "Responses") -> bytes:
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=sheet_name)
    return buf.getvalue()


def _draw_wrapped(c, text, x, y, font=BODY_FONT, size=10.5):
    lines = simpleSplit(text, font, size, CONTENT_W) or [""]
    c.setFont(font, size)
    for line in lines:
        if y < MARGIN:
            c.showPage()
            c.setFont(font, size)
            y = PAGE_H - MARGIN
        c.drawString(x, y, line)
        y -= LEADING
    return y


def submission_pdf(title: str, submitted_at: Optional[str], respondent: Optional[str],
                   answers: list[dict]) -> bytes:
    """
    Render one submission as a PDF document.

    Args:
        title (str): Survey title.
        submitted_at (str|None): Submission timestamp as text.
        respondent (str|None): Respondent e-mail.
        answers (list[dict]): [{question, answer_text, answer_number}] in question order.

    Returns:
        bytes: PDF content.
    """
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(title)
    y = PAGE_H - MARGIN
    y = _draw_wrapped(c, title, MARGIN, y, font=TITLE_FONT, size=16)
    meta = " | ".join(p for p in (respondent, submitted_at) if p)
    if meta:
        y = _draw_wrapped(c, meta, MARGIN, y, size=9)
    y -= LEADING

    for i, a in enumerate(answers, start=1):
        y = _draw_wrapped(c, f"{i}. {a.get('question') or ''}", MARGIN, y, font=TITLE_FONT, size=11)
        value = a.get("answer_text")
        if value in (None, "") and a.get("answer_number") is not None:
            value = str(a["answer_number"])
        y = _draw_wrapped(c, value or "-", MARGIN + 12, y)
        y -= LEADING / 2

    c.save()
    return buf.getvalue()
