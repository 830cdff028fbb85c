# Excel import template and parser for bulk survey creation
from __future__ import annotations
import io
import logging
import zipfile

import pandas as pd
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.datavalidation import DataValidation

logger = logging.getLogger(__name__)

QUESTION_TYPES = ["text", "choice", "multi_choice", "rating", "boolean", "numeric"]
# spreadsheet type name -> stored question_type
_TYPE_ALIASES = {"numeric": "number"}
CHOICE_TYPES = {"choice", "multi_choice"}

COL_TEXT = "Question text"
COL_TYPE = "Question type"
COL_OPTIONS = "Options (comma separated)"
COL_REQUIRED = "Required (1/0)"
HEADER_ROW = 4            # 1-based row holding the column headers
DEFAULT_TITLE = "Imported survey"

_EXAMPLES = [
    ["What should we improve in our company?", "text", "", 0],
    ["How often do you use our services?", "choice", "Daily, Weekly, Monthly, Rarely", 1],
    ["Which product categories interest you?", "multi_choice", "Electronics, Clothing, Food, Home", 1],
    ["Rate the cleanliness of our office", "rating", "", 1],
    ["Would you recommend us to friends?", "boolean", "", 1],
    ["How many years have you worked in your field?", "numeric", "", 0],
]

_INSTRUCTIONS = [
    ("text", "Free text answer", "Leave empty"),
    ("choice", "Single choice", "Option 1, Option 2, Option 3"),
    ("multi_choice", "Multiple choice", "Option 1, Option 2, Option 3"),
    ("rating", "Rating scale (1-5)", "Leave empty"),
    ("boolean", "Yes / No question", "Leave empty"),
    ("numeric", "Digits only", "Leave empty"),
]


class ImportFormatError(ValueError):
    """The uploaded workbook does not follow the import template."""


def build_import_template() -> bytes:
    """Return an .xlsx template with example rows and an instructions sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Template"
    bold = Font(bold=True)
    placeholder = Font(italic=True, color="808080")
    header_fill = PatternFill("solid", fgColor="4F81BD")
    header_font = Font(bold=True, color="FFFFFF")

    ws["A1"], ws["B1"] = "Survey title:", "Annual satisfaction survey"
    ws["A2"], ws["B2"] = "Description:", "Short description for respondents"
    for cell in ("A1", "A2"):
        ws[cell].font = bold
    for cell in ("B1", "B2"):
        ws[cell].font = placeholder

    for col, title in enumerate([COL_TEXT, COL_TYPE, COL_OPTIONS, COL_REQUIRED], start=1):
        c = ws.cell(row=HEADER_ROW, column=col, value=title)
        c.font, c.fill = header_font, header_fill
    for letter, width in zip("ABCD", (60, 25, 45, 15)):
        ws.column_dimensions[letter].width = width

    types_dv = DataValidation(type="list", formula1='"%s"' % ",".join(QUESTION_TYPES), allow_blank=True)
    required_dv = DataValidation(type="list", formula1='"1,0"', allow_blank=True)
    ws.add_data_validation(types_dv)
    ws.add_data_validation(required_dv)
    types_dv.add("B5:B999")
    required_dv.add("D5:D999")

    for row in _EXAMPLES:
        ws.append(row)
        for c in ws[ws.max_row]:
            c.font = placeholder

    help_ws = wb.create_sheet("Instructions")
    help_ws.append(["Question type", "Description", "How to fill options"])
    for c in help_ws[1]:
        c.font, c.fill = header_font, header_fill
    for row in _INSTRUCTIONS:
        help_ws.append(list(row))

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _is_required(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and not pd.isna(value):
        return int(value) == 1
    return str(value).strip() == "1"


def _cell_text(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def _question_table(raw: pd.DataFrame) -> pd.DataFrame:
    """Slice the rows below the header row (the one holding COL_TEXT)."""
    for idx, row in raw.iterrows():
        if COL_TEXT in [_cell_text(v) for v in row.tolist()]:
            header = [_cell_text(v) for v in row.tolist()]
            body = raw.loc[idx + 1:].copy()
            body.columns = header
            return body
    raise ImportFormatError(f'Column "{COL_TEXT}" not found (expected on row {HEADER_ROW})')


def parse_import(data: bytes) -> dict:
    """
    Parse a filled-in template.

    Returns:
        dict: {"title", "description", "items": [{text, type, required, options}]}

    Raises:
        ImportFormatError: If the file is unreadable or contains no questions.
    """
    try:
        wb = load_workbook(io.BytesIO(data), data_only=True)
        ws = wb.worksheets[0]
        title = _cell_text(ws["B1"].value) or DEFAULT_TITLE
        description = _cell_text(ws["B2"].value)
        wb.close()
        raw = pd.read_excel(io.BytesIO(data), sheet_name=0, header=None, dtype=object)
    except (OSError, ValueError, KeyError, IndexError,
            zipfile.BadZipFile, InvalidFileException) as exc:
        raise ImportFormatError(f"Cannot read workbook: {exc}") from exc

    df = _question_table(raw)
    if df.empty:
        raise ImportFormatError(f"No question rows found (table must start on row {HEADER_ROW + 1})")

    items = []
    for _, row in df.iterrows():
        text = _cell_text(row.get(COL_TEXT))
        if not text:
            continue
        raw_type = (_cell_text(row.get(COL_TYPE)) or "text").lower()
        qtype = raw_type if raw_type in QUESTION_TYPES else "text"
        options_raw = _cell_text(row.get(COL_OPTIONS))
        options = [o.strip() for o in options_raw.split(",") if o.strip()] \
            if qtype in CHOICE_TYPES and options_raw else []
        items.append({
            "text": text,
            "type": _TYPE_ALIASES.get(qtype, qtype),
            "required": _is_required(row.get(COL_REQUIRED)),
            "options": options,
        })

    if not items:
        raise ImportFormatError(f'No valid questions found; check that "{COL_TEXT}" is filled in')
    logger.info("parsed %d questions from workbook", len(items))
    return {"title": title, "description": description, "items": items}
