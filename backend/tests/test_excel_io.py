import io

import pytest
from openpyxl import Workbook, load_workbook

from excel_io import COL_OPTIONS, COL_REQUIRED, COL_TEXT, COL_TYPE, ImportFormatError, build_import_template, parse_import

def _workbook(rows, title="Team pulse", description="Quarterly check-in"):
    wb = Workbook()
    ws = wb.active
    ws["B1"], ws["B2"] = title, description
    for col, name in enumerate([COL_TEXT, COL_TYPE, COL_OPTIONS, COL_REQUIRED], start=1):
        ws.cell(row=4, column=col, value=name)
    for r, row in enumerate(rows, start=5):
        for c, value in enumerate(row, start=1):
            ws.cell(row=r, column=c, value=value)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()

def test_template_has_both_sheets():
    wb = load_workbook(io.BytesIO(build_import_template()))
    assert wb.sheetnames == ["Template", "Instructions"]
    assert wb["Template"].cell(row=4, column=1).value == COL_TEXT

def test_template_parses_back_into_examples():
    parsed = parse_import(build_import_template())
    assert parsed["title"] == "Annual satisfaction survey"
    types = [i["type"] for i in parsed["items"]]
    assert types == ["text", "choice", "multi_choice", "rating", "boolean", "number"]
    assert parsed["items"][0]["required"] is False
    assert parsed["items"][1]["options"] == ["Daily", "Weekly", "Monthly", "Rarely"]

def test_rows_are_cleaned():
    parsed = parse_import(_workbook([
        ["How was your week?", "text", "ignored, options", 1],
        ["", "choice", "a, b", 1],
        ["Pick one", "CHOICE", "red,  green ,", "1"],
        ["Odd type", "slider", None, None],
    ]))
    assert parsed["title"] == "Team pulse" and parsed["description"] == "Quarterly check-in"
    items = parsed["items"]
    assert len(items) == 3
    assert items[0] == {"text": "How was your week?", "type": "text", "required": True, "options": []}
    assert items[1]["type"] == "choice" and items[1]["options"] == ["red", "green"] and items[1]["required"] is True
    assert items[2]["type"] == "text" and items[2]["required"] is False

def test_default_title():
    parsed = parse_import(_workbook([["Q", "text", None, 1]], title=None, description=None))
    assert parsed["title"] == "Imported survey"
    assert parsed["description"] == ""

def test_no_questions():
    with pytest.raises(ImportFormatError):
        parse_import(_workbook([["", "text", None, 1]]))

def test_not_a_workbook():
    with pytest.raises(ImportFormatError):
        parse_import(b"definitely not xlsx")
