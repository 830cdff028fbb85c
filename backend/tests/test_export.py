import io, csv

import pandas as pd

import exports

def _survey_with_submissions(client, hdr):
    sid = client.post("/surveys", json={
        "title": "Export Survey",
        "questions": [
            {"text": "Q1 free", "type": "text"},
            {"text": "Q2 number", "type": "number"},
        ],
    }, headers=hdr).json()["id"]
    d = client.get(f"/surveys/{sid}", headers=hdr).json()
    code = d["survey"]["unique_code"]
    q1, q2 = [q["id"] for q in d["questions"]]
    sub_ids = []
    for text, num in (("first", 1), ("second", 2)):
        r = client.post("/public/submissions", json={
            "survey_code": code, "respondent_email": f"{text}@x.test",
            "answers": [{"question_id": q1, "value": text}, {"question_id": q2, "value": num}],
        })
        assert r.status_code == 200, r.text
        sub_ids.append(r.json()["submission_id"])
    return sid, sub_ids

def test_export_csv_after_submit(client, company):
    sid, _ = _survey_with_submissions(client, company)
    r = client.get(f"/surveys/{sid}/export.csv", headers=company)
    assert r.status_code == 200
    assert "text/csv" in r.headers.get("content-type", "")

    content = r.content.decode("utf-8-sig")
    reader = csv.reader(io.StringIO(content))
    header = next(reader)
    for col in exports.EXPORT_COLUMNS:
        assert col in header
    rows = list(reader)
    assert len(rows) == 4
    assert rows[0][header.index("answer_text")] == "first"

def test_export_xlsx(client, company):
    sid, _ = _survey_with_submissions(client, company)
    r = client.get(f"/surveys/{sid}/export.xlsx", headers=company)
    assert r.status_code == 200
    df = pd.read_excel(io.BytesIO(r.content))
    assert list(df.columns) == exports.EXPORT_COLUMNS
    assert len(df) == 4
    assert sorted(df["answer_number"].dropna().tolist()) == [1.0, 2.0]

def test_submission_pdf(client, company):
    sid, sub_ids = _survey_with_submissions(client, company)
    listed = client.get(f"/surveys/{sid}/submissions", headers=company).json()
    assert [s["id"] for s in listed] == sub_ids
    r = client.get(f"/submissions/{sub_ids[0]}/export.pdf", headers=company)
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")

def test_empty_export_has_header_only(client, company):
    sid = client.post("/surveys", json={"title": "Nobody answered"}, headers=company).json()["id"]
    content = client.get(f"/surveys/{sid}/export.csv", headers=company).content.decode("utf-8-sig")
    assert content.strip() == ",".join(exports.EXPORT_COLUMNS)

def test_pdf_handles_long_answers():
    pdf = exports.submission_pdf("Long", None, None, [
        {"question": "Tell us everything", "answer_text": "word " * 3000, "answer_number": None},
        {"question": "Score", "answer_text": None, "answer_number": 7.0},
    ])
    assert pdf.startswith(b"%PDF")
