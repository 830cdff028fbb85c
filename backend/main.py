import os, json, math, uuid, secrets, logging
from typing import Optional
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv
from fastapi import FastAPI, Depends, HTTPException, UploadFile, File, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
import pandas as pd

from db import Base, engine, get_db
from models import (Company, SurveyTemplate, QuestionTemplate, SurveyRun, SurveyRecipient,
                    SurveySubmission, SubmissionAnswer, Contact, SystemSetting, MetaPrompt, AIUsageLog, AIModel)
from schemas import *
from security import verify_admin, get_current_company
import ai_service
import distribution
import exports
from ai_service import AIServiceError
from blueprint import calculate_blueprint
from excel_io import build_import_template, parse_import, ImportFormatError
from normalizer import normalize_survey_items
from survey_formulas import (QuestionTimeParams, CapacityParams, BurdenIndexParams,
                             calculate_question_capacity, get_question_composition,
                             calculate_logical_density, calculate_cognitive_burden_index,
                             is_burden_too_high)

load_dotenv()


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the API process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


configure_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

app = FastAPI(title="Survey Builder API")

origins = os.getenv("ORIGINS", "http://localhost:5173").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

ACTIVE_MODEL_SETTING = "active_ai_model"
BURDEN_THRESHOLD = float(os.getenv("BURDEN_THRESHOLD", "0.1"))
RUN_STATUSES_TERMINAL = {"closed"}

# ------------------------
# Helpers
# ------------------------
def _now_utc() -> datetime:
    """Return the current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)

def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt

def _encode_options(options) -> Optional[str]:
    if options in (None, "", [], {}):
        return None
    return json.dumps(options, ensure_ascii=False)

def _decode_options(raw: Optional[str]):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None

def _question_out(q: QuestionTemplate) -> dict:
    return {
        "id": q.id,
        "order_index": q.question_order,
        "text": q.question_text,
        "type": q.question_type,
        "required": bool(q.is_required),
        "options": _decode_options(q.options),
        "section": q.section_title,
    }

def _survey_out(s: SurveyTemplate) -> dict:
    return {
        "id": s.id,
        "title": s.title,
        "description": s.description,
        "unique_code": s.unique_code,
        "is_active": bool(s.is_active),
        "is_ai_generated": bool(s.is_ai_generated),
        "ai_generation_topic": s.ai_generation_topic,
        "thank_you_message": s.thank_you_message,
        "created_at": s.created_at,
    }

def _run_out(r: SurveyRun) -> dict:
    return {
        "id": r.id,
        "survey_template_id": r.survey_template_id,
        "name": r.name,
        "mode": r.mode,
        "status": r.status,
        "target_n": r.target_n,
        "min_n_for_analysis": r.min_n_for_analysis,
        "open_at": r.open_at,
        "close_at": r.close_at,
        "public_token": r.public_token,
        "created_at": r.created_at,
    }

def _recipient_out(r: SurveyRecipient) -> dict:
    return {
        "id": r.id,
        "survey_template_id": r.survey_template_id,
        "run_id": r.run_id,
        "company_name": r.company_name,
        "email": r.email,
        "phone": r.phone,
        "contact_person": r.contact_person,
        "additional_info": r.additional_info,
        "recipient_code": r.recipient_code,
        "sent_at": r.sent_at,
        "sent_via": r.sent_via,
        "opened_at": r.opened_at,
        "submitted_at": r.submitted_at,
    }

def _unique_code(db: Session, column) -> str:
    """Generate a short code not yet present in ``column``."""
    for _ in range(5):
        code = distribution.generate_code()
        if not db.execute(select(column).where(column == code)).first():
            return code
    raise HTTPException(500, "Failed to generate a unique code")

def _get_owned_survey(db: Session, company: Company, survey_id: int) -> SurveyTemplate:
    s = db.get(SurveyTemplate, survey_id)
    if not s or s.company_id != company.id:
        raise HTTPException(404, "Survey not found")
    return s

def _get_owned_run(db: Session, company: Company, run_id: int) -> SurveyRun:
    r = db.get(SurveyRun, run_id)
    if not r or r.company_id != company.id:
        raise HTTPException(404, "Run not found")
    return r

def _get_owned_recipient(db: Session, company: Company, recipient_id: int) -> SurveyRecipient:
    r = db.get(SurveyRecipient, recipient_id)
    if not r or r.company_id != company.id:
        raise HTTPException(404, "Recipient not found")
    return r

def _get_owned_contact(db: Session, company: Company, contact_id: int) -> Contact:
    c = db.get(Contact, contact_id)
    if not c or c.company_id != company.id:
        raise HTTPException(404, "Contact not found")
    return c

def _contact_out(c: Contact) -> dict:
    return {
        "id": c.id, "first_name": c.first_name, "last_name": c.last_name,
        "company_name": c.company_name, "email": c.email, "phone": c.phone,
    }

def _add_questions(db: Session, survey: SurveyTemplate, questions: list[dict]) -> int:
    """Append questions (dicts with text/type/required/options/section) in order; returns count."""
    added = 0
    for pos, q in enumerate(questions):
        text = (q.get("text") or "").strip()
        if not text:
            continue
        order = q.get("order_index")
        db.add(QuestionTemplate(
            survey_template_id=survey.id,
            question_order=order if order is not None else pos,
            question_text=text,
            question_type=q.get("type") or "text",
            is_required=q.get("required", True),
            options=_encode_options(q.get("options")),
            section_title=q.get("section"),
        ))
        added += 1
    return added

def _create_survey(db: Session, company: Company, title: str, description: Optional[str],
                   questions: list[dict], **extra) -> SurveyTemplate:
    title = (title or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    survey = SurveyTemplate(
        company_id=company.id,
        title=title,
        description=(description or "").strip() or None,
        unique_code=_unique_code(db, SurveyTemplate.unique_code),
        **extra,
    )
    db.add(survey)
    db.flush()
    _add_questions(db, survey, questions)
    db.commit()
    logger.info("company %s created survey %s", company.id, survey.id)
    return survey

def _active_model(db: Session) -> str:
    row = db.execute(select(SystemSetting).where(SystemSetting.setting_name == ACTIVE_MODEL_SETTING)).scalar_one_or_none()
    return row.setting_value if row and row.setting_value else ai_service.DEFAULT_MODEL

def _run_is_open(run: SurveyRun) -> bool:
    if run.status != "active":
        return False
    close_at = _as_utc(run.close_at)
    return not (close_at and _now_utc() > close_at)

def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip()) or value == []

def coerce_answer(q: QuestionTemplate, value) -> tuple[Optional[str], Optional[float]]:
    """Validate one answer against its question type.

    Args:
        q (QuestionTemplate): Question being answered.
        value (Any): Raw value from the respondent.

    Returns:
        tuple[str|None, float|None]: (answer_text, answer_number)

    Raises:
        ValueError: If the value does not fit the question type.
    """
    if _is_blank(value):
        return None, None
    qtype = q.question_type
    options = _decode_options(q.options)

    if qtype in ("number", "rating"):
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Question {q.id} expects a number")
        if not math.isfinite(number):
            raise ValueError(f"Question {q.id} expects a number")
        if qtype == "rating":
            scale_max = options.get("scale_max", 5) if isinstance(options, dict) else 5
            if not 1 <= number <= scale_max:
                raise ValueError(f"Question {q.id} expects a rating between 1 and {scale_max}")
        text = str(int(number)) if number.is_integer() else str(number)
        return text, number

    if qtype == "boolean":
        if isinstance(value, bool):
            return ("Yes" if value else "No"), (1.0 if value else 0.0)
        low = str(value).strip().lower()
        if low in ("yes", "true", "1"):
            return "Yes", 1.0
        if low in ("no", "false", "0"):
            return "No", 0.0
        raise ValueError(f"Question {q.id} expects yes or no")

    if qtype in ("choice", "multi_choice"):
        picked = value if isinstance(value, list) else [value]
        if qtype == "choice" and len(picked) > 1:
            raise ValueError(f"Question {q.id} accepts a single option")
        picked = [str(p).strip() for p in picked if not _is_blank(p)]
        if isinstance(options, list) and options:
            unknown = [p for p in picked if p not in options]
            if unknown:
                raise ValueError(f"Question {q.id} has no option(s) {unknown}")
        return ", ".join(picked), None

    text = str(value).strip()
    if qtype == "email" and "@" not in text:
        raise ValueError(f"Question {q.id} expects an e-mail address")
    return text, None


@app.get("/health")
def health():
    """Basic readiness probe.

    Returns:
        dict: {"ok": True}
    """
    return {"ok": True}

# ------------------------
# Companies: registration
# ------------------------
@app.post("/auth/register")
def register_company(payload: CompanyRegister, db: Session = Depends(get_db)):
    """Register a company and issue its API key.

    Returns:
        dict: {"company_id": int, "api_key": str}

    Raises:
        HTTPException: 400 if name/email empty; 409 if the e-mail is already registered.
    """
    name = payload.name.strip()
    email = payload.email.strip().lower()
    if not name or "@" not in email:
        raise HTTPException(400, "Company name and a valid e-mail are required")
    if db.execute(select(Company).where(Company.email == email)).scalar_one_or_none():
        raise HTTPException(409, "E-mail already registered")
    company = Company(name=name, email=email, api_key=secrets.token_hex(24))
    db.add(company)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(409, "E-mail already registered")
    logger.info("registered company %s", company.id)
    return {"company_id": company.id, "api_key": company.api_key}

@app.get("/auth/me")
def whoami(company: Company = Depends(get_current_company)):
    return {"id": company.id, "name": company.name, "email": company.email, "is_active": company.is_active}

# ------------------------
# Surveys: authoring
# ------------------------
@app.post("/surveys")
def create_survey(payload: SurveyCreate, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    """Create a survey manually.

    Returns:
        dict: {"id": int, "unique_code": str}
    """
    survey = _create_survey(
        db, company, payload.title, payload.description,
        [q.model_dump() for q in payload.questions],
        thank_you_message=payload.thank_you_message,
    )
    return {"id": survey.id, "unique_code": survey.unique_code}

@app.get("/surveys")
def list_surveys(company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    """List the company's surveys with question and submission counts."""
    rows = db.execute(
        select(SurveyTemplate).where(SurveyTemplate.company_id == company.id).order_by(SurveyTemplate.created_at.desc(), SurveyTemplate.id.desc())
    ).scalars().all()
    out = []
    for s in rows:
        n_sub = db.execute(
            select(func.count()).select_from(SurveySubmission).where(SurveySubmission.survey_template_id == s.id)
        ).scalar_one()
        out.append({**_survey_out(s), "question_count": len(s.questions), "submission_count": n_sub})
    return out

@app.get("/surveys/import/template")
def download_import_template():
    """Excel template for bulk question import."""
    return Response(
        content=build_import_template(),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": "attachment; filename=survey_import_template.xlsx"},
    )

@app.post("/surveys/import")
async def import_survey(file: UploadFile = File(...), company: Company = Depends(get_current_company),
                        db: Session = Depends(get_db)):
    """Create a survey from a filled-in Excel template.

    Returns:
        dict: {"id", "unique_code", "question_count"}

    Raises:
        HTTPException: 400 if the workbook does not follow the template.
    """
    data = await file.read()
    try:
        parsed = parse_import(data)
    except ImportFormatError as exc:
        raise HTTPException(400, str(exc))
    survey = _create_survey(db, company, parsed["title"], parsed["description"], parsed["items"])
    return {"id": survey.id, "unique_code": survey.unique_code, "question_count": len(parsed["items"])}

@app.post("/surveys/generate")
def generate_survey(payload: SurveyGenerate, company: Company = Depends(get_current_company),
                    db: Session = Depends(get_db)):
    """Generate a survey draft with the active AI model and optionally save it.

    Returns:
        dict: {"draft": {title, description, questions}, "survey_id": int|None, "model": str}

    Raises:
        HTTPException: 400 on empty topic; 502 if the AI call fails.
    """
    topic = payload.topic.strip()
    if not topic:
        raise HTTPException(400, "Topic is required")
    model = _active_model(db)
    mp = db.execute(select(MetaPrompt).where(MetaPrompt.prompt_name == ai_service.GENERATE_SURVEY_PROMPT)).scalar_one_or_none()
    try:
        draft, tokens = ai_service.generate_survey(
            topic, payload.num_questions, model=model, prompt_template=mp.prompt_text if mp else None,
        )
    except AIServiceError as exc:
        raise HTTPException(502, str(exc))

    if tokens:
        db.add(AIUsageLog(model_name=model, total_tokens=tokens, company_id=company.id))
        db.commit()

    survey_id = None
    if payload.save:
        survey = _create_survey(
            db, company, draft["title"], draft["description"], draft["questions"],
            is_ai_generated=True, ai_generation_topic=topic,
        )
        survey_id = survey.id
    return {"draft": draft, "survey_id": survey_id, "model": model}

@app.get("/surveys/{survey_id}")
def survey_detail(survey_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    """Survey with its ordered questions.

    Raises:
        HTTPException: 404 if the survey does not exist or belongs to another company.
    """
    s = _get_owned_survey(db, company, survey_id)
    return {"survey": _survey_out(s), "questions": [_question_out(q) for q in s.questions]}

@app.get("/surveys/{survey_id}/items")
def survey_items(survey_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    """Flat editor items: a section item before each titled group of questions."""
    s = _get_owned_survey(db, company, survey_id)
    raw = [{
        "question_text": q.question_text,
        "question_type": q.question_type,
        "is_required": q.is_required,
        "options": _decode_options(q.options),
    } for q in s.questions]
    if not any(q.section_title for q in s.questions):
        return normalize_survey_items(raw)
    sections: list[dict] = []
    for q, item in zip(s.questions, raw):
        title = q.section_title or ""
        if not sections or sections[-1]["title"] != title:
            sections.append({"title": title, "questions": []})
        sections[-1]["questions"].append(item)
    # untitled groups carry no section header
    return [i for i in normalize_survey_items(sections) if i["item_type"] != "section" or i["text"]]

@app.put("/surveys/{survey_id}")
def update_survey(survey_id: int, payload: SurveyUpdate, company: Company = Depends(get_current_company),
                  db: Session = Depends(get_db)):
    """Update survey fields; when ``questions`` is given the question list is replaced."""
    s = _get_owned_survey(db, company, survey_id)
    if payload.title is not None:
        if not payload.title.strip():
            raise HTTPException(400, "Title is required")
        s.title = payload.title.strip()
    if payload.description is not None:
        s.description = payload.description.strip() or None
    if payload.is_active is not None:
        s.is_active = payload.is_active
    if payload.thank_you_message is not None:
        s.thank_you_message = payload.thank_you_message or None
    if payload.questions is not None:
        for q in list(s.questions):
            db.delete(q)
        db.flush()
        _add_questions(db, s, [q.model_dump() for q in payload.questions])
    db.commit()
    return {"ok": True}

@app.delete("/surveys/{survey_id}")
def delete_survey(survey_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    """Hard-delete a survey and all related rows (via FKs)."""
    s = _get_owned_survey(db, company, survey_id)
    db.delete(s)
    db.commit()
    return {"ok": True}

# ------------------------
# Planning: blueprint & formulas
# ------------------------
@app.post("/blueprint")
def survey_blueprint(params: MetaParams):
    """Recommended question budget and type mix for the given meta-parameters."""
    return calculate_blueprint(params.model_dump())

@app.post("/formulas/capacity")
def question_capacity(body: CapacityIn):
    capacity = calculate_question_capacity(CapacityParams(
        total_time=body.total_time,
        efficiency_factor=body.efficiency_factor,
        questions=[QuestionTimeParams(**q.model_dump()) for q in body.questions],
    ))
    unbounded = capacity == float("inf")
    return {"capacity": None if unbounded else int(capacity), "unbounded": unbounded}

@app.get("/formulas/composition/{purpose}")
def question_composition(purpose: str):
    return get_question_composition(purpose).as_dict()

@app.post("/formulas/density")
def logical_density(body: DensityIn):
    return {"density": calculate_logical_density(body.branching_nodes, body.total_questions, body.logic_type)}

@app.post("/formulas/burden")
def cognitive_burden(body: BurdenIn):
    index = calculate_cognitive_burden_index(BurdenIndexParams(
        total_questions=body.total_questions,
        complexity_factor=body.complexity_factor,
        total_time=body.total_time,
    ))
    threshold = body.threshold if body.threshold is not None else BURDEN_THRESHOLD
    unbounded = index == float("inf")
    return {
        "index": None if unbounded else index,
        "unbounded": unbounded,
        "threshold": threshold,
        "too_high": is_burden_too_high(index, threshold),
    }

# ------------------------
# Runs
# ------------------------
@app.post("/runs")
def create_run(payload: RunCreate, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    """Open a new collection run for a survey.

    Public-link runs get an opaque token; every run starts active.

    Raises:
        HTTPException: 404 if the survey is not the company's; 400 if close_at is in the past.
    """
    s = _get_owned_survey(db, company, payload.survey_template_id)
    name = payload.name.strip()
    if not name:
        raise HTTPException(400, "Run name is required")
    close_at = _as_utc(payload.close_at)
    if close_at and close_at <= _now_utc():
        raise HTTPException(400, "close_at must be in the future")

    for _ in range(5):
        run = SurveyRun(
            survey_template_id=s.id,
            company_id=company.id,
            name=name,
            mode=payload.mode,
            status="active",
            target_n=payload.target_n,
            min_n_for_analysis=payload.min_n_for_analysis,
            open_at=_now_utc(),
            close_at=close_at,
            public_token=uuid.uuid4().hex if payload.mode == "public_link" else None,
        )
        db.add(run)
        try:
            db.commit()
            logger.info("run %s opened for survey %s", run.id, s.id)
            return _run_out(run)
        except IntegrityError:
            db.rollback()
            continue

    raise HTTPException(500, "Failed to generate a unique run token")

@app.get("/runs")
def list_runs(company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    rows = db.execute(
        select(SurveyRun).where(SurveyRun.company_id == company.id).order_by(SurveyRun.created_at.desc(), SurveyRun.id.desc())
    ).scalars().all()
    return [_run_out(r) for r in rows]

@app.get("/runs/{run_id}")
def get_run(run_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    r = _get_owned_run(db, company, run_id)
    return {**_run_out(r), "survey": _survey_out(r.survey)}

@app.put("/runs/{run_id}/status")
def update_run_status(run_id: int, body: RunStatusUpdate, company: Company = Depends(get_current_company),
                      db: Session = Depends(get_db)):
    """Pause, resume or close a run.

    Raises:
        HTTPException: 409 when reopening a closed run.
    """
    r = _get_owned_run(db, company, run_id)
    if r.status in RUN_STATUSES_TERMINAL and body.status != r.status:
        raise HTTPException(409, "Closed runs cannot be reopened")
    if body.status == "closed" and r.status != "closed" and not r.close_at:
        r.close_at = _now_utc()
    r.status = body.status
    db.commit()
    return _run_out(r)

@app.get("/runs/{run_id}/stats")
def run_stats(run_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    """Collection progress of a run.

    Returns:
        dict: {"collected_n", "target_n", "progress", "analysis_ready"}
    """
    r = _get_owned_run(db, company, run_id)
    collected = db.execute(
        select(func.count()).select_from(SurveySubmission).where(SurveySubmission.run_id == r.id)
    ).scalar_one()
    return {
        "collected_n": collected,
        "target_n": r.target_n,
        "progress": min(collected / r.target_n, 1.0) if r.target_n else None,
        "analysis_ready": collected >= r.min_n_for_analysis if r.min_n_for_analysis else None,
    }

# ------------------------
# Recipients & distribution
# ------------------------
@app.post("/surveys/{survey_id}/recipients")
def add_recipient(survey_id: int, payload: RecipientCreate, company: Company = Depends(get_current_company),
                  db: Session = Depends(get_db)):
    s = _get_owned_survey(db, company, survey_id)
    if not (payload.email or payload.phone):
        raise HTTPException(400, "Recipient needs an e-mail or a phone number")
    if payload.run_id is not None:
        run = _get_owned_run(db, company, payload.run_id)
        if run.survey_template_id != s.id:
            raise HTTPException(400, "Run belongs to another survey")
    row = SurveyRecipient(
        survey_template_id=s.id,
        company_id=company.id,
        recipient_code=_unique_code(db, SurveyRecipient.recipient_code),
        **payload.model_dump(),
    )
    db.add(row)
    db.commit()
    return {**_recipient_out(row), "link": distribution.personal_link(s.unique_code, row.recipient_code)}

@app.get("/surveys/{survey_id}/recipients")
def list_recipients(survey_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    s = _get_owned_survey(db, company, survey_id)
    rows = db.execute(
        select(SurveyRecipient).where(SurveyRecipient.survey_template_id == s.id).order_by(SurveyRecipient.id)
    ).scalars().all()
    return [_recipient_out(r) for r in rows]

@app.put("/recipients/{recipient_id}")
def update_recipient(recipient_id: int, payload: RecipientUpdate, company: Company = Depends(get_current_company),
                     db: Session = Depends(get_db)):
    r = _get_owned_recipient(db, company, recipient_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(r, field, value)
    db.commit()
    return _recipient_out(r)

@app.delete("/recipients/{recipient_id}")
def delete_recipient(recipient_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    r = _get_owned_recipient(db, company, recipient_id)
    db.delete(r)
    db.commit()
    return {"ok": True}

@app.post("/recipients/{recipient_id}/send")
def send_invitation(recipient_id: int, body: RecipientSend, company: Company = Depends(get_current_company),
                    db: Session = Depends(get_db)):
    """Deliver the personal survey link by e-mail or WhatsApp.

    E-mail goes out through the mail provider when configured, otherwise a
    ``mailto:`` URL is returned for the caller to open. WhatsApp always returns
    a click-to-chat URL.

    Returns:
        dict: {"channel", "link", "url", "delivered"}

    Raises:
        HTTPException: 400 if the recipient lacks the contact field; 502 if the provider fails.
    """
    r = _get_owned_recipient(db, company, recipient_id)
    s = r.survey
    link = distribution.personal_link(s.unique_code, r.recipient_code)
    subject, message = distribution.invitation_message(s.title, link, r.contact_person or r.company_name)

    url, delivered = None, False
    if body.channel == "email":
        if not r.email:
            raise HTTPException(400, "Recipient has no e-mail")
        try:
            distribution.send_email(r.email, subject, message.replace("\n", "<br>"))
            delivered = True
        except distribution.EmailNotConfigured:
            url = distribution.mailto_url(r.email, subject, message)
        except distribution.EmailSendError as exc:
            raise HTTPException(502, str(exc))
    else:
        if not r.phone:
            raise HTTPException(400, "Recipient has no phone number")
        url = distribution.whatsapp_url(r.phone, message)

    r.sent_at = _now_utc()
    r.sent_via = body.channel
    db.commit()
    return {"channel": body.channel, "link": link, "url": url, "delivered": delivered}

# ------------------------
# Contacts
# ------------------------
@app.post("/contacts")
def create_contact(payload: ContactCreate, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    row = Contact(company_id=company.id, **payload.model_dump())
    db.add(row)
    db.commit()
    return {"id": row.id}

@app.get("/contacts")
def list_contacts(company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    rows = db.execute(select(Contact).where(Contact.company_id == company.id).order_by(Contact.id)).scalars().all()
    return [_contact_out(c) for c in rows]

@app.put("/contacts/{contact_id}")
def update_contact(contact_id: int, payload: ContactUpdate, company: Company = Depends(get_current_company),
                   db: Session = Depends(get_db)):
    c = _get_owned_contact(db, company, contact_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(c, field, value)
    db.commit()
    return _contact_out(c)

@app.delete("/contacts/{contact_id}")
def delete_contact(contact_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    c = _get_owned_contact(db, company, contact_id)
    db.delete(c)
    db.commit()
    return {"ok": True}

# ------------------------
# Public: take a survey
# ------------------------
@app.get("/public/surveys/{survey_code}")
def load_public_survey(survey_code: str, code: Optional[str] = None, db: Session = Depends(get_db)):
    """Resolve a survey code (plus optional recipient code) for respondents.

    Args:
        survey_code (str): Survey unique code.
        code (str|None): Personal recipient code from the invitation link (``?code=``).

    Raises:
        HTTPException: 404 if the code is unknown, the survey inactive or the recipient unknown.
    """
    s = db.execute(select(SurveyTemplate).where(SurveyTemplate.unique_code == survey_code)).scalar_one_or_none()
    if not s or not s.is_active:
        raise HTTPException(404, "Survey not found or inactive")
    already_submitted = False
    if code:
        rec = db.execute(select(SurveyRecipient).where(
            SurveyRecipient.recipient_code == code, SurveyRecipient.survey_template_id == s.id
        )).scalar_one_or_none()
        if not rec:
            raise HTTPException(404, "Recipient not found")
        if not rec.opened_at:
            rec.opened_at = _now_utc()
            db.commit()
        already_submitted = rec.submitted_at is not None
    return {
        "survey": _survey_out(s),
        "questions": [_question_out(q) for q in s.questions],
        "already_submitted": already_submitted,
    }

@app.get("/public/runs/{token}")
def load_public_run(token: str, db: Session = Depends(get_db)):
    """Resolve a public run token to its survey; only open runs are served."""
    run = db.execute(select(SurveyRun).where(SurveyRun.public_token == token)).scalar_one_or_none()
    if not run:
        raise HTTPException(404, "Link invalid")
    if not _run_is_open(run) or not run.survey.is_active:
        raise HTTPException(403, "This survey run is not accepting responses")
    s = run.survey
    return {
        "run": {"id": run.id, "name": run.name, "close_at": run.close_at},
        "survey": _survey_out(s),
        "questions": [_question_out(q) for q in s.questions],
    }

@app.post("/public/submissions")
def submit_responses(payload: SubmissionCreate, db: Session = Depends(get_db)):
    """Store a completed questionnaire.

    The survey is resolved from ``run_token`` (public runs) or ``survey_code``
    (direct / personal links). Required questions must be answered and every
    value must fit its question type.

    Returns:
        dict: {"submission_id", "thank_you_message"}

    Raises:
        HTTPException: 400 on validation errors; 403 if the survey/run is closed;
            404 on unknown codes; 409 if the recipient already submitted.
    """
    run = None
    if payload.run_token:
        run = db.execute(select(SurveyRun).where(SurveyRun.public_token == payload.run_token)).scalar_one_or_none()
        if not run:
            raise HTTPException(404, "Link invalid")
        if not _run_is_open(run):
            raise HTTPException(403, "This survey run is not accepting responses")
        s = run.survey
    elif payload.survey_code:
        s = db.execute(select(SurveyTemplate).where(SurveyTemplate.unique_code == payload.survey_code)).scalar_one_or_none()
        if not s:
            raise HTTPException(404, "Survey not found")
    else:
        raise HTTPException(400, "survey_code or run_token is required")
    if not s.is_active:
        raise HTTPException(403, "Survey is inactive")

    recipient = None
    if payload.recipient_code:
        recipient = db.execute(select(SurveyRecipient).where(
            SurveyRecipient.recipient_code == payload.recipient_code, SurveyRecipient.survey_template_id == s.id
        )).scalar_one_or_none()
        if not recipient:
            raise HTTPException(404, "Recipient not found")
        if recipient.submitted_at:
            raise HTTPException(409, "Responses were already submitted for this invitation")
        if run is None and recipient.run_id:
            run = db.get(SurveyRun, recipient.run_id)
            if run and not _run_is_open(run):
                raise HTTPException(403, "This survey run is not accepting responses")

    questions = {q.id: q for q in s.questions}
    given = {a.question_id: a.value for a in payload.answers}
    unknown = sorted(set(given) - set(questions))
    if unknown:
        raise HTTPException(400, f"Unknown question id(s): {unknown}")

    rows, missing = [], []
    for q in s.questions:
        try:
            text, number = coerce_answer(q, given.get(q.id))
        except ValueError as exc:
            raise HTTPException(400, str(exc))
        if text is None and number is None:
            if q.is_required:
                missing.append(q.id)
            continue
        rows.append(SubmissionAnswer(
            question_template_id=q.id, question_order=q.question_order, question_text=q.question_text,
            answer_text=text, answer_number=number,
        ))
    if missing:
        raise HTTPException(400, f"Required question(s) not answered: {missing}")
    if not rows:
        raise HTTPException(400, "No answers to submit")

    sub = SurveySubmission(
        survey_template_id=s.id,
        run_id=run.id if run else None,
        recipient_id=recipient.id if recipient else None,
        respondent_email=(payload.respondent_email or (recipient.email if recipient else None)),
        survey_title=s.title,
        survey_description=s.description,
        answers=rows,
    )
    db.add(sub)
    if recipient:
        recipient.submitted_at = _now_utc()
    db.commit()
    logger.info("submission %s stored for survey %s", sub.id, s.id)
    return {"submission_id": sub.id, "thank_you_message": s.thank_you_message}

# ------------------------
# Responses: view/export
# ------------------------
def _submission_rows(db: Session, survey_id: int) -> list[dict]:
    q = select(
        SurveySubmission.id.label("submission_id"), SurveySubmission.submitted_at, SurveySubmission.respondent_email,
        SurveySubmission.run_id, SubmissionAnswer.question_order, SubmissionAnswer.question_text.label("question"),
        SubmissionAnswer.answer_text, SubmissionAnswer.answer_number,
    ).join(SubmissionAnswer, SubmissionAnswer.submission_id == SurveySubmission.id) \
     .where(SurveySubmission.survey_template_id == survey_id) \
     .order_by(SurveySubmission.id, SubmissionAnswer.question_order)
    return [dict(r) for r in db.execute(q).mappings().all()]

@app.get("/surveys/{survey_id}/submissions")
def list_submissions(survey_id: int, run_id: Optional[int] = None, company: Company = Depends(get_current_company),
                     db: Session = Depends(get_db)):
    s = _get_owned_survey(db, company, survey_id)
    q = select(SurveySubmission).where(SurveySubmission.survey_template_id == s.id)
    if run_id is not None:
        q = q.where(SurveySubmission.run_id == run_id)
    rows = db.execute(q.order_by(SurveySubmission.id)).scalars().all()
    return [{
        "id": r.id, "run_id": r.run_id, "recipient_id": r.recipient_id,
        "respondent_email": r.respondent_email, "submitted_at": r.submitted_at, "answer_count": len(r.answers),
    } for r in rows]

def _get_owned_submission(db: Session, company: Company, submission_id: int) -> SurveySubmission:
    sub = db.get(SurveySubmission, submission_id)
    if not sub or sub.survey.company_id != company.id:
        raise HTTPException(404, "Submission not found")
    return sub

def _answers_out(sub: SurveySubmission) -> list[dict]:
    return [{
        "question_id": a.question_template_id, "question_order": a.question_order, "question": a.question_text,
        "answer_text": a.answer_text, "answer_number": a.answer_number,
    } for a in sorted(sub.answers, key=lambda a: a.question_order)]

@app.get("/submissions/{submission_id}")
def submission_detail(submission_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    sub = _get_owned_submission(db, company, submission_id)
    return {
        "id": sub.id, "survey_template_id": sub.survey_template_id, "run_id": sub.run_id,
        "respondent_email": sub.respondent_email, "survey_title": sub.survey_title,
        "submitted_at": sub.submitted_at, "answers": _answers_out(sub),
    }

@app.get("/surveys/{survey_id}/export.csv")
def export_csv(survey_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    """Export survey responses as CSV (sorted by submission, then question order).

    Returns:
        Response: text/csv attachment `survey_<id>_responses.csv`.
    """
    s = _get_owned_survey(db, company, survey_id)
    df = exports.submissions_frame(_submission_rows(db, s.id))
    return Response(content=exports.to_csv_bytes(df), media_type="text/csv; charset=utf-8",
                    headers={"Content-Disposition": f"attachment; filename=survey_{s.id}_responses.csv"})

@app.get("/surveys/{survey_id}/export.xlsx")
def export_xlsx(survey_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    s = _get_owned_survey(db, company, survey_id)
    df = exports.submissions_frame(_submission_rows(db, s.id))
    return Response(content=exports.to_xlsx_bytes(df),
                    media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                    headers={"Content-Disposition": f"attachment; filename=survey_{s.id}_responses.xlsx"})

@app.get("/submissions/{submission_id}/export.pdf")
def export_submission_pdf(submission_id: int, company: Company = Depends(get_current_company),
                          db: Session = Depends(get_db)):
    sub = _get_owned_submission(db, company, submission_id)
    pdf = exports.submission_pdf(
        sub.survey_title,
        sub.submitted_at.strftime("%Y-%m-%d %H:%M") if sub.submitted_at else None,
        sub.respondent_email,
        _answers_out(sub),
    )
    return Response(content=pdf, media_type="application/pdf",
                    headers={"Content-Disposition": f"attachment; filename=submission_{sub.id}.pdf"})

# ------------------------
# Admin: companies
# ------------------------
@app.get("/admin/companies", dependencies=[Depends(verify_admin)])
def admin_list_companies(db: Session = Depends(get_db)):
    rows = db.execute(select(Company).order_by(Company.id)).scalars().all()
    return [{
        "id": c.id, "name": c.name, "email": c.email, "is_active": bool(c.is_active),
        "created_at": c.created_at, "survey_count": len(c.surveys),
    } for c in rows]

@app.put("/admin/companies/{company_id}/active", dependencies=[Depends(verify_admin)])
def admin_set_company_active(company_id: int, body: CompanyActiveUpdate, db: Session = Depends(get_db)):
    c = db.get(Company, company_id)
    if not c:
        raise HTTPException(404, "Company not found")
    c.is_active = body.is_active
    db.commit()
    logger.info("company %s active=%s", c.id, c.is_active)
    return {"ok": True, "is_active": c.is_active}

@app.delete("/admin/companies/{company_id}", dependencies=[Depends(verify_admin)])
def admin_delete_company(company_id: int, db: Session = Depends(get_db)):
    """Hard-delete a company with all its surveys, runs and responses."""
    c = db.get(Company, company_id)
    if not c:
        raise HTTPException(404, "Company not found")
    db.delete(c)
    db.commit()
    return {"ok": True}

# ------------------------
# Admin: meta-prompts
# ------------------------
@app.get("/admin/meta-prompts", dependencies=[Depends(verify_admin)])
def admin_list_meta_prompts(db: Session = Depends(get_db)):
    rows = db.execute(select(MetaPrompt).order_by(MetaPrompt.prompt_name)).scalars().all()
    return [{"prompt_name": m.prompt_name, "prompt_text": m.prompt_text, "updated_at": m.updated_at} for m in rows]

@app.get("/admin/meta-prompts/{name}", dependencies=[Depends(verify_admin)])
def admin_get_meta_prompt(name: str, db: Session = Depends(get_db)):
    m = db.execute(select(MetaPrompt).where(MetaPrompt.prompt_name == name)).scalar_one_or_none()
    if not m:
        raise HTTPException(404, "Meta-prompt not found")
    return {"prompt_name": m.prompt_name, "prompt_text": m.prompt_text, "updated_at": m.updated_at}

@app.put("/admin/meta-prompts/{name}", dependencies=[Depends(verify_admin)])
def admin_upsert_meta_prompt(name: str, body: MetaPromptUpsert, db: Session = Depends(get_db)):
    """Create or replace a stored prompt template.

    Raises:
        HTTPException: 400 if the text is empty.
    """
    text = body.prompt_text.strip()
    if not text:
        raise HTTPException(400, "Prompt text is required")
    m = db.execute(select(MetaPrompt).where(MetaPrompt.prompt_name == name)).scalar_one_or_none()
    if m:
        m.prompt_text = text
    else:
        db.add(MetaPrompt(prompt_name=name, prompt_text=text))
    db.commit()
    return {"ok": True}

@app.delete("/admin/meta-prompts/{name}", dependencies=[Depends(verify_admin)])
def admin_delete_meta_prompt(name: str, db: Session = Depends(get_db)):
    """Delete a meta-prompt (idempotent).

    Returns:
        dict: {"ok": True, "deleted": 0|1}
    """
    m = db.execute(select(MetaPrompt).where(MetaPrompt.prompt_name == name)).scalar_one_or_none()
    if not m:
        return {"ok": True, "deleted": 0}
    db.delete(m)
    db.commit()
    return {"ok": True, "deleted": 1}

# ------------------------
# Admin: AI model configuration
# ------------------------
@app.get("/admin/settings/active-model", dependencies=[Depends(verify_admin)])
def admin_get_active_model(db: Session = Depends(get_db)):
    row = db.execute(select(SystemSetting).where(SystemSetting.setting_name == ACTIVE_MODEL_SETTING)).scalar_one_or_none()
    if row and row.setting_value:
        return {"model_name": row.setting_value, "source": "settings"}
    return {"model_name": ai_service.DEFAULT_MODEL, "source": "default"}

@app.put("/admin/settings/active-model", dependencies=[Depends(verify_admin)])
def admin_set_active_model(body: ActiveModelUpdate, db: Session = Depends(get_db)):
    name = body.model_name.strip()
    if not name:
        raise HTTPException(400, "Model name is required")
    row = db.execute(select(SystemSetting).where(SystemSetting.setting_name == ACTIVE_MODEL_SETTING)).scalar_one_or_none()
    if row:
        row.setting_value = name
    else:
        db.add(SystemSetting(setting_name=ACTIVE_MODEL_SETTING, setting_value=name))
    db.commit()
    logger.info("active AI model set to %s", name)
    return {"ok": True, "model_name": name}

@app.get("/admin/models", dependencies=[Depends(verify_admin)])
def admin_discover_models():
    try:
        return {"models": ai_service.list_models()}
    except AIServiceError as exc:
        raise HTTPException(502, str(exc))

@app.post("/admin/models/check", dependencies=[Depends(verify_admin)])
def admin_check_model(body: ModelCheck):
    try:
        ai_service.check_model(body.model_name)
    except AIServiceError as exc:
        raise HTTPException(502, str(exc))
    return {"status": "success", "message": f"Model '{body.model_name}' is accessible."}

@app.get("/admin/ai-models", dependencies=[Depends(verify_admin)])
def admin_list_ai_models(db: Session = Depends(get_db)):
    rows = db.execute(select(AIModel).order_by(AIModel.created_at, AIModel.id)).scalars().all()
    return [{"id": m.id, "model_name": m.model_name, "created_at": m.created_at} for m in rows]

@app.post("/admin/ai-models", dependencies=[Depends(verify_admin)])
def admin_add_ai_model(body: AIModelCreate, db: Session = Depends(get_db)):
    """Register a model the admin can choose as the active one.

    Raises:
        HTTPException: 400 if the name is empty; 409 if it is already registered.
    """
    name = body.model_name.strip()
    if not name:
        raise HTTPException(400, "Model name is required")
    if db.execute(select(AIModel).where(AIModel.model_name == name)).scalar_one_or_none():
        raise HTTPException(409, "Model already registered")
    m = AIModel(model_name=name)
    db.add(m)
    db.commit()
    logger.info("registered AI model %s", name)
    return {"id": m.id, "model_name": m.model_name, "created_at": m.created_at}

@app.delete("/admin/ai-models/{model_id}", dependencies=[Depends(verify_admin)])
def admin_delete_ai_model(model_id: int, db: Session = Depends(get_db)):
    m = db.get(AIModel, model_id)
    if not m:
        raise HTTPException(404, "Model not found")
    db.delete(m)
    db.commit()
    return {"ok": True}

@app.post("/admin/ai-models/check", dependencies=[Depends(verify_admin)])
def admin_check_all_ai_models(db: Session = Depends(get_db)):
    """Probe every registered model.

    Returns:
        dict: {model_name: {"status": "available"|"unavailable", "message": str}}
    """
    names = db.execute(select(AIModel.model_name).order_by(AIModel.id)).scalars().all()
    results = {}
    for name in names:
        try:
            ai_service.check_model(name)
            results[name] = {"status": "available", "message": f"Model '{name}' is accessible."}
        except AIServiceError as exc:
            logger.warning("model %s unavailable: %s", name, exc)
            results[name] = {"status": "unavailable", "message": str(exc)}
    return results

# ------------------------
# Admin: monitoring
# ------------------------
@app.get("/admin/usage", dependencies=[Depends(verify_admin)])
def admin_usage(days: int = 30, db: Session = Depends(get_db)):
    """Token usage per day and model for the last ``days`` days.

    Returns:
        dict: {"stats": {"YYYY-MM-DD": {model_name: tokens}}}
    """
    cutoff = (_now_utc() - timedelta(days=days)).replace(tzinfo=None)
    rows = db.execute(
        select(AIUsageLog.created_at, AIUsageLog.model_name, AIUsageLog.total_tokens)
        .where(AIUsageLog.created_at >= cutoff)
    ).all()
    if not rows:
        return {"stats": {}}
    df = pd.DataFrame(rows, columns=["created_at", "model_name", "total_tokens"])
    df["date"] = pd.to_datetime(df["created_at"]).dt.strftime("%Y-%m-%d")
    grouped = df.groupby(["date", "model_name"])["total_tokens"].sum()
    stats: dict[str, dict[str, int]] = {}
    for (date, model), tokens in grouped.items():
        stats.setdefault(date, {})[model] = int(tokens)
    return {"stats": stats}

@app.get("/admin/stats", dependencies=[Depends(verify_admin)])
def admin_stats(db: Session = Depends(get_db)):
    def count(model):
        return db.execute(select(func.count()).select_from(model)).scalar_one()
    return {
        "companies": count(Company),
        "surveys": count(SurveyTemplate),
        "runs": count(SurveyRun),
        "submissions": count(SurveySubmission),
        "ai_tokens": db.execute(select(func.coalesce(func.sum(AIUsageLog.total_tokens), 0))).scalar_one(),
    }
