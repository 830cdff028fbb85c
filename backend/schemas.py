# schemas.py
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Any, List, Optional, Literal

QuestionType = Literal["text", "number", "email", "rating", "choice", "multi_choice", "boolean"]

class CompanyRegister(BaseModel):
    name: str
    email: str

class QuestionCreate(BaseModel):
    text: str
    type: QuestionType = "text"
    required: bool = True
    options: Any = None
    order_index: Optional[int] = None
    section: Optional[str] = None

class SurveyCreate(BaseModel):
    title: str
    description: Optional[str] = None
    thank_you_message: Optional[str] = None
    questions: List[QuestionCreate] = []

class SurveyUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    thank_you_message: Optional[str] = None
    questions: Optional[List[QuestionCreate]] = None   # replaces all questions when given

class SurveyGenerate(BaseModel):
    topic: str
    num_questions: int = Field(10, ge=1, le=50)
    save: bool = False

class MetaParams(BaseModel):
    time_constraint: Optional[float] = Field(None, allow_inf_nan=False, description="Seconds available to the respondent")
    mode: Optional[str] = None
    granularity: Optional[str] = None
    purpose: Optional[str] = None
    data_types: List[str] = []
    response_format: Optional[str] = None
    scope: Optional[str] = None

class QuestionTimeIn(BaseModel):
    base_time: float = Field(..., allow_inf_nan=False)
    modality_factor: float = Field(1.0, allow_inf_nan=False)
    depth_factor: float = Field(1.0, allow_inf_nan=False)

class CapacityIn(BaseModel):
    total_time: float = Field(..., allow_inf_nan=False)
    efficiency_factor: float = Field(0.8, allow_inf_nan=False)
    questions: List[QuestionTimeIn] = []

class DensityIn(BaseModel):
    branching_nodes: int = 0
    total_questions: int
    logic_type: Literal["Linear", "Adaptive"] = "Linear"

class BurdenIn(BaseModel):
    total_questions: int
    complexity_factor: float = Field(1.0, allow_inf_nan=False)
    total_time: float = Field(..., allow_inf_nan=False)
    threshold: Optional[float] = Field(None, allow_inf_nan=False)

class RunCreate(BaseModel):
    survey_template_id: int
    name: str
    mode: Literal["public_link", "private_list", "mixed"] = "public_link"
    target_n: Optional[int] = Field(None, ge=1)
    min_n_for_analysis: Optional[int] = Field(None, ge=1)
    close_at: Optional[datetime] = None

class RunStatusUpdate(BaseModel):
    status: Literal["active", "paused", "closed"]

class RecipientCreate(BaseModel):
    run_id: Optional[int] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    contact_person: Optional[str] = None
    additional_info: Optional[str] = None

class RecipientUpdate(BaseModel):
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    contact_person: Optional[str] = None
    additional_info: Optional[str] = None

class RecipientSend(BaseModel):
    channel: Literal["email", "whatsapp"]

class ContactCreate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

class ContactUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

class AnswerIn(BaseModel):
    question_id: int
    value: Any = None

class SubmissionCreate(BaseModel):
    survey_code: Optional[str] = None
    run_token: Optional[str] = None
    recipient_code: Optional[str] = None
    respondent_email: Optional[str] = None
    answers: List[AnswerIn] = []

class MetaPromptUpsert(BaseModel):
    prompt_text: str

class ActiveModelUpdate(BaseModel):
    model_name: str

class AIModelCreate(BaseModel):
    model_name: str

class ModelCheck(BaseModel):
    model_name: str

class CompanyActiveUpdate(BaseModel):
    is_active: bool
