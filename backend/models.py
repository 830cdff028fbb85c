from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, Float
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from db import Base

class Company(Base):
    __tablename__ = "companies"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    api_key = Column(String(64), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    surveys = relationship("SurveyTemplate", back_populates="company", cascade="all, delete-orphan")
    contacts = relationship("Contact", back_populates="company", cascade="all, delete-orphan")

class SurveyTemplate(Base):
    __tablename__ = "survey_templates"
    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    unique_code = Column(String(32), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True)
    is_ai_generated = Column(Boolean, default=False)
    ai_generation_topic = Column(Text, nullable=True)
    thank_you_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    company = relationship("Company", back_populates="surveys")
    questions = relationship("QuestionTemplate", back_populates="survey", cascade="all, delete-orphan",
                             order_by="QuestionTemplate.question_order")
    runs = relationship("SurveyRun", back_populates="survey", cascade="all, delete-orphan")
    recipients = relationship("SurveyRecipient", back_populates="survey", cascade="all, delete-orphan")
    submissions = relationship("SurveySubmission", back_populates="survey", cascade="all, delete-orphan")

class QuestionTemplate(Base):
    __tablename__ = "question_templates"
    id = Column(Integer, primary_key=True, index=True)
    survey_template_id = Column(Integer, ForeignKey("survey_templates.id", ondelete="CASCADE"), index=True, nullable=False)
    question_order = Column(Integer, nullable=False, default=0)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(50), nullable=False, default="text")
    is_required = Column(Boolean, default=True)
    section_title = Column(String(255), nullable=True)
    options = Column(Text, nullable=True)   # JSON-encoded list or dict
    survey = relationship("SurveyTemplate", back_populates="questions")

class SurveyRun(Base):
    __tablename__ = "survey_runs"
    id = Column(Integer, primary_key=True, index=True)
    survey_template_id = Column(Integer, ForeignKey("survey_templates.id", ondelete="CASCADE"), index=True, nullable=False)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    mode = Column(String(20), nullable=False, default="public_link")
    status = Column(String(20), nullable=False, default="draft")
    target_n = Column(Integer, nullable=True)
    min_n_for_analysis = Column(Integer, nullable=True)
    open_at = Column(DateTime(timezone=True), nullable=True)
    close_at = Column(DateTime(timezone=True), nullable=True)
    public_token = Column(String(64), unique=True, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    survey = relationship("SurveyTemplate", back_populates="runs")

class SurveyRecipient(Base):
    __tablename__ = "survey_recipients"
    id = Column(Integer, primary_key=True, index=True)
    survey_template_id = Column(Integer, ForeignKey("survey_templates.id", ondelete="CASCADE"), index=True, nullable=False)
    run_id = Column(Integer, ForeignKey("survey_runs.id", ondelete="SET NULL"), nullable=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), index=True, nullable=False)
    company_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    contact_person = Column(String(255), nullable=True)
    additional_info = Column(Text, nullable=True)
    recipient_code = Column(String(32), unique=True, index=True, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    sent_via = Column(String(20), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    survey = relationship("SurveyTemplate", back_populates="recipients")

class SurveySubmission(Base):
    __tablename__ = "survey_submissions"
    id = Column(Integer, primary_key=True, index=True)
    survey_template_id = Column(Integer, ForeignKey("survey_templates.id", ondelete="CASCADE"), index=True, nullable=False)
    run_id = Column(Integer, ForeignKey("survey_runs.id", ondelete="SET NULL"), index=True, nullable=True)
    recipient_id = Column(Integer, ForeignKey("survey_recipients.id", ondelete="SET NULL"), nullable=True)
    respondent_email = Column(String(255), nullable=True)
    survey_title = Column(String(255), nullable=False)
    survey_description = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), server_default=func.now())
    survey = relationship("SurveyTemplate", back_populates="submissions")
    answers = relationship("SubmissionAnswer", back_populates="submission", cascade="all, delete-orphan")

class SubmissionAnswer(Base):
    __tablename__ = "submission_answers"
    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(Integer, ForeignKey("survey_submissions.id", ondelete="CASCADE"), index=True, nullable=False)
    question_template_id = Column(Integer, ForeignKey("question_templates.id", ondelete="SET NULL"), nullable=True)
    question_order = Column(Integer, nullable=False, default=0)
    question_text = Column(Text, nullable=False)
    answer_text = Column(Text, nullable=True)
    answer_number = Column(Float, nullable=True)
    submission = relationship("SurveySubmission", back_populates="answers")

class Contact(Base):
    __tablename__ = "contacts"
    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), index=True, nullable=False)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    company = relationship("Company", back_populates="contacts")

class SystemSetting(Base):
    __tablename__ = "system_settings"
    id = Column(Integer, primary_key=True, index=True)
    setting_name = Column(String(100), unique=True, nullable=False)
    setting_value = Column(Text, nullable=True)

class MetaPrompt(Base):
    __tablename__ = "meta_prompts"
    id = Column(Integer, primary_key=True, index=True)
    prompt_name = Column(String(100), unique=True, index=True, nullable=False)
    prompt_text = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

class AIUsageLog(Base):
    __tablename__ = "ai_usage_logs"
    id = Column(Integer, primary_key=True, index=True)
    model_name = Column(String(100), nullable=False)
    total_tokens = Column(Integer, nullable=False, default=0)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class AIModel(Base):
    __tablename__ = "ai_models"
    id = Column(Integer, primary_key=True, index=True)
    model_name = Column(String(100), unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
