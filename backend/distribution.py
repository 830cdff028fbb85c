# Invitation links and delivery (e-mail via Resend, WhatsApp click-to-chat)
from __future__ import annotations
import os
import re
import secrets
import string
import logging
from typing import Optional
from urllib.parse import quote

import requests
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5173").rstrip("/")
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "SurveyPro <onboarding@resend.dev>")
RESEND_URL = "https://api.resend.com/emails"

_CODE_ALPHABET = string.ascii_uppercase + string.digits


class EmailNotConfigured(RuntimeError):
    pass


class EmailSendError(RuntimeError):
    pass


def generate_code(length: int = 8) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def personal_link(survey_code: str, recipient_code: str, base_url: Optional[str] = None) -> str:
    base = (base_url or APP_BASE_URL).rstrip("/")
    return f"{base}/survey/{survey_code}?code={quote(recipient_code)}"


def invitation_message(survey_title: str, link: str, name: Optional[str] = None) -> tuple[str, str]:
    """Return (subject, body) of the invitation text."""
    subject = f"Invitation to take the survey: {survey_title}"
    body = (f"Hello, {name or ''}! You are invited to take part in the survey "
            f'"{survey_title}".\n\nSurvey link: {link}')
    return subject, body


def mailto_url(email: str, subject: str, body: str) -> str:
    return f"mailto:{email}?subject={quote(subject)}&body={quote(body)}"


def whatsapp_url(phone: str, message: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    return f"https://wa.me/{digits}?text={quote(message)}"


def send_email(to: str, subject: str, html: str, sender: Optional[str] = None) -> dict:
    """
    Send one e-mail through the Resend API.

    Raises:
        EmailNotConfigured: If RESEND_API_KEY is not set.
        EmailSendError: On transport failure or a non-2xx response.
    """
    if not RESEND_API_KEY:
        raise EmailNotConfigured("Email service not configured (RESEND_API_KEY missing)")
    try:
        resp = requests.post(
            RESEND_URL,
            headers={"Authorization": f"Bearer {RESEND_API_KEY}", "Content-Type": "application/json"},
            json={"from": sender or EMAIL_FROM, "to": [to], "subject": subject, "html": html},
            timeout=15,
        )
    except requests.RequestException as exc:
        raise EmailSendError(f"Email request failed: {exc}") from exc
    if not resp.ok:
        logger.error("Resend returned %s: %s", resp.status_code, resp.text)
        raise EmailSendError(f"Email provider returned {resp.status_code}")
    return resp.json()
