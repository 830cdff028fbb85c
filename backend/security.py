import os
from dotenv import load_dotenv
from fastapi import Depends, HTTPException, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from db import get_db
from models import Company

load_dotenv()
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "change-me")

def verify_admin(x_api_key: str = Header(default="")):
    if x_api_key != ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin API key")

def get_current_company(x_company_key: str = Header(default=""), db: Session = Depends(get_db)) -> Company:
    """Resolve the calling company from its API key header."""
    if not x_company_key:
        raise HTTPException(status_code=401, detail="Missing company API key")
    company = db.execute(select(Company).where(Company.api_key == x_company_key)).scalar_one_or_none()
    if not company:
        raise HTTPException(status_code=401, detail="Invalid company API key")
    if not company.is_active:
        raise HTTPException(status_code=403, detail="Company account is disabled")
    return company
