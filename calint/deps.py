"""Shared FastAPI dependencies: outbound clients, token bridge and principal identity"""

from typing import Optional

from fastapi import Cookie, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .config import IDENTITY_COOKIE_NAME
from .database import get_db
from .models import User
from .services.calendly_service import CalendlyService
from .services.pipedrive_service import PipedriveService
from .services.token_bridge import TokenRefreshBridge


def get_pipedrive_service() -> PipedriveService:
    return PipedriveService()


def get_calendly_service() -> CalendlyService:
    return CalendlyService()


def get_token_bridge() -> TokenRefreshBridge:
    return TokenRefreshBridge()


def get_principal_id(
    user_id: Optional[str] = Query(None, alias="userId"),
    cookie_user_id: Optional[str] = Cookie(None, alias=IDENTITY_COOKIE_NAME),
) -> int:
    """Principal identity from the ``userId`` query parameter, falling back to the identity cookie"""
    raw = user_id or cookie_user_id
    if not raw:
        raise HTTPException(status_code=400, detail="userId is required")
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="userId must be a Pipedrive user id") from None


def get_current_principal(
    principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)
) -> User:
    user = db.get(User, principal_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
