"""
OAuth Routes
Pipedrive login -> Pipedrive callback -> Calendly authorize -> Calendly callback
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Cookie, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from ... import config
from ...database import get_db
from ...deps import get_calendly_service, get_pipedrive_service
from ...errors import CalIntError
from ...services.calendly_service import CalendlyService
from ...services.pipedrive_service import PipedriveService
from .service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


def get_auth_service(
    db: Session = Depends(get_db),
    pipedrive: PipedriveService = Depends(get_pipedrive_service),
    calendly: CalendlyService = Depends(get_calendly_service),
) -> AuthService:
    """Dependency injection for AuthService"""
    return AuthService(db, pipedrive, calendly)


def error_redirect(message: str) -> RedirectResponse:
    """Send the browser to the frontend error page with a readable message"""
    return RedirectResponse(f"{config.FRONTEND_URL}/error?{urlencode({'error-msg': message})}", status_code=302)


@router.get("/login")
async def login(service: AuthService = Depends(get_auth_service)):
    """Start the connect flow at Pipedrive's consent screen"""
    return RedirectResponse(service.pipedrive_authorization_url(), status_code=302)


@router.get("/callback")
async def pipedrive_callback(
    code: Optional[str] = Query(None),
    service: AuthService = Depends(get_auth_service),
):
    """Handle Pipedrive OAuth callback, remember the principal and continue to Calendly"""
    if not code:
        logger.error("❌ No Pipedrive code provided")
        return JSONResponse(status_code=400, content={"error": "No code provided"})

    try:
        user = await service.complete_pipedrive_login(code)
    except CalIntError as e:
        logger.error(f"❌ Pipedrive OAuth callback failed: {e.message}")
        return error_redirect(e.message)

    response = RedirectResponse(service.calendly_authorization_url(), status_code=302)
    response.set_cookie(
        config.IDENTITY_COOKIE_NAME,
        str(user.id),
        max_age=config.IDENTITY_COOKIE_MAX_AGE,
        secure=True,
        httponly=False,
        samesite="lax",
        path="/",
    )
    return response


@router.get("/calendly/callback")
async def calendly_callback(
    code: Optional[str] = Query(None),
    pipedrive_id: Optional[str] = Query(None, alias="pipedriveid"),
    cookie_user_id: Optional[str] = Cookie(None, alias=config.IDENTITY_COOKIE_NAME),
    service: AuthService = Depends(get_auth_service),
):
    """Handle Calendly OAuth callback and link the account to the principal from the cookie"""
    if not code:
        return error_redirect("No Calendly code provided")

    raw_user_id = cookie_user_id or pipedrive_id
    if not raw_user_id or not raw_user_id.isdigit():
        logger.warning("⚠️ Calendly callback without a Pipedrive user identity")
        return error_redirect("Please connect Pipedrive first")

    try:
        await service.complete_calendly_login(int(raw_user_id), code)
    except CalIntError as e:
        logger.error(f"❌ Calendly OAuth callback failed: {e.message}")
        return error_redirect(e.message)

    return RedirectResponse(f"{config.FRONTEND_URL}/success", status_code=302)
