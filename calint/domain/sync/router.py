"""
Calendly Webhook Routes
Receives booking notifications and hands them to the reconciliation engine
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...database import get_db
from ...deps import get_pipedrive_service, get_token_bridge
from ...errors import CredentialRefreshFailed
from ...services.pipedrive_service import PipedriveService
from ...services.token_bridge import TokenRefreshBridge
from ...webhook_security import verify_calendly_webhook
from .engine import ReconciliationEngine, ReconciliationResult
from .repository import SyncRepository
from .schemas import WebhookPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendly", tags=["calendly-webhooks"])


def get_reconciliation_engine(
    db: Session = Depends(get_db),
    pipedrive: PipedriveService = Depends(get_pipedrive_service),
    bridge: TokenRefreshBridge = Depends(get_token_bridge),
) -> ReconciliationEngine:
    """Dependency injection for ReconciliationEngine"""
    return ReconciliationEngine(db, pipedrive, bridge)


def _flag_reauth(db: Session, result: ReconciliationResult) -> None:
    error = result.error
    if not isinstance(error, CredentialRefreshFailed) or not error.revoked or not result.company_id:
        return
    try:
        SyncRepository.mark_needs_reauth(db, result.company_id)
        logger.warning(f"🔐 Company {result.company_id} flagged for {error.platform} re-authorization")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Could not flag company {result.company_id} for re-authorization: {e}")


@router.post("/webhook")
async def handle_calendly_webhook(
    request: Request,
    db: Session = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    """
    Handle Calendly webhook events
    Supported events: invitee.created, invitee.canceled

    Acknowledged with 200 unless the failure is transient, in which case 503
    lets Calendly redeliver it.
    """
    signing_key = config.CALENDLY_WEBHOOK_SIGNING_KEY
    if not signing_key:
        logger.warning("⚠️ CALENDLY_WEBHOOK_SIGNING_KEY not configured - signature verification skipped")
        body = await request.body()
    else:
        _, body = await verify_calendly_webhook(request, signing_key, raise_on_failure=True)

    try:
        webhook = WebhookPayload.model_validate_json(body)
    except ValidationError as e:
        logger.warning(f"⚠️ Malformed Calendly webhook body: {e.error_count()} validation error(s)")
        raise HTTPException(status_code=400, detail="Malformed webhook body") from e

    logger.info(f"📥 Received Calendly webhook: {webhook.event} for {webhook.payload.uri}")
    result = await engine.handle(webhook)
    _flag_reauth(db, result)

    if result.retryable:
        return JSONResponse(status_code=503, content={"status": "retry", "result": result.to_dict()})
    return {"status": "ok", "result": result.to_dict()}
