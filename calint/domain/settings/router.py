"""Settings router - mapping configuration, panel data and show status endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...deps import get_calendly_service, get_current_principal, get_pipedrive_service, get_token_bridge
from ...models import User
from ...services.calendly_service import CalendlyService
from ...services.pipedrive_service import PipedriveService
from ...services.token_bridge import TokenRefreshBridge
from .schemas import ApiResponse, MappingCreateRequest, ShowUpdateRequest
from .service import SettingsService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Settings"])


def get_settings_service(
    db: Session = Depends(get_db),
    pipedrive: PipedriveService = Depends(get_pipedrive_service),
    calendly: CalendlyService = Depends(get_calendly_service),
    bridge: TokenRefreshBridge = Depends(get_token_bridge),
) -> SettingsService:
    """Dependency injection for SettingsService"""
    return SettingsService(db, pipedrive, calendly, bridge)


@router.get("/settings", response_model=ApiResponse)
async def get_settings(
    current_user: User = Depends(get_current_principal),
    service: SettingsService = Depends(get_settings_service),
):
    """Sync catalogues from both platforms and return them with the tenant's mappings"""
    data = await service.get_settings(current_user)
    return ApiResponse(data=data)


@router.get("/mapping", response_model=ApiResponse)
async def get_mappings(
    current_user: User = Depends(get_current_principal),
    service: SettingsService = Depends(get_settings_service),
):
    return ApiResponse(data=service.get_mappings(current_user))


@router.post("/mapping/create", response_model=ApiResponse)
async def create_mapping(
    data: MappingCreateRequest,
    current_user: User = Depends(get_current_principal),
    service: SettingsService = Depends(get_settings_service),
):
    """Upsert mappings for one event type; returns all tenant mappings"""
    return ApiResponse(data=service.create_mapping(current_user, data))


@router.get("/panel", response_model=ApiResponse)
async def get_panel(
    selected_ids: Optional[str] = Query(None, alias="selectedIds"),
    current_user: User = Depends(get_current_principal),
    service: SettingsService = Depends(get_settings_service),
):
    """Bookings behind the open activities of the deal shown in the Pipedrive panel"""
    if not selected_ids:
        raise HTTPException(status_code=400, detail="selectedIds is required")
    try:
        deal_id = int(selected_ids.split(",")[0])
    except ValueError:
        raise HTTPException(status_code=400, detail="selectedIds must be a deal id") from None

    rows = await service.get_panel(current_user, deal_id)
    return ApiResponse(data=rows)


@router.post("/show/update", response_model=ApiResponse)
async def update_show_status(
    data: ShowUpdateRequest,
    current_user: User = Depends(get_current_principal),
    service: SettingsService = Depends(get_settings_service),
):
    """Mark a booked activity as attended or as a no-show"""
    return ApiResponse(data=await service.update_show(current_user, data))
