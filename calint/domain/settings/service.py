"""Settings service - catalogues, mapping configuration, panel data and show status"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from ...enums import Platform, TransitionKind
from ...errors import ConfigurationError, NotFoundError
from ...models import EventTypeMapping, User
from ...services.calendly_service import CalendlyService
from ...services.pipedrive_service import PipedriveService
from ...services.token_bridge import TokenRefreshBridge
from ..sync.context import RequestContext
from ..sync.crm import CrmGateway
from ..sync.mapping import MappingResolver
from .repository import SettingsRepository
from .schemas import (
    ActivityTypeResponse,
    EventTypeResponse,
    MappingCreateRequest,
    PanelRow,
    SettingsData,
    ShowUpdateRequest,
    TypeMappingResponse,
)

logger = logging.getLogger(__name__)


class SettingsService:
    """Service layer for tenant configuration and the deal panel"""

    def __init__(
        self,
        db: Session,
        pipedrive: PipedriveService,
        calendly: CalendlyService,
        bridge: TokenRefreshBridge,
    ):
        self.db = db
        self.pipedrive = pipedrive
        self.calendly = calendly
        self.bridge = bridge
        self.crm = CrmGateway(db, pipedrive)
        self.repo = SettingsRepository()

    async def _context(self, user: User) -> RequestContext:
        token = await self.bridge.ensure_valid(self.db, Platform.PIPEDRIVE, user.id)
        return RequestContext(company=user.company, principal=user, pipedrive=token)

    async def get_settings(self, user: User) -> SettingsData:
        """Refresh both catalogues from the platforms, then return catalogues and mappings"""
        ctx = await self._context(user)
        company_id = ctx.company_id

        activity_types = await self.pipedrive.list_activity_types(ctx.pipedrive)
        added = self.repo.add_missing_activity_types(self.db, company_id, activity_types)
        logger.info(f"📋 Synced Pipedrive activity types for company {company_id}: {added} new")

        account = user.calendly_account
        if account is None:
            raise ConfigurationError(
                "Calendly account not connected", code="CALENDLY_ACCOUNT_NOT_FOUND", details={"user_id": user.id}
            )
        organization = account.organization or ctx.company.calendly_org
        if not organization:
            raise ConfigurationError("Calendly organization unknown", code="CALENDLY_ORGANIZATION_NOT_FOUND")

        calendly_token = await self.bridge.ensure_valid(self.db, Platform.CALENDLY, account.uri)
        event_types = await self.calendly.list_organization_event_types(calendly_token, organization)
        added = self.repo.add_missing_event_types(self.db, company_id, event_types)
        logger.info(f"📋 Synced Calendly event types for company {company_id}: {added} new")

        return SettingsData(
            calendlyEventTypes=[EventTypeResponse.from_model(e) for e in self.repo.get_event_types(self.db, company_id)],
            pipedriveActivityTypes=[
                ActivityTypeResponse.from_model(a) for a in self.repo.get_activity_types(self.db, company_id)
            ],
            typeMappings=self.get_mappings(user),
        )

    def get_mappings(self, user: User) -> list[TypeMappingResponse]:
        return [TypeMappingResponse.from_model(m) for m in self.repo.get_mappings(self.db, user.company_id)]

    def create_mapping(self, user: User, data: MappingCreateRequest) -> list[TypeMappingResponse]:
        """Upsert one mapping per supplied transition kind for an event type"""
        company_id = user.company_id
        event_type = self.repo.get_event_type(self.db, company_id, data.eventTypeId)
        if event_type is None:
            raise NotFoundError(f"Event type {data.eventTypeId} not found", code="EVENT_TYPE_NOT_FOUND")

        saved: list[EventTypeMapping] = []
        for kind in TransitionKind:
            selection = getattr(data.mappings, kind.value)
            if selection is None:
                continue
            activity_type = self.repo.get_activity_type(self.db, company_id, selection.id)
            if activity_type is None:
                self.db.rollback()
                raise NotFoundError(f"Activity type {selection.id} not found", code="ACTIVITY_TYPE_NOT_FOUND")
            saved.append(self.repo.upsert_mapping(self.db, company_id, event_type.id, kind.value, activity_type.id))

        self.db.commit()
        logger.info(f"✅ Saved {len(saved)} mapping(s) for event type {event_type.uri} (company {company_id})")
        return self.get_mappings(user)

    async def get_panel(self, user: User, deal_id: int) -> list[PanelRow]:
        """Open activities of a deal joined to the bookings that produced them"""
        ctx = await self._context(user)
        activities = await self.pipedrive.list_deal_activities(ctx.pipedrive, deal_id)
        activity_ids = [a["id"] for a in activities if a.get("id") is not None]

        rows = self.repo.get_panel_rows(self.db, ctx.company_id, deal_id, activity_ids)
        return [
            PanelRow(
                id=activity.pipedrive_id,
                header=activity.name,
                join_meeting=booking.join_url,
                reschedule_meeting=booking.reschedule_url,
                cancel_meeting=booking.cancel_url,
            )
            for activity, booking in rows
        ]

    async def update_show(self, user: User, data: ShowUpdateRequest) -> dict[str, Any]:
        """
        Record whether the invitee attended.

        show=True marks the activity done; show=False retypes it with the
        tenant's no-show mapping. The booking status is not touched.
        """
        ctx = await self._context(user)
        link = self.repo.get_activity_link(self.db, ctx.company_id, data.dealId, data.activityId)
        if link is None:
            raise NotFoundError(
                f"Activity {data.activityId} is not linked to a booking on deal {data.dealId}",
                code="ACTIVITY_NOT_FOUND",
            )
        booking = link.calendly_event

        if data.show:
            await self.crm.mark_done(ctx, link.pipedrive_id)
            logger.info(f"✅ Activity {link.pipedrive_id} marked as attended")
        else:
            mapping = MappingResolver(self.db).require(ctx.company_id, booking.event_type_uri, TransitionKind.NO_SHOW)
            await self.crm.retype_activity(ctx, link.pipedrive_id, mapping.activity_type)
            link.activity_type_id = mapping.pipedrive_activity_type_id
            self.db.commit()
            logger.info(f"🚫 Activity {link.pipedrive_id} marked as no-show")

        return {
            "uri": booking.uri,
            "status": booking.status,
            "activityId": link.pipedrive_id,
            "show": data.show,
        }
