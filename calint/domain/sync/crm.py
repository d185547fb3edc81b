"""CRM side of reconciliation: users, deal resolution and activity writes"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from ...errors import InvariantViolation, NotFoundError, RemoteServiceError
from ...models import PipedriveActivityType, PipedriveDeal, PipedrivePerson
from ...services.pipedrive_service import PipedriveService
from .context import RequestContext
from .repository import SyncRepository
from .schemas import InviteePayload

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_duration(start: datetime, end: datetime) -> str:
    """Pipedrive durations are HH:MM"""
    minutes = max(int((end - start).total_seconds() // 60), 0)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def primary_email(person: dict[str, Any]) -> Optional[str]:
    """Pick the primary email from a v1 (``email``) or v2 (``emails``) person body"""
    emails = person.get("emails") or person.get("email") or []
    if isinstance(emails, str):
        return emails
    for entry in emails:
        if entry.get("primary"):
            return entry.get("value")
    return emails[0].get("value") if emails else None


def build_activity_body(
    activity_type: PipedriveActivityType,
    invitee: InviteePayload,
    deal: PipedriveDeal,
    owner_id: Optional[int],
    person: Optional[PipedrivePerson] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "subject": activity_type.name,
        "type": activity_type.key_string,
        "deal_id": deal.pipedrive_id,
    }
    if owner_id is not None:
        body["owner_id"] = owner_id

    event = invitee.scheduled_event
    if event and event.start_time:
        start = _as_utc(event.start_time)
        body["due_date"] = start.strftime("%Y-%m-%d")
        body["due_time"] = start.strftime("%H:%M")
        if event.end_time:
            body["duration"] = format_duration(start, _as_utc(event.end_time))

    if person is not None:
        body["participants"] = [{"person_id": person.pipedrive_id, "primary": True}]
    return body


class CrmGateway:
    """Pipedrive reads and writes needed by a booking transition, with local caching of people and deals"""

    def __init__(self, db: Session, pipedrive: PipedriveService):
        self.db = db
        self.pipedrive = pipedrive
        self.repo = SyncRepository()

    async def find_user_by_email(self, ctx: RequestContext, *emails: Optional[str]) -> dict[str, Any]:
        """Match a Pipedrive user of the tenant by email (case-insensitive); earlier emails win"""
        candidates = [e.lower() for e in emails if e]
        if candidates:
            by_email = {(u.get("email") or "").lower(): u for u in await self.pipedrive.list_users(ctx.pipedrive)}
            for email in candidates:
                if email in by_email:
                    return by_email[email]
        raise NotFoundError(
            f"No Pipedrive user with email {', '.join(candidates) or '(none)'}",
            code="CRM_USER_NOT_FOUND",
            details={"emails": candidates},
        )

    async def resolve_deal(self, ctx: RequestContext, invitee: InviteePayload) -> PipedriveDeal:
        """
        Find the deal a booking belongs to.

        A deal id passed through the booking link's tracking wins; otherwise the
        invitee email is looked up as a Pipedrive person and their newest deal
        is used.
        """
        deal_id = invitee.deal_reference
        if deal_id is not None:
            deal = self.repo.get_deal_by_pipedrive_id(self.db, ctx.company_id, deal_id)
            if deal:
                return deal
            return await self._save_deal_by_id(ctx, deal_id)

        if not invitee.email:
            raise NotFoundError("Invitee has no email to look up a deal", code="DEAL_NOT_FOUND")

        person = await self._get_or_save_person_by_email(ctx, invitee.email)
        deals = await self.pipedrive.list_deals_for_person(ctx.pipedrive, person.pipedrive_id)
        if not deals:
            raise NotFoundError(
                f"No deal found for person {person.pipedrive_id}",
                code="DEAL_NOT_FOUND",
                details={"email": invitee.email},
            )
        newest = deals[0]
        return self.repo.create_deal(self.db, ctx.company_id, newest["id"], newest.get("title"), person)

    async def _save_deal_by_id(self, ctx: RequestContext, deal_id: int) -> PipedriveDeal:
        try:
            data = await self.pipedrive.get_deal(ctx.pipedrive, deal_id)
        except RemoteServiceError as e:
            if e.status_code == 404:
                raise NotFoundError(f"Deal {deal_id} not found in Pipedrive", code="DEAL_NOT_FOUND") from e
            raise
        if not data:
            raise NotFoundError(f"Deal {deal_id} not found in Pipedrive", code="DEAL_NOT_FOUND")

        person = None
        person_id = data.get("person_id")
        if isinstance(person_id, dict):  # v1 bodies embed the person
            person_id = person_id.get("value")
        if person_id:
            person = await self._get_or_save_person_by_id(ctx, int(person_id))
        return self.repo.create_deal(self.db, ctx.company_id, data["id"], data.get("title"), person)

    async def _get_or_save_person_by_id(self, ctx: RequestContext, person_id: int) -> PipedrivePerson:
        person = self.repo.get_person_by_pipedrive_id(self.db, ctx.company_id, person_id)
        if person:
            return person
        data = await self.pipedrive.get_person(ctx.pipedrive, person_id)
        return self.repo.create_person(self.db, ctx.company_id, data["id"], data.get("name"), primary_email(data))

    async def _get_or_save_person_by_email(self, ctx: RequestContext, email: str) -> PipedrivePerson:
        person = self.repo.get_person_by_email(self.db, ctx.company_id, email)
        if person:
            return person
        data = await self.pipedrive.search_person_by_email(ctx.pipedrive, email)
        if data is None:
            raise NotFoundError(f"No Pipedrive person with email {email}", code="PERSON_NOT_FOUND")
        return self.repo.create_person(self.db, ctx.company_id, data["id"], data.get("name"), email)

    async def create_activity(
        self,
        ctx: RequestContext,
        activity_type: PipedriveActivityType,
        invitee: InviteePayload,
        deal: PipedriveDeal,
        owner_id: Optional[int],
    ) -> dict[str, Any]:
        body = build_activity_body(activity_type, invitee, deal, owner_id, deal.person)
        activity = await self.pipedrive.add_activity(ctx.pipedrive, body)
        if not activity or activity.get("id") is None:
            raise InvariantViolation(
                f"Pipedrive accepted the activity for deal {deal.pipedrive_id} but returned no id",
                code="ACTIVITY_WITHOUT_ID",
                details={"deal_id": deal.pipedrive_id, "response": activity},
            )
        return activity

    async def retype_activity(
        self, ctx: RequestContext, activity_id: int, activity_type: PipedriveActivityType, done: bool = True
    ) -> dict[str, Any]:
        """Rewrite an existing activity's subject/type to the mapped activity type"""
        body = {"subject": activity_type.name, "type": activity_type.key_string, "done": done}
        return await self.pipedrive.update_activity(ctx.pipedrive, activity_id, body)

    async def mark_done(self, ctx: RequestContext, activity_id: int) -> dict[str, Any]:
        return await self.pipedrive.update_activity(ctx.pipedrive, activity_id, {"done": True})
