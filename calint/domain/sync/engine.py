"""
Reconciliation Engine

Turns one Calendly booking notification into at most one Pipedrive activity
write. Steps run in a fixed order and the first failure aborts the rest:

1. decide the transition from the event and the stored booking
2. identify tenant and acting principal
3. resolve the mapping for the transition kind (no CRM call before this)
4. obtain a valid Pipedrive token
5. match the CRM user and resolve the deal (creations only)
6. write the booking row, then the remote activity, then the link row

Failures are raised inside and converted to a ``ReconciliationResult`` here,
so callers never see an exception for an expected outcome.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...enums import BookingStatus, Platform, TransitionKind
from ...errors import CalIntError, DataAccessError, ErrorKind, InvariantViolation, NotFoundError
from ...models import CalendlyEvent, Company, EventTypeMapping, User
from ...services.pipedrive_service import PipedriveService
from ...services.token_bridge import TokenRefreshBridge
from .context import RequestContext
from .crm import CrmGateway
from .locks import KeyedLock, booking_locks
from .mapping import MappingResolver
from .repository import SyncRepository
from .schemas import InviteePayload, WebhookPayload
from .transitions import Action, Decision, classify, decide

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    REPLAYED = "replayed"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass
class ReconciliationResult:
    booking_uri: Optional[str]
    event: Optional[str]
    outcome: Optional[Outcome] = None
    transition: Optional[TransitionKind] = None
    company_id: Optional[str] = None
    activity_id: Optional[int] = None
    error: Optional[CalIntError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.booking_uri,
            "event": self.event,
            "outcome": self.outcome.value if self.outcome else None,
            "transition": self.transition.value if self.transition else None,
            "activity_id": self.activity_id,
            "error": self.error.to_dict() if self.error else None,
        }


class ReconciliationEngine:
    def __init__(
        self,
        db: Session,
        pipedrive: PipedriveService,
        bridge: TokenRefreshBridge,
        resolver: Optional[MappingResolver] = None,
        locks: Optional[KeyedLock] = None,
    ):
        self.db = db
        self.bridge = bridge
        self.crm = CrmGateway(db, pipedrive)
        self.resolver = resolver or MappingResolver(db)
        self.locks = booking_locks if locks is None else locks
        self.repo = SyncRepository()

    async def handle(self, webhook: WebhookPayload) -> ReconciliationResult:
        invitee = webhook.payload
        result = ReconciliationResult(booking_uri=invitee.uri, event=webhook.event)
        try:
            # Unknown events are dropped before any lock or query
            classify(webhook.event, invitee.rescheduled)
            async with self.locks.hold(invitee.uri):
                await self._reconcile(webhook, result)
        except CalIntError as e:
            # Releases the booking row lock; completed steps were already committed
            self.db.rollback()
            self._record_failure(result, e)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Database error while reconciling {invitee.uri}: {e}")
            self._record_failure(result, DataAccessError(f"Database error: {e.__class__.__name__}", code="DATABASE_ERROR"))
        return result

    def _record_failure(self, result: ReconciliationResult, error: CalIntError) -> None:
        result.error = error
        result.outcome = Outcome.IGNORED if error.kind == ErrorKind.IGNORED else Outcome.FAILED
        context = f"uri={result.booking_uri} event={result.event} company={result.company_id} code={error.code}"

        if error.kind == ErrorKind.IGNORED:
            logger.info(f"ℹ️ Ignoring webhook: {error.message} ({context})")
        elif error.kind in (ErrorKind.NOT_FOUND, ErrorKind.CONFIGURATION):
            logger.warning(f"⚠️ Notification not applied: {error.message} ({context})")
        elif error.kind in (ErrorKind.CREDENTIAL, ErrorKind.TRANSIENT):
            logger.warning(f"⚠️ Notification failed: {error.message} ({context})")
        else:
            logger.error(f"❌ Invariant violated: {error.message} ({context}, details={error.details})")

    async def _reconcile(self, webhook: WebhookPayload, result: ReconciliationResult) -> None:
        invitee = webhook.payload
        booking = self.repo.get_booking(self.db, invitee.uri, for_update=True)

        decision = decide(
            webhook.event,
            invitee.rescheduled,
            invitee.old_invitee is not None,
            booking.status if booking else None,
            invitee.uri,
        )
        result.transition = decision.kind

        company, principal = self._identify(invitee, booking)
        result.company_id = company.id

        if decision.action == Action.REPLAY and self._is_complete_replay(booking, decision, result):
            return

        event_type_uri = invitee.event_type_uri or (booking.event_type_uri if booking else None)
        mapping = self.resolver.require(company.id, event_type_uri, decision.kind)

        token = await self.bridge.ensure_valid(self.db, Platform.PIPEDRIVE, principal.id)
        ctx = RequestContext(company=company, principal=principal, pipedrive=token)

        if decision.kind == TransitionKind.CREATED:
            await self._create(ctx, invitee, booking, mapping, decision, event_type_uri, result)
        else:
            await self._update(ctx, booking, mapping, decision, result)

    def _is_complete_replay(
        self, booking: CalendlyEvent, decision: Decision, result: ReconciliationResult
    ) -> bool:
        """A redelivery needs no work unless its earlier activity creation never finished"""
        link = self.repo.get_activity_for_booking(self.db, booking.id)
        if (
            decision.kind == TransitionKind.CREATED
            and link is None
            and booking.status == BookingStatus.CREATED.value
        ):
            logger.info(f"🔁 Booking {booking.uri} recorded without an activity; completing creation")
            return False

        logger.info(f"🔁 Replay of {decision.kind.value} for {booking.uri} (status {booking.status}); nothing to do")
        result.outcome = Outcome.REPLAYED
        result.activity_id = link.pipedrive_id if link else None
        return True

    def _identify(self, invitee: InviteePayload, booking: Optional[CalendlyEvent]) -> tuple[Company, User]:
        """Find the tenant and the principal whose CRM token acts for this booking"""
        if booking is not None:
            company = self.repo.get_company(self.db, booking.company_id)
            account = self.repo.get_account_in_company(self.db, booking.company_id, invitee.host_email)
            principal = account.user if account else self.repo.get_first_user(self.db, booking.company_id)
        else:
            account = None
            if invitee.host_email:
                account = self.repo.get_calendly_account_by_email(self.db, invitee.host_email)
            if account is not None:
                principal = account.user
                company = principal.company
            else:
                company = self._company_for_event_type(invitee.event_type_uri)
                principal = self.repo.get_first_user(self.db, company.id)

        if company is None or principal is None:
            raise NotFoundError(
                f"No connected user for booking {invitee.uri}",
                code="PRINCIPAL_NOT_FOUND",
                details={"host_email": invitee.host_email},
            )
        return company, principal

    def _company_for_event_type(self, event_type_uri: Optional[str]) -> Company:
        company_ids = self.repo.get_company_ids_for_event_type(self.db, event_type_uri) if event_type_uri else []
        if not company_ids:
            raise NotFoundError(
                f"No tenant owns event type {event_type_uri}",
                code="TENANT_NOT_FOUND",
                details={"event_type_uri": event_type_uri},
            )
        if len(company_ids) > 1:
            raise InvariantViolation(
                f"Event type {event_type_uri} is registered to {len(company_ids)} tenants",
                code="AMBIGUOUS_TENANT",
                details={"event_type_uri": event_type_uri, "company_ids": company_ids},
            )
        return self.repo.get_company(self.db, company_ids[0])

    async def _create(
        self,
        ctx: RequestContext,
        invitee: InviteePayload,
        booking: Optional[CalendlyEvent],
        mapping: EventTypeMapping,
        decision: Decision,
        event_type_uri: Optional[str],
        result: ReconciliationResult,
    ) -> None:
        crm_user = await self.crm.find_user_by_email(ctx, invitee.host_email, ctx.principal.email)
        deal = await self.crm.resolve_deal(ctx, invitee)

        if booking is None:
            booking = self.repo.create_booking(
                self.db,
                uri=invitee.uri,
                status=BookingStatus.CREATED.value,
                event_type_uri=event_type_uri,
                company_id=ctx.company_id,
                join_url=invitee.join_url,
                reschedule_url=invitee.reschedule_url,
                cancel_url=invitee.cancel_url,
            )
            if booking is None:
                result.outcome = Outcome.REPLAYED
                return

        if decision.after_reschedule:
            logger.info(f"📅 {invitee.uri} is the new slot of a rescheduled booking ({invitee.old_invitee})")

        activity = await self.crm.create_activity(ctx, mapping.activity_type, invitee, deal, crm_user.get("id"))
        link = self.repo.create_activity_link(
            self.db,
            pipedrive_id=activity["id"],
            name=activity.get("subject"),
            pipedrive_deal_id=deal.id,
            calendly_event_id=booking.id,
            activity_type_id=mapping.pipedrive_activity_type_id,
        )
        logger.info(f"✅ Created activity {link.pipedrive_id} for booking {invitee.uri} (deal {deal.pipedrive_id})")
        result.outcome = Outcome.CREATED
        result.activity_id = link.pipedrive_id

    async def _update(
        self,
        ctx: RequestContext,
        booking: CalendlyEvent,
        mapping: EventTypeMapping,
        decision: Decision,
        result: ReconciliationResult,
    ) -> None:
        link = self.repo.get_activity_for_booking(self.db, booking.id)
        if link is not None:
            await self.crm.retype_activity(ctx, link.pipedrive_id, mapping.activity_type)
        else:
            logger.warning(f"⚠️ Booking {booking.uri} has no linked activity; only its status is updated")

        if not self.repo.compare_and_set_status(
            self.db, booking.uri, decision.from_status.value, decision.to_status.value
        ):
            self.db.rollback()
            logger.info(f"🔁 Booking {booking.uri} left '{decision.from_status.value}' concurrently")
            result.outcome = Outcome.REPLAYED
            result.activity_id = link.pipedrive_id if link else None
            return

        if link is not None:
            link.activity_type_id = mapping.pipedrive_activity_type_id
        self.db.commit()

        logger.info(f"✅ Booking {booking.uri} -> {decision.to_status.value}")
        result.outcome = Outcome.UPDATED
        result.activity_id = link.pipedrive_id if link else None
