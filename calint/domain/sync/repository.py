"""Sync repository - Database operations for bookings, mappings and CRM mirrors"""

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, MultipleResultsFound
from sqlalchemy.orm import Session

from ...errors import InvariantViolation
from ...models import (
    CalendlyAccount,
    CalendlyEvent,
    CalendlyEventType,
    Company,
    EventTypeMapping,
    PipedriveActivity,
    PipedriveDeal,
    PipedrivePerson,
    User,
)

logger = logging.getLogger(__name__)


class SyncRepository:
    """Repository for reconciliation database operations"""

    # Tenant / principal

    @staticmethod
    def get_company(db: Session, company_id: str) -> Optional[Company]:
        return db.get(Company, company_id)

    @staticmethod
    def get_calendly_account_by_email(db: Session, email: str) -> Optional[CalendlyAccount]:
        """Get the linked scheduling account whose owner email matches"""
        return db.query(CalendlyAccount).filter(CalendlyAccount.email == email).first()

    @staticmethod
    def get_company_ids_for_event_type(db: Session, event_type_uri: str) -> list[str]:
        rows = (
            db.query(CalendlyEventType.company_id)
            .filter(CalendlyEventType.uri == event_type_uri)
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    @staticmethod
    def get_account_in_company(db: Session, company_id: str, email: Optional[str]) -> Optional[CalendlyAccount]:
        if not email:
            return None
        return (
            db.query(CalendlyAccount)
            .join(User, CalendlyAccount.user_id == User.id)
            .filter(User.company_id == company_id, CalendlyAccount.email == email)
            .first()
        )

    @staticmethod
    def get_first_user(db: Session, company_id: str) -> Optional[User]:
        """Fallback principal: the first user who connected for the tenant"""
        return db.query(User).filter(User.company_id == company_id).order_by(User.created_at.asc()).first()

    @staticmethod
    def mark_needs_reauth(db: Session, company_id: str) -> None:
        db.execute(update(Company).where(Company.id == company_id).values(needs_reauth=True))
        db.commit()

    # Mappings

    @staticmethod
    def get_event_type_by_uri(db: Session, company_id: str, uri: str) -> Optional[CalendlyEventType]:
        return (
            db.query(CalendlyEventType)
            .filter(CalendlyEventType.company_id == company_id, CalendlyEventType.uri == uri)
            .first()
        )

    @staticmethod
    def get_mapping(db: Session, company_id: str, event_type_id: str, kind: str) -> Optional[EventTypeMapping]:
        """Get the single mapping for (event type, kind); more than one is a data defect"""
        try:
            return (
                db.query(EventTypeMapping)
                .filter(
                    EventTypeMapping.company_id == company_id,
                    EventTypeMapping.calendly_event_type_id == event_type_id,
                    EventTypeMapping.type == kind,
                )
                .one_or_none()
            )
        except MultipleResultsFound as e:
            logger.error(f"❌ Duplicate '{kind}' mappings for event type {event_type_id} (company {company_id})")
            raise InvariantViolation(
                f"More than one '{kind}' mapping for event type {event_type_id}",
                code="DUPLICATE_MAPPING",
                details={"company_id": company_id, "event_type_id": event_type_id, "kind": kind},
            ) from e

    # Bookings

    @staticmethod
    def get_booking(db: Session, uri: str, for_update: bool = False) -> Optional[CalendlyEvent]:
        """Get a booking by invitee URI; ``for_update`` row-locks it on databases that support it"""
        query = db.query(CalendlyEvent).filter(CalendlyEvent.uri == uri)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def create_booking(db: Session, **booking_data) -> Optional[CalendlyEvent]:
        """
        Insert a booking row.
        Returns None when another worker inserted the same URI first.
        """
        booking = CalendlyEvent(**booking_data)
        db.add(booking)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"🔁 Booking {booking_data.get('uri')} was inserted concurrently")
            return None
        db.refresh(booking)
        return booking

    @staticmethod
    def compare_and_set_status(db: Session, uri: str, expected: str, new_status: str) -> bool:
        """Move a booking to ``new_status`` only if it is still in ``expected``"""
        result = db.execute(
            update(CalendlyEvent)
            .where(CalendlyEvent.uri == uri, CalendlyEvent.status == expected)
            .values(status=new_status)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    # Activity links

    @staticmethod
    def get_activity_for_booking(db: Session, booking_id: str) -> Optional[PipedriveActivity]:
        return db.query(PipedriveActivity).filter(PipedriveActivity.calendly_event_id == booking_id).first()

    @staticmethod
    def create_activity_link(db: Session, **activity_data) -> PipedriveActivity:
        activity = PipedriveActivity(**activity_data)
        db.add(activity)
        db.commit()
        db.refresh(activity)
        return activity

    # CRM mirrors

    @staticmethod
    def get_person_by_pipedrive_id(db: Session, company_id: str, pipedrive_id: int) -> Optional[PipedrivePerson]:
        return (
            db.query(PipedrivePerson)
            .filter(PipedrivePerson.company_id == company_id, PipedrivePerson.pipedrive_id == pipedrive_id)
            .first()
        )

    @staticmethod
    def get_person_by_email(db: Session, company_id: str, email: str) -> Optional[PipedrivePerson]:
        return (
            db.query(PipedrivePerson)
            .filter(PipedrivePerson.company_id == company_id, PipedrivePerson.email == email)
            .first()
        )

    @staticmethod
    def create_person(db: Session, company_id: str, pipedrive_id: int, name: Optional[str], email: Optional[str]):
        existing = SyncRepository.get_person_by_pipedrive_id(db, company_id, pipedrive_id)
        if existing:
            return existing
        person = PipedrivePerson(company_id=company_id, pipedrive_id=pipedrive_id, name=name, email=email)
        db.add(person)
        db.commit()
        db.refresh(person)
        return person

    @staticmethod
    def get_deal_by_pipedrive_id(db: Session, company_id: str, pipedrive_id: int) -> Optional[PipedriveDeal]:
        return (
            db.query(PipedriveDeal)
            .filter(PipedriveDeal.company_id == company_id, PipedriveDeal.pipedrive_id == pipedrive_id)
            .first()
        )

    @staticmethod
    def create_deal(
        db: Session, company_id: str, pipedrive_id: int, name: Optional[str], person: Optional[PipedrivePerson]
    ) -> PipedriveDeal:
        existing = SyncRepository.get_deal_by_pipedrive_id(db, company_id, pipedrive_id)
        if existing:
            return existing
        deal = PipedriveDeal(
            company_id=company_id,
            pipedrive_id=pipedrive_id,
            name=name,
            pipedrive_person_id=person.id if person else None,
        )
        db.add(deal)
        db.commit()
        db.refresh(deal)
        return deal
