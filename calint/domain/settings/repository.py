"""Settings repository - catalogue, mapping and panel queries"""

from typing import Any, Optional

from sqlalchemy.orm import Session

from ...models import (
    CalendlyEvent,
    CalendlyEventType,
    EventTypeMapping,
    PipedriveActivity,
    PipedriveActivityType,
    PipedriveDeal,
)


class SettingsRepository:
    """Repository for tenant configuration"""

    @staticmethod
    def get_event_types(db: Session, company_id: str) -> list[CalendlyEventType]:
        return (
            db.query(CalendlyEventType)
            .filter(CalendlyEventType.company_id == company_id)
            .order_by(CalendlyEventType.name)
            .all()
        )

    @staticmethod
    def get_activity_types(db: Session, company_id: str) -> list[PipedriveActivityType]:
        return (
            db.query(PipedriveActivityType)
            .filter(PipedriveActivityType.company_id == company_id)
            .order_by(PipedriveActivityType.name)
            .all()
        )

    @staticmethod
    def get_mappings(db: Session, company_id: str) -> list[EventTypeMapping]:
        return db.query(EventTypeMapping).filter(EventTypeMapping.company_id == company_id).all()

    @staticmethod
    def get_event_type(db: Session, company_id: str, event_type_id: str) -> Optional[CalendlyEventType]:
        return (
            db.query(CalendlyEventType)
            .filter(CalendlyEventType.company_id == company_id, CalendlyEventType.id == event_type_id)
            .first()
        )

    @staticmethod
    def get_activity_type(db: Session, company_id: str, activity_type_id: str) -> Optional[PipedriveActivityType]:
        return (
            db.query(PipedriveActivityType)
            .filter(PipedriveActivityType.company_id == company_id, PipedriveActivityType.id == activity_type_id)
            .first()
        )

    @staticmethod
    def add_missing_activity_types(db: Session, company_id: str, items: list[dict[str, Any]]) -> int:
        """Insert Pipedrive activity types not seen before; existing rows are left alone"""
        known = {
            row[0]
            for row in db.query(PipedriveActivityType.pipedrive_id)
            .filter(PipedriveActivityType.company_id == company_id)
            .all()
        }
        added = 0
        for item in items:
            if item["id"] in known:
                continue
            db.add(
                PipedriveActivityType(
                    company_id=company_id,
                    pipedrive_id=item["id"],
                    name=item.get("name") or item.get("key_string"),
                    key_string=item.get("key_string") or "",
                )
            )
            known.add(item["id"])
            added += 1
        db.commit()
        return added

    @staticmethod
    def add_missing_event_types(db: Session, company_id: str, items: list[dict[str, Any]]) -> int:
        """Insert Calendly event types not seen before; existing rows are left alone"""
        known = {
            row[0]
            for row in db.query(CalendlyEventType.uri).filter(CalendlyEventType.company_id == company_id).all()
        }
        added = 0
        for item in items:
            if item["uri"] in known:
                continue
            profile = item.get("profile") or {}
            db.add(
                CalendlyEventType(
                    company_id=company_id,
                    uri=item["uri"],
                    name=item.get("name") or item["uri"],
                    slug=item.get("slug"),
                    scheduling_url=item.get("scheduling_url"),
                    cal_user_uri=profile.get("owner"),
                    cal_username=profile.get("name"),
                )
            )
            known.add(item["uri"])
            added += 1
        db.commit()
        return added

    @staticmethod
    def upsert_mapping(
        db: Session, company_id: str, event_type_id: str, kind: str, activity_type_id: str
    ) -> EventTypeMapping:
        """Update-or-create on (event type, kind, tenant); caller commits"""
        mapping = (
            db.query(EventTypeMapping)
            .filter(
                EventTypeMapping.company_id == company_id,
                EventTypeMapping.calendly_event_type_id == event_type_id,
                EventTypeMapping.type == kind,
            )
            .first()
        )
        if mapping:
            mapping.pipedrive_activity_type_id = activity_type_id
        else:
            mapping = EventTypeMapping(
                company_id=company_id,
                calendly_event_type_id=event_type_id,
                type=kind,
                pipedrive_activity_type_id=activity_type_id,
            )
            db.add(mapping)
        return mapping

    @staticmethod
    def get_panel_rows(
        db: Session, company_id: str, deal_id: int, activity_ids: list[int]
    ) -> list[tuple[PipedriveActivity, CalendlyEvent]]:
        """Activities of a deal that were produced by a booking, joined to that booking"""
        if not activity_ids:
            return []
        return (
            db.query(PipedriveActivity, CalendlyEvent)
            .join(CalendlyEvent, PipedriveActivity.calendly_event_id == CalendlyEvent.id)
            .join(PipedriveDeal, PipedriveActivity.pipedrive_deal_id == PipedriveDeal.id)
            .filter(
                PipedriveDeal.company_id == company_id,
                PipedriveDeal.pipedrive_id == deal_id,
                PipedriveActivity.pipedrive_id.in_(activity_ids),
            )
            .order_by(PipedriveActivity.created_at.desc())
            .all()
        )

    @staticmethod
    def get_activity_link(
        db: Session, company_id: str, deal_id: int, activity_id: int
    ) -> Optional[PipedriveActivity]:
        return (
            db.query(PipedriveActivity)
            .join(PipedriveDeal, PipedriveActivity.pipedrive_deal_id == PipedriveDeal.id)
            .filter(
                PipedriveDeal.company_id == company_id,
                PipedriveDeal.pipedrive_id == deal_id,
                PipedriveActivity.pipedrive_id == activity_id,
            )
            .first()
        )
