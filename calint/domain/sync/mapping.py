"""Mapping resolution: (tenant, event type, transition kind) -> activity type"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...enums import TransitionKind
from ...errors import MissingMappingError
from ...models import EventTypeMapping
from .repository import SyncRepository

logger = logging.getLogger(__name__)


class MappingResolver:
    """
    Reads the tenant's mapping table on every call so the latest saved
    configuration always wins. Absence is returned as None; a failing
    database surfaces as the SQLAlchemy error, never as absence.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = SyncRepository()

    def resolve(
        self, company_id: str, event_type_uri: Optional[str], kind: TransitionKind
    ) -> Optional[EventTypeMapping]:
        if not event_type_uri:
            return None
        event_type = self.repo.get_event_type_by_uri(self.db, company_id, event_type_uri)
        if event_type is None:
            logger.debug(f"🔍 Event type {event_type_uri} unknown for company {company_id}")
            return None
        return self.repo.get_mapping(self.db, company_id, event_type.id, kind.value)

    def require(self, company_id: str, event_type_uri: Optional[str], kind: TransitionKind) -> EventTypeMapping:
        """Resolve or raise MissingMappingError (a configuration gap, not a crash)"""
        mapping = self.resolve(company_id, event_type_uri, kind)
        if mapping is None:
            raise MissingMappingError(kind.value, event_type_uri)
        return mapping
