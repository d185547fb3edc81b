"""Sync domain schemas - Calendly webhook bodies"""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict


class CalendlyModel(BaseModel):
    # Calendly adds fields over time; unknown ones are ignored
    model_config = ConfigDict(extra="ignore")


class EventMembership(CalendlyModel):
    user: Optional[str] = None
    user_email: Optional[str] = None
    user_name: Optional[str] = None


class Location(CalendlyModel):
    type: Optional[str] = None
    location: Optional[str] = None
    join_url: Optional[str] = None


class ScheduledEvent(CalendlyModel):
    uri: Optional[str] = None
    name: Optional[str] = None
    event_type: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    location: Optional[Location] = None
    event_memberships: list[EventMembership] = []


class Tracking(CalendlyModel):
    utm_campaign: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    salesforce_uuid: Optional[str] = None  # carries the Pipedrive deal id when the link was prefilled


class InviteePayload(CalendlyModel):
    uri: str
    email: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    scheduled_event: Optional[ScheduledEvent] = None
    location: Optional[Location] = None
    reschedule_url: Optional[str] = None
    cancel_url: Optional[str] = None
    rescheduled: bool = False
    old_invitee: Optional[Union[str, dict[str, Any]]] = None
    new_invitee: Optional[Union[str, dict[str, Any]]] = None
    tracking: Optional[Tracking] = None

    @property
    def host_email(self) -> Optional[str]:
        """Email of the first event member (the Calendly host)"""
        if self.scheduled_event and self.scheduled_event.event_memberships:
            return self.scheduled_event.event_memberships[0].user_email
        return None

    @property
    def event_type_uri(self) -> Optional[str]:
        return self.scheduled_event.event_type if self.scheduled_event else None

    @property
    def join_url(self) -> str:
        for location in (self.scheduled_event.location if self.scheduled_event else None, self.location):
            if location and location.join_url:
                return location.join_url
        return ""

    @property
    def deal_reference(self) -> Optional[int]:
        """Pipedrive deal id passed through the tracking parameter, if numeric"""
        if self.tracking and self.tracking.salesforce_uuid:
            try:
                return int(self.tracking.salesforce_uuid)
            except ValueError:
                return None
        return None


class WebhookPayload(CalendlyModel):
    event: str
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    payload: InviteePayload
