"""Settings domain schemas - Pydantic models for validation"""

from typing import Any, Optional

from pydantic import BaseModel

from ...models import CalendlyEventType, EventTypeMapping, PipedriveActivityType


class ApiResponse(BaseModel):
    """Envelope returned by every data endpoint"""

    success: bool = True
    error: Optional[str] = None
    data: Any = None


class MappingSelection(BaseModel):
    id: str  # local activity type id


class MappingSelections(BaseModel):
    created: Optional[MappingSelection] = None
    cancelled: Optional[MappingSelection] = None
    rescheduled: Optional[MappingSelection] = None
    noshow: Optional[MappingSelection] = None


class MappingCreateRequest(BaseModel):
    eventTypeId: str
    mappings: MappingSelections


class ShowUpdateRequest(BaseModel):
    activityId: int
    dealId: int
    show: bool


class EventTypeResponse(BaseModel):
    id: str
    uri: str
    name: str
    slug: Optional[str] = None
    schedulingUrl: Optional[str] = None
    calUserUri: Optional[str] = None
    calUsername: Optional[str] = None

    @classmethod
    def from_model(cls, event_type: CalendlyEventType) -> "EventTypeResponse":
        return cls(
            id=event_type.id,
            uri=event_type.uri,
            name=event_type.name,
            slug=event_type.slug,
            schedulingUrl=event_type.scheduling_url,
            calUserUri=event_type.cal_user_uri,
            calUsername=event_type.cal_username,
        )


class ActivityTypeResponse(BaseModel):
    id: str
    pipedriveId: int
    name: str
    keyString: str

    @classmethod
    def from_model(cls, activity_type: PipedriveActivityType) -> "ActivityTypeResponse":
        return cls(
            id=activity_type.id,
            pipedriveId=activity_type.pipedrive_id,
            name=activity_type.name,
            keyString=activity_type.key_string,
        )


class TypeMappingResponse(BaseModel):
    id: str
    type: str
    calendlyEventTypeId: str
    pipedriveActivityTypeId: str

    @classmethod
    def from_model(cls, mapping: EventTypeMapping) -> "TypeMappingResponse":
        return cls(
            id=mapping.id,
            type=mapping.type,
            calendlyEventTypeId=mapping.calendly_event_type_id,
            pipedriveActivityTypeId=mapping.pipedrive_activity_type_id,
        )


class SettingsData(BaseModel):
    calendlyEventTypes: list[EventTypeResponse]
    pipedriveActivityTypes: list[ActivityTypeResponse]
    typeMappings: list[TypeMappingResponse]


class PanelRow(BaseModel):
    id: int
    header: Optional[str] = None
    join_meeting: Optional[str] = None
    reschedule_meeting: Optional[str] = None
    cancel_meeting: Optional[str] = None
