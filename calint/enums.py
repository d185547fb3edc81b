from enum import Enum


class TransitionKind(str, Enum):
    """Semantic category of a booking lifecycle change; one mapping per kind"""

    CREATED = "created"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    NO_SHOW = "noshow"


class BookingStatus(str, Enum):
    CREATED = "created"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class Platform(str, Enum):
    PIPEDRIVE = "pipedrive"
    CALENDLY = "calendly"
