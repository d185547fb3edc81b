import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_uuid():
    return str(uuid.uuid4())


class Company(Base):
    """Tenant: one Pipedrive company paired with one Calendly organization"""

    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=True)
    domain = Column(String(255), unique=True, index=True, nullable=False)  # Pipedrive company_domain
    calendly_org = Column(String(500), nullable=True)  # Calendly organization URI
    needs_reauth = Column(Boolean, default=False, nullable=False)  # Set when a token refresh was rejected

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    users = relationship("User", back_populates="company", cascade="all, delete-orphan", passive_deletes=True)


class User(Base):
    """Principal: a Pipedrive user, keyed by the Pipedrive numeric user id"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)

    # OAuth tokens (encrypted)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    token_issued_at = Column(DateTime, nullable=True)
    api_domain = Column(String(255), nullable=True)  # e.g. https://acme.pipedrive.com
    scope = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    company = relationship("Company", back_populates="users")
    calendly_account = relationship(
        "CalendlyAccount", back_populates="user", uselist=False, cascade="all, delete-orphan", passive_deletes=True
    )


class CalendlyAccount(Base):
    """Scheduling account linked to exactly one principal"""

    __tablename__ = "calendly_accounts"

    uri = Column(String(500), primary_key=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    organization = Column(String(500), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    # OAuth tokens (encrypted)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    token_issued_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="calendly_account")


class CalendlyEventType(Base):
    __tablename__ = "calendly_event_types"
    __table_args__ = (UniqueConstraint("uri", "company_id", name="uq_event_type_uri_company"),)

    id = Column(String(36), primary_key=True, default=generate_uuid)
    uri = Column(String(500), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=True)
    scheduling_url = Column(String(500), nullable=True)
    cal_user_uri = Column(String(500), nullable=True)  # profile owner
    cal_username = Column(String(255), nullable=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)


class PipedriveActivityType(Base):
    __tablename__ = "pipedrive_activity_types"
    __table_args__ = (UniqueConstraint("pipedrive_id", "company_id", name="uq_activity_type_company"),)

    id = Column(String(36), primary_key=True, default=generate_uuid)
    pipedrive_id = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False)
    key_string = Column(String(255), nullable=False)  # value sent as the activity "type"
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)


class EventTypeMapping(Base):
    """(event type, transition kind) -> activity type, scoped to a tenant"""

    __tablename__ = "event_type_mappings"
    __table_args__ = (
        UniqueConstraint("type", "company_id", "calendly_event_type_id", name="uq_mapping_kind_event_type"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    type = Column(String(20), nullable=False)  # TransitionKind value
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    calendly_event_type_id = Column(
        String(36), ForeignKey("calendly_event_types.id", ondelete="CASCADE"), nullable=False
    )
    pipedrive_activity_type_id = Column(
        String(36), ForeignKey("pipedrive_activity_types.id", ondelete="CASCADE"), nullable=False
    )

    event_type = relationship("CalendlyEventType")
    activity_type = relationship("PipedriveActivityType")


class CalendlyEvent(Base):
    """Booking: one scheduled meeting instance, never deleted (idempotency ledger)"""

    __tablename__ = "calendly_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    uri = Column(String(500), unique=True, index=True, nullable=False)  # invitee URI
    status = Column(String(20), nullable=False)  # BookingStatus value
    event_type_uri = Column(String(500), nullable=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    join_url = Column(String(1000), nullable=True)
    reschedule_url = Column(String(1000), nullable=True)
    cancel_url = Column(String(1000), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    activity = relationship("PipedriveActivity", back_populates="calendly_event", uselist=False)


class PipedrivePerson(Base):
    __tablename__ = "pipedrive_people"
    __table_args__ = (UniqueConstraint("pipedrive_id", "company_id", name="uq_person_company"),)

    id = Column(String(36), primary_key=True, default=generate_uuid)
    pipedrive_id = Column(Integer, nullable=False)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)


class PipedriveDeal(Base):
    __tablename__ = "pipedrive_deals"
    __table_args__ = (UniqueConstraint("pipedrive_id", "company_id", name="uq_deal_company"),)

    id = Column(String(36), primary_key=True, default=generate_uuid)
    pipedrive_id = Column(Integer, nullable=False)
    name = Column(String(500), nullable=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    pipedrive_person_id = Column(
        String(36), ForeignKey("pipedrive_people.id", ondelete="CASCADE"), nullable=True
    )

    person = relationship("PipedrivePerson")


class PipedriveActivity(Base):
    """Link between a booking and the CRM activity it produced"""

    __tablename__ = "pipedrive_activities"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    pipedrive_id = Column(Integer, nullable=False, index=True)
    name = Column(String(500), nullable=True)
    pipedrive_deal_id = Column(String(36), ForeignKey("pipedrive_deals.id", ondelete="CASCADE"), nullable=False)
    calendly_event_id = Column(
        String(36), ForeignKey("calendly_events.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    activity_type_id = Column(
        String(36), ForeignKey("pipedrive_activity_types.id", ondelete="SET NULL"), nullable=True
    )

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    deal = relationship("PipedriveDeal")
    calendly_event = relationship("CalendlyEvent", back_populates="activity")
    activity_type = relationship("PipedriveActivityType")
