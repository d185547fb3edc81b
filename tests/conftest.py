"""
Test configuration and fixtures.

Provides:
- In-memory SQLite session per test (StaticPool so every connection sees it)
- In-memory fakes for the Pipedrive and Calendly clients and the token bridge
- A connected tenant with event type, activity types and optional mappings
- HTTPX AsyncClient against the app with dependencies overridden
"""

import asyncio
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Generator, Optional

# Must be set before the package reads its configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["CALENDLY_WEBHOOK_SIGNING_KEY"] = ""
os.environ["CALENDLY_WEBHOOK_URL"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from calint.database import Base, get_db
from calint.deps import get_calendly_service, get_pipedrive_service, get_token_bridge
from calint.domain.sync.locks import KeyedLock
from calint.enums import Platform, TransitionKind
from calint.errors import RemoteServiceError
from calint.main import app
from calint.models import (
    CalendlyAccount,
    CalendlyEventType,
    Company,
    EventTypeMapping,
    PipedriveActivityType,
    User,
)
from calint.security_utils import encrypt_token
from calint.services.http_client import AccessToken

HOST_EMAIL = "a@x.com"
INVITEE_EMAIL = "ivy@client.com"
ORG_URI = "https://api.calendly.com/organizations/ORG1"
CALENDLY_USER_URI = "https://api.calendly.com/users/U1"


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="function")
def db_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(db_engine) -> Generator[Session, None, None]:
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)()
    yield session
    session.close()


# =============================================================================
# Platform fakes
# =============================================================================


class FakePipedrive:
    """In-memory stand-in for PipedriveService; records every call"""

    def __init__(self):
        self.calls: list[tuple[str, Any]] = []
        self.failures: dict[str, Exception] = {}
        self.users = [{"id": 101, "name": "Alice", "email": HOST_EMAIL}]
        self.me = {
            "id": 101,
            "name": "Alice",
            "email": HOST_EMAIL,
            "company_domain": "acme",
            "company_name": "Acme Inc",
        }
        self.persons = {
            INVITEE_EMAIL: {"id": 501, "name": "Ivy", "emails": [{"value": INVITEE_EMAIL, "primary": True}]}
        }
        self.deals = {9001: {"id": 9001, "title": "Ivy onboarding", "person_id": 501}}
        self.activity_types = [
            {"id": 1, "name": "Meeting booked", "key_string": "meeting"},
            {"id": 2, "name": "Meeting cancelled", "key_string": "meeting_cancelled"},
        ]
        self.activities: dict[int, dict[str, Any]] = {}
        self._next_activity_id = 7001

    def _record(self, name: str, payload: Any = None) -> None:
        self.calls.append((name, payload))
        if name in self.failures:
            raise self.failures[name]

    def calls_to(self, name: str) -> list[Any]:
        return [payload for called, payload in self.calls if called == name]

    async def get_current_user(self, auth: AccessToken) -> dict[str, Any]:
        self._record("get_current_user")
        return self.me

    async def list_users(self, auth: AccessToken) -> list[dict[str, Any]]:
        self._record("list_users")
        return self.users

    async def list_activity_types(self, auth: AccessToken) -> list[dict[str, Any]]:
        self._record("list_activity_types")
        return self.activity_types

    async def search_person_by_email(self, auth: AccessToken, email: str) -> Optional[dict[str, Any]]:
        self._record("search_person_by_email", email)
        return self.persons.get(email)

    async def get_person(self, auth: AccessToken, person_id: int) -> dict[str, Any]:
        self._record("get_person", person_id)
        for person in self.persons.values():
            if person["id"] == person_id:
                return person
        raise RemoteServiceError.from_status("pipedrive", 404, "pipedrive returned HTTP 404")

    async def list_deals_for_person(self, auth: AccessToken, person_id: int, limit: int = 15) -> list[dict[str, Any]]:
        self._record("list_deals_for_person", person_id)
        return [d for d in self.deals.values() if d.get("person_id") == person_id]

    async def get_deal(self, auth: AccessToken, deal_id: int) -> dict[str, Any]:
        self._record("get_deal", deal_id)
        if deal_id not in self.deals:
            raise RemoteServiceError.from_status("pipedrive", 404, "pipedrive returned HTTP 404")
        return self.deals[deal_id]

    async def add_activity(self, auth: AccessToken, body: dict[str, Any]) -> dict[str, Any]:
        self._record("add_activity", body)
        await asyncio.sleep(0.01)  # let concurrent deliveries interleave
        activity = {"id": self._next_activity_id, "done": False, **body}
        self.activities[activity["id"]] = activity
        self._next_activity_id += 1
        return activity

    async def update_activity(self, auth: AccessToken, activity_id: int, body: dict[str, Any]) -> dict[str, Any]:
        self._record("update_activity", (activity_id, body))
        self.activities.setdefault(activity_id, {"id": activity_id}).update(body)
        return self.activities[activity_id]

    async def list_deal_activities(self, auth: AccessToken, deal_id: int, done: int = 0) -> list[dict[str, Any]]:
        self._record("list_deal_activities", deal_id)
        return [
            a for a in self.activities.values() if a.get("deal_id") == deal_id and bool(a.get("done")) == bool(done)
        ]


class FakeCalendly:
    def __init__(self):
        self.calls: list[tuple[str, Any]] = []
        self.failures: dict[str, Exception] = {}
        self.user = {
            "uri": CALENDLY_USER_URI,
            "name": "Alice",
            "email": HOST_EMAIL,
            "current_organization": ORG_URI,
        }
        self.event_types = [
            {
                "uri": "et-1",
                "name": "Intro call",
                "slug": "intro-call",
                "scheduling_url": "https://calendly.com/acme/intro-call",
                "profile": {"owner": CALENDLY_USER_URI, "name": "Alice"},
            },
            {"uri": "et-2", "name": "Demo", "slug": "demo", "profile": {}},
        ]

    def _record(self, name: str, payload: Any = None) -> None:
        self.calls.append((name, payload))
        if name in self.failures:
            raise self.failures[name]

    async def get_user_info(self, auth: AccessToken) -> dict[str, Any]:
        self._record("get_user_info")
        return self.user

    async def list_organization_event_types(
        self, auth: AccessToken, organization_uri: str, count: int = 100
    ) -> list[dict[str, Any]]:
        self._record("list_organization_event_types", organization_uri)
        return self.event_types

    async def create_webhook_subscription(self, auth: AccessToken, url: str, organization_uri: str, **kwargs):
        self._record("create_webhook_subscription", {"url": url, "organization": organization_uri, **kwargs})
        return {"uri": "https://api.calendly.com/webhook_subscriptions/W1"}


class FakeBridge:
    """Token bridge that hands out fixed tokens, or raises a configured error"""

    def __init__(self):
        self.calls: list[tuple[Platform, Any]] = []
        self.error: Optional[Exception] = None

    async def ensure_valid(self, db: Session, platform: Platform, key: Any) -> AccessToken:
        self.calls.append((platform, key))
        if self.error is not None:
            raise self.error
        return AccessToken(f"{platform.value}-token", "https://acme.pipedrive.com")


@pytest.fixture
def pipedrive() -> FakePipedrive:
    return FakePipedrive()


@pytest.fixture
def calendly() -> FakeCalendly:
    return FakeCalendly()


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


# =============================================================================
# Tenant fixtures
# =============================================================================


@dataclass
class Tenant:
    company: Company
    user: User
    account: CalendlyAccount
    event_type: CalendlyEventType
    activity_types: dict[TransitionKind, PipedriveActivityType] = field(default_factory=dict)

    def map(self, db: Session, *kinds: TransitionKind) -> None:
        for kind in kinds:
            db.add(
                EventTypeMapping(
                    type=kind.value,
                    company_id=self.company.id,
                    calendly_event_type_id=self.event_type.id,
                    pipedrive_activity_type_id=self.activity_types[kind].id,
                )
            )
        db.commit()


@pytest.fixture
def tenant(db: Session) -> Tenant:
    """A tenant with a connected principal and scheduling account, but no mappings"""
    company = Company(name="Acme Inc", domain="acme", calendly_org=ORG_URI)
    db.add(company)
    db.flush()

    user = User(
        id=101,
        name="Alice",
        email=HOST_EMAIL,
        company_id=company.id,
        access_token=encrypt_token("pd-access"),
        refresh_token=encrypt_token("pd-refresh"),
        expires_at=datetime.utcnow() + timedelta(hours=1),
        api_domain="https://acme.pipedrive.com",
    )
    account = CalendlyAccount(
        uri=CALENDLY_USER_URI,
        name="Alice",
        email=HOST_EMAIL,
        organization=ORG_URI,
        user_id=101,
        access_token=encrypt_token("cal-access"),
        refresh_token=encrypt_token("cal-refresh"),
        expires_at=datetime.utcnow() + timedelta(hours=2),
    )
    event_type = CalendlyEventType(uri="et-1", name="Intro call", slug="intro-call", company_id=company.id)
    db.add_all([user, account, event_type])

    activity_types = {}
    for pipedrive_id, kind, name, key in [
        (1, TransitionKind.CREATED, "Meeting booked", "meeting"),
        (2, TransitionKind.CANCELLED, "Meeting cancelled", "meeting_cancelled"),
        (3, TransitionKind.RESCHEDULED, "Meeting rescheduled", "meeting_rescheduled"),
        (4, TransitionKind.NO_SHOW, "No-show", "no_show"),
    ]:
        activity_type = PipedriveActivityType(
            pipedrive_id=pipedrive_id, name=name, key_string=key, company_id=company.id
        )
        db.add(activity_type)
        activity_types[kind] = activity_type
    db.commit()

    return Tenant(company, user, account, event_type, activity_types)


@pytest.fixture
def mapped_tenant(db: Session, tenant: Tenant) -> Tenant:
    """Tenant with created/cancelled/rescheduled mapped; no-show left unmapped"""
    tenant.map(db, TransitionKind.CREATED, TransitionKind.CANCELLED, TransitionKind.RESCHEDULED)
    return tenant


# =============================================================================
# Webhook bodies
# =============================================================================


def _scheduled_event(event_type: str = "et-1", host_email: str = HOST_EMAIL) -> dict[str, Any]:
    return {
        "uri": "https://api.calendly.com/scheduled_events/E1",
        "name": "Intro call",
        "event_type": event_type,
        "start_time": "2026-11-02T15:30:00.000000Z",
        "end_time": "2026-11-02T16:15:00.000000Z",
        "location": {"type": "google_conference", "join_url": "https://meet.google.com/abc-defg-hij"},
        "event_memberships": [{"user_email": host_email, "user": CALENDLY_USER_URI}],
    }


@pytest.fixture
def created_webhook():
    def build(uri: str = "evt-1", event_type: str = "et-1", old_invitee: Any = None, **payload) -> dict[str, Any]:
        body = {
            "uri": uri,
            "email": INVITEE_EMAIL,
            "name": "Ivy",
            "old_invitee": old_invitee,
            "rescheduled": False,
            "scheduled_event": _scheduled_event(event_type),
            "reschedule_url": f"https://calendly.com/reschedulings/{uri}",
            "cancel_url": f"https://calendly.com/cancellations/{uri}",
        }
        body.update(payload)
        return {"event": "invitee.created", "payload": body}

    return build


@pytest.fixture
def canceled_webhook():
    def build(uri: str = "evt-1", rescheduled: bool = False, with_event: bool = False) -> dict[str, Any]:
        body: dict[str, Any] = {"uri": uri, "rescheduled": rescheduled}
        if with_event:
            body["scheduled_event"] = _scheduled_event()
        return {"event": "invitee.canceled", "payload": body}

    return build


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture(scope="function")
async def client(db: Session, pipedrive, calendly, bridge) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient with the database and both platform clients replaced by fakes"""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pipedrive_service] = lambda: pipedrive
    app.dependency_overrides[get_calendly_service] = lambda: calendly
    app.dependency_overrides[get_token_bridge] = lambda: bridge

    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://test") as c:
        yield c

    app.dependency_overrides.clear()
