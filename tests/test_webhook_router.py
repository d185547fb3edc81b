"""
Tests for the Calendly webhook endpoint.

Coverage:
- Acknowledgement policy (200 for permanent outcomes, 503 for transient ones
  and for cancellations whose booking is not recorded yet)
- Signature verification when a signing key is configured
- Re-authorization flag on revoked credentials
"""

import json

import pytest

from calint import config
from calint.deps import get_token_bridge
from calint.errors import CredentialRefreshFailed, RemoteServiceError
from calint.main import app
from calint.models import CalendlyEvent, Company
from calint.services.token_bridge import TokenRefreshBridge
from calint.webhook_security import CALENDLY_SIGNATURE_HEADER, create_webhook_signature

WEBHOOK_URL = "/api/v1/calendly/webhook"


async def test_created_webhook_is_processed(client, db, mapped_tenant, created_webhook):
    response = await client.post(WEBHOOK_URL, json=created_webhook("evt-1"))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["result"]["outcome"] == "created"
    assert body["result"]["transition"] == "created"
    assert db.query(CalendlyEvent).filter(CalendlyEvent.uri == "evt-1").one().status == "created"


async def test_missing_mapping_is_acknowledged(client, db, tenant, pipedrive, created_webhook):
    response = await client.post(WEBHOOK_URL, json=created_webhook("evt-1"))

    assert response.status_code == 200
    error = response.json()["result"]["error"]
    assert error["code"] == "NO_CREATED_MAPPING_FOUND"
    assert error["kind"] == "configuration"
    assert pipedrive.calls == []


async def test_unhandled_event_is_acknowledged(client, mapped_tenant):
    body = {"event": "invitee_no_show.created", "payload": {"uri": "evt-1"}}

    response = await client.post(WEBHOOK_URL, json=body)

    assert response.status_code == 200
    assert response.json()["result"]["outcome"] == "ignored"


async def test_transient_failure_asks_for_redelivery(client, mapped_tenant, pipedrive, created_webhook):
    pipedrive.failures["list_users"] = RemoteServiceError("pipedrive", "pipedrive request timed out", code="REMOTE_TIMEOUT")

    response = await client.post(WEBHOOK_URL, json=created_webhook("evt-1"))

    assert response.status_code == 503
    assert response.json()["result"]["error"]["code"] == "REMOTE_TIMEOUT"



async def test_cancel_before_its_booking_asks_for_redelivery(client, db, mapped_tenant, pipedrive, canceled_webhook):
    response = await client.post(WEBHOOK_URL, json=canceled_webhook("evt-1"))

    assert response.status_code == 503
    assert response.json()["result"]["error"]["code"] == "BOOKING_NOT_FOUND"
    assert db.query(CalendlyEvent).count() == 0
    assert pipedrive.calls == []

@pytest.mark.parametrize("body", [b"not json", b'{"event": "invitee.created"}', b'{"payload": {"uri": "x"}}'])
async def test_malformed_body_is_rejected(client, body):
    response = await client.post(WEBHOOK_URL, content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["success"] is False


async def test_revoked_credentials_flag_the_tenant(client, db, mapped_tenant, bridge, created_webhook):
    bridge.error = CredentialRefreshFailed("pipedrive", "refresh rejected", revoked=True)

    response = await client.post(WEBHOOK_URL, json=created_webhook("evt-1"))

    assert response.status_code == 200
    assert response.json()["result"]["error"]["kind"] == "credential"
    db.expire_all()
    assert db.get(Company, mapped_tenant.company.id).needs_reauth is True


async def test_undecryptable_credentials_are_acknowledged_and_flagged(client, db, mapped_tenant, created_webhook):
    app.dependency_overrides[get_token_bridge] = lambda: TokenRefreshBridge(inflight={})
    mapped_tenant.user.access_token = "not-a-fernet-token"
    db.commit()

    response = await client.post(WEBHOOK_URL, json=created_webhook("evt-1"))

    assert response.status_code == 200
    assert response.json()["result"]["error"]["code"] == "CREDENTIAL_REFRESH_FAILED"
    db.expire_all()
    assert db.get(Company, mapped_tenant.company.id).needs_reauth is True


async def test_refresh_outage_does_not_flag_the_tenant(client, db, mapped_tenant, bridge, created_webhook):
    bridge.error = CredentialRefreshFailed("pipedrive", "token endpoint down", revoked=False)

    await client.post(WEBHOOK_URL, json=created_webhook("evt-1"))

    db.expire_all()
    assert db.get(Company, mapped_tenant.company.id).needs_reauth is False


# =============================================================================
# Signatures
# =============================================================================


@pytest.fixture
def signing_key(monkeypatch):
    monkeypatch.setattr(config, "CALENDLY_WEBHOOK_SIGNING_KEY", "whsec-test")
    return "whsec-test"


async def test_signed_webhook_is_accepted(client, mapped_tenant, signing_key, created_webhook):
    raw = json.dumps(created_webhook("evt-1")).encode()

    response = await client.post(
        WEBHOOK_URL,
        content=raw,
        headers={"Content-Type": "application/json", CALENDLY_SIGNATURE_HEADER: create_webhook_signature(signing_key, raw)},
    )

    assert response.status_code == 200
    assert response.json()["result"]["outcome"] == "created"


async def test_unsigned_webhook_is_rejected(client, db, mapped_tenant, signing_key, created_webhook):
    response = await client.post(WEBHOOK_URL, json=created_webhook("evt-1"))

    assert response.status_code == 401
    assert db.query(CalendlyEvent).count() == 0


async def test_tampered_webhook_is_rejected(client, mapped_tenant, signing_key, created_webhook):
    raw = json.dumps(created_webhook("evt-1")).encode()
    signature = create_webhook_signature(signing_key, raw)

    response = await client.post(
        WEBHOOK_URL,
        content=raw.replace(b"evt-1", b"evt-2"),
        headers={"Content-Type": "application/json", CALENDLY_SIGNATURE_HEADER: signature},
    )

    assert response.status_code == 401
