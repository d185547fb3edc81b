"""Tests for application-level wiring: health check, security headers, error envelopes."""

from calint.errors import RemoteServiceError


async def test_healthcheck(client):
    response = await client.get("/api/v1/healthcheck")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert "Content-Security-Policy" not in response.headers


async def test_security_headers_allow_pipedrive_framing(client, tenant):
    response = await client.get("/api/v1/mapping", params={"userId": 101})

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"] == "no-store"
    assert "frame-ancestors" in response.headers["Content-Security-Policy"]
    assert "https://*.pipedrive.com" in response.headers["Content-Security-Policy"]


async def test_remote_failure_on_data_endpoint_is_bad_gateway(client, tenant, pipedrive):
    pipedrive.failures["list_deal_activities"] = RemoteServiceError.from_status(
        "pipedrive", 503, "pipedrive returned HTTP 503"
    )

    response = await client.get("/api/v1/panel", params={"userId": 101, "selectedIds": "9001"})

    assert response.status_code == 502
    assert response.json() == {"success": False, "error": "pipedrive returned HTTP 503", "data": None}


async def test_credential_failure_on_data_endpoint_is_unauthorized(client, tenant, pipedrive):
    pipedrive.failures["list_deal_activities"] = RemoteServiceError.from_status(
        "pipedrive", 401, "pipedrive returned HTTP 401"
    )

    response = await client.get("/api/v1/panel", params={"userId": 101, "selectedIds": "9001"})

    assert response.status_code == 401
