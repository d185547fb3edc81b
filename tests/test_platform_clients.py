"""Tests for the Pipedrive and Calendly API clients against a mock transport."""

import json

import httpx
import pytest

from calint.errors import ErrorKind, RemoteServiceError
from calint.services.calendly_service import CalendlyService
from calint.services.http_client import AccessToken
from calint.services.pipedrive_service import PipedriveService

TOKEN = AccessToken("pd-token", "https://acme.pipedrive.com")


def pipedrive_with(handler) -> PipedriveService:
    return PipedriveService(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def test_requests_use_tenant_api_domain_and_bearer_token():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "data": [{"id": 101, "email": "a@x.com"}]})

    users = await pipedrive_with(handler).list_users(TOKEN)

    assert users == [{"id": 101, "email": "a@x.com"}]
    assert str(seen[0].url) == "https://acme.pipedrive.com/api/v1/users"
    assert seen[0].headers["Authorization"] == "Bearer pd-token"


async def test_default_api_domain_without_tenant_domain():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "data": {"id": 101}})

    await pipedrive_with(handler).get_current_user(AccessToken("pd-token"))

    assert seen[0].url.host == "api.pipedrive.com"


async def test_person_search_returns_first_exact_match():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["term"] == "ivy@client.com"
        assert request.url.params["exact_match"] == "true"
        return httpx.Response(200, json={"success": True, "data": {"items": [{"item": {"id": 501, "name": "Ivy"}}]}})

    person = await pipedrive_with(handler).search_person_by_email(TOKEN, "Ivy@Client.com")

    assert person == {"id": 501, "name": "Ivy"}


async def test_person_search_without_match_is_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": {"items": []}})

    assert await pipedrive_with(handler).search_person_by_email(TOKEN, "nobody@x.com") is None


async def test_reported_failure_is_an_invariant_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "Activity type not found"})

    with pytest.raises(RemoteServiceError) as exc:
        await pipedrive_with(handler).add_activity(TOKEN, {"deal_id": 9001})

    assert exc.value.kind == ErrorKind.INVARIANT
    assert exc.value.message == "Activity type not found"


@pytest.mark.parametrize(
    "status_code,kind,retryable",
    [
        (503, ErrorKind.TRANSIENT, True),
        (429, ErrorKind.TRANSIENT, True),
        (401, ErrorKind.CREDENTIAL, False),
        (404, ErrorKind.NOT_FOUND, False),
        (422, ErrorKind.INVARIANT, False),
    ],
)
async def test_http_failures_are_classified(status_code, kind, retryable):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"success": False})

    with pytest.raises(RemoteServiceError) as exc:
        await pipedrive_with(handler).get_deal(TOKEN, 9001)

    assert exc.value.kind == kind
    assert exc.value.status_code == status_code
    assert exc.value.retryable is retryable


async def test_timeout_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(RemoteServiceError) as exc:
        await pipedrive_with(handler).update_activity(TOKEN, 7001, {"done": True})

    assert exc.value.code == "REMOTE_TIMEOUT"
    assert exc.value.retryable


async def test_activity_update_is_a_patch():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "data": {"id": 7001, "done": True}})

    await pipedrive_with(handler).update_activity(TOKEN, 7001, {"done": True})

    assert seen[0].method == "PATCH"
    assert seen[0].url.path == "/api/v2/activities/7001"


async def test_calendly_event_types_are_listed_for_the_organization():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"collection": [{"uri": "et-1"}], "pagination": {}})

    service = CalendlyService(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    event_types = await service.list_organization_event_types(
        AccessToken("cal-token"), "https://api.calendly.com/organizations/ORG1"
    )

    assert event_types == [{"uri": "et-1"}]
    assert seen[0].url.host == "api.calendly.com"
    assert seen[0].url.params["organization"] == "https://api.calendly.com/organizations/ORG1"
    assert seen[0].headers["Authorization"] == "Bearer cal-token"


async def test_webhook_subscription_covers_booking_transitions_only():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"resource": {"uri": "https://api.calendly.com/webhook_subscriptions/W1"}})

    service = CalendlyService(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    await service.create_webhook_subscription(
        AccessToken("cal-token"),
        "https://hooks.example.com/api/v1/calendly/webhook",
        "https://api.calendly.com/organizations/ORG1",
    )

    payload = json.loads(seen[0].content)
    assert payload["events"] == ["invitee.created", "invitee.canceled"]
    assert payload["scope"] == "organization"
