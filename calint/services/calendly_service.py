import logging
from typing import Any, Optional

from .http_client import AccessToken, BaseAPIClient

logger = logging.getLogger(__name__)

# No-show is recorded from the deal panel, not from Calendly
WEBHOOK_EVENTS = [
    "invitee.created",
    "invitee.canceled",
]


class CalendlyService(BaseAPIClient):
    """Service for interacting with Calendly API"""

    SERVICE = "calendly"
    BASE_URL = "https://api.calendly.com"

    async def get_user_info(self, auth: AccessToken) -> dict[str, Any]:
        """Get current user information (the ``resource`` object)"""
        body = await self._request("GET", f"{self.BASE_URL}/users/me", auth=auth)
        return body.get("resource", {})

    async def list_organization_event_types(
        self, auth: AccessToken, organization_uri: str, count: int = 100
    ) -> list[dict[str, Any]]:
        """List event types shared across the organization"""
        body = await self._request(
            "GET",
            f"{self.BASE_URL}/event_types",
            auth=auth,
            params={"organization": organization_uri, "count": count},
        )
        return body.get("collection", [])

    async def create_webhook_subscription(
        self,
        auth: AccessToken,
        url: str,
        organization_uri: str,
        events: Optional[list[str]] = None,
        user_uri: Optional[str] = None,
        signing_key: Optional[str] = None,
        scope: str = "organization",
    ) -> dict[str, Any]:
        """
        Create a webhook subscription

        Args:
            auth: Calendly access token
            url: Our webhook endpoint URL
            organization_uri: Organization URI from user info
            events: Events to subscribe to (defaults to invitee created and canceled)
            user_uri: Creating user, sent alongside the organization
            signing_key: Key Calendly signs deliveries with
            scope: 'organization' or 'user'
        """
        payload = {
            "url": url,
            "events": events or WEBHOOK_EVENTS,
            "organization": organization_uri,
            "scope": scope,
        }
        if user_uri:
            payload["user"] = user_uri
        if signing_key:
            payload["signing_key"] = signing_key

        logger.info(f"🔔 Creating Calendly webhook subscription for {organization_uri}")
        body = await self._request(
            "POST",
            f"{self.BASE_URL}/webhook_subscriptions",
            auth=auth,
            json=payload,
        )
        return body.get("resource", {})
