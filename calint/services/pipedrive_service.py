import logging
from typing import Any, Optional

from ..errors import ErrorKind, RemoteServiceError
from .http_client import AccessToken, BaseAPIClient

logger = logging.getLogger(__name__)


class PipedriveService(BaseAPIClient):
    """Thin wrapper around the Pipedrive v1/v2 REST API"""

    SERVICE = "pipedrive"
    DEFAULT_API_DOMAIN = "https://api.pipedrive.com"

    def _url(self, auth: AccessToken, path: str) -> str:
        base = (auth.api_domain or self.DEFAULT_API_DOMAIN).rstrip("/")
        return f"{base}{path}"

    async def _data(self, method: str, auth: AccessToken, path: str, **kwargs) -> Any:
        body = await self._request(method, self._url(auth, path), auth=auth, **kwargs)
        if body.get("success") is False:
            raise RemoteServiceError(
                self.SERVICE,
                body.get("error") or f"Pipedrive reported failure for {path}",
                kind=ErrorKind.INVARIANT,
            )
        return body.get("data")

    async def get_current_user(self, auth: AccessToken) -> dict[str, Any]:
        """Get the authorized user (includes company_domain)"""
        return await self._data("GET", auth, "/api/v1/users/me")

    async def list_users(self, auth: AccessToken) -> list[dict[str, Any]]:
        return await self._data("GET", auth, "/api/v1/users") or []

    async def list_activity_types(self, auth: AccessToken) -> list[dict[str, Any]]:
        return await self._data("GET", auth, "/api/v1/activityTypes") or []

    async def search_person_by_email(self, auth: AccessToken, email: str) -> Optional[dict[str, Any]]:
        """Exact-match person search on the email field; None when nobody matches"""
        data = await self._data(
            "GET",
            auth,
            "/api/v2/persons/search",
            params={"term": email.lower(), "fields": "email", "exact_match": "true"},
        )
        items = (data or {}).get("items") or []
        if not items or not items[0].get("item"):
            return None
        return items[0]["item"]

    async def get_person(self, auth: AccessToken, person_id: int) -> dict[str, Any]:
        return await self._data("GET", auth, f"/api/v1/persons/{person_id}")

    async def list_deals_for_person(self, auth: AccessToken, person_id: int, limit: int = 15) -> list[dict[str, Any]]:
        """Deals of a person, newest first"""
        return (
            await self._data(
                "GET",
                auth,
                "/api/v2/deals",
                params={"person_id": person_id, "limit": limit, "sort_by": "add_time", "sort_direction": "desc"},
            )
            or []
        )

    async def get_deal(self, auth: AccessToken, deal_id: int) -> dict[str, Any]:
        return await self._data("GET", auth, f"/api/v2/deals/{deal_id}")

    async def add_activity(self, auth: AccessToken, body: dict[str, Any]) -> dict[str, Any]:
        logger.info(f"📝 Creating Pipedrive activity for deal {body.get('deal_id')}")
        return await self._data("POST", auth, "/api/v2/activities", json=body)

    async def update_activity(self, auth: AccessToken, activity_id: int, body: dict[str, Any]) -> dict[str, Any]:
        logger.info(f"✏️ Updating Pipedrive activity {activity_id}")
        return await self._data("PATCH", auth, f"/api/v2/activities/{activity_id}", json=body)

    async def list_deal_activities(self, auth: AccessToken, deal_id: int, done: int = 0) -> list[dict[str, Any]]:
        return await self._data("GET", auth, f"/api/v1/deals/{deal_id}/activities", params={"done": done}) or []
