import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..config import HTTP_TIMEOUT_SECONDS
from ..errors import ErrorKind, RemoteServiceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
    """A validated bearer token plus the API host it belongs to"""

    value: str
    api_domain: Optional[str] = None


class BaseAPIClient:
    """Shared request plumbing: bearer auth, bounded timeout, error classification"""

    SERVICE = "api"

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = HTTP_TIMEOUT_SECONDS):
        self._client = http_client
        self.timeout = timeout

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, timeout=self.timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def _request(
        self, method: str, url: str, auth: Optional[AccessToken] = None, **kwargs
    ) -> dict[str, Any]:
        headers = kwargs.pop("headers", {})
        if auth is not None:
            headers["Authorization"] = f"Bearer {auth.value}"

        try:
            response = await self._send(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"⏱️ {self.SERVICE} {method} {url} timed out after {self.timeout}s")
            raise RemoteServiceError(self.SERVICE, f"{self.SERVICE} request timed out", code="REMOTE_TIMEOUT") from e
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ {self.SERVICE} {method} {url} failed: {e}")
            raise RemoteServiceError(self.SERVICE, f"{self.SERVICE} request failed: {e}") from e

        logger.debug(f"📡 {self.SERVICE} {method} {url} -> {response.status_code}")

        if response.status_code >= 400:
            logger.warning(f"❌ {self.SERVICE} {method} {url} returned {response.status_code}: {response.text[:300]}")
            raise RemoteServiceError.from_status(
                self.SERVICE, response.status_code, f"{self.SERVICE} returned HTTP {response.status_code}"
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise RemoteServiceError(
                self.SERVICE, f"{self.SERVICE} returned a non-JSON body", response.status_code, ErrorKind.INVARIANT
            ) from e
