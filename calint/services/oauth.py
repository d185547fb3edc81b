"""
OAuth platform descriptors and token-endpoint exchange

Pipedrive and Calendly differ only in endpoints, client credentials, how the
client authenticates to the token endpoint and which table holds the token
pair. Everything else (code exchange, refresh, persistence) is shared.
"""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from .. import config
from ..enums import Platform
from ..errors import ErrorKind, RemoteServiceError
from ..models import CalendlyAccount, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlatformDescriptor:
    platform: Platform
    authorize_url: str
    token_url: str
    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_uri: Optional[str]
    credential_model: type  # ORM class holding access_token/refresh_token/expires_at
    basic_auth: bool = True  # client credentials in an Authorization header instead of the form body
    default_expires_in: int = 3600

    def authorization_url(self, state: Optional[str] = None) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
        }
        if state:
            params["state"] = state
        return f"{self.authorize_url}?{urlencode(params)}"


@dataclass
class TokenSet:
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    issued_at: Optional[datetime] = None
    api_domain: Optional[str] = None
    scope: Optional[str] = None
    owner: Optional[str] = None  # Calendly returns the user URI
    organization: Optional[str] = None

    @classmethod
    def from_response(cls, data: dict[str, Any], default_expires_in: int = 3600) -> "TokenSet":
        expires_in = data.get("expires_in") or default_expires_in
        issued_at = datetime.utcnow()
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=issued_at + timedelta(seconds=int(expires_in)),
            issued_at=issued_at,
            api_domain=data.get("api_domain"),
            scope=data.get("scope"),
            owner=data.get("owner"),
            organization=data.get("organization"),
        )


PIPEDRIVE_OAUTH = PlatformDescriptor(
    platform=Platform.PIPEDRIVE,
    authorize_url="https://oauth.pipedrive.com/oauth/authorize",
    token_url="https://oauth.pipedrive.com/oauth/token",  # noqa: S105 - OAuth endpoint URL
    client_id=config.PIPEDRIVE_CLIENT_ID,
    client_secret=config.PIPEDRIVE_CLIENT_SECRET,
    redirect_uri=config.PIPEDRIVE_REDIRECT_URI,
    credential_model=User,
    basic_auth=True,
    default_expires_in=3599,
)

CALENDLY_OAUTH = PlatformDescriptor(
    platform=Platform.CALENDLY,
    authorize_url="https://auth.calendly.com/oauth/authorize",
    token_url="https://auth.calendly.com/oauth/token",  # noqa: S105 - OAuth endpoint URL
    client_id=config.CALENDLY_CLIENT_ID,
    client_secret=config.CALENDLY_CLIENT_SECRET,
    redirect_uri=config.CALENDLY_REDIRECT_URI,
    credential_model=CalendlyAccount,
    basic_auth=True,
    default_expires_in=7200,
)

DESCRIPTORS = {
    Platform.PIPEDRIVE: PIPEDRIVE_OAUTH,
    Platform.CALENDLY: CALENDLY_OAUTH,
}


def _basic_auth_header(descriptor: PlatformDescriptor) -> str:
    raw = f"{descriptor.client_id}:{descriptor.client_secret}".encode()
    return f"Basic {base64.b64encode(raw).decode()}"


async def request_token(
    descriptor: PlatformDescriptor,
    form: dict[str, str],
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = config.HTTP_TIMEOUT_SECONDS,
) -> TokenSet:
    """POST a grant to the platform's token endpoint and parse the token pair"""
    headers = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}
    data = dict(form)
    if descriptor.basic_auth:
        headers["Authorization"] = _basic_auth_header(descriptor)
    else:
        data["client_id"] = descriptor.client_id or ""
        data["client_secret"] = descriptor.client_secret or ""

    service = descriptor.platform.value
    try:
        if http_client is not None:
            response = await http_client.post(descriptor.token_url, data=data, headers=headers, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(descriptor.token_url, data=data, headers=headers)
    except httpx.TimeoutException as e:
        raise RemoteServiceError(service, f"{service} token endpoint timed out", code="REMOTE_TIMEOUT") from e
    except httpx.HTTPError as e:
        raise RemoteServiceError(service, f"{service} token endpoint unreachable: {e}") from e

    if response.status_code != 200:
        logger.error(f"❌ {service} token request ({form.get('grant_type')}) failed: {response.status_code}")
        logger.debug(f"❌ Error response: {response.text[:300]}")
        # invalid_grant and friends come back as 400/401: the grant is dead, not the network
        kind = ErrorKind.CREDENTIAL if 400 <= response.status_code < 500 else ErrorKind.TRANSIENT
        raise RemoteServiceError(
            service, f"{service} token endpoint returned HTTP {response.status_code}", response.status_code, kind
        )

    try:
        return TokenSet.from_response(response.json(), descriptor.default_expires_in)
    except (ValueError, KeyError) as e:
        raise RemoteServiceError(
            service, f"{service} token response was malformed", response.status_code, ErrorKind.INVARIANT
        ) from e


async def exchange_code_for_token(
    descriptor: PlatformDescriptor, code: str, http_client: Optional[httpx.AsyncClient] = None
) -> TokenSet:
    """Exchange authorization code for a token pair"""
    logger.info(f"🔄 Exchanging {descriptor.platform.value} OAuth code with redirect_uri: {descriptor.redirect_uri}")
    return await request_token(
        descriptor,
        {"grant_type": "authorization_code", "code": code, "redirect_uri": descriptor.redirect_uri or ""},
        http_client=http_client,
    )


async def refresh_access_token(
    descriptor: PlatformDescriptor, refresh_token: str, http_client: Optional[httpx.AsyncClient] = None
) -> TokenSet:
    """Refresh expired access token"""
    return await request_token(
        descriptor,
        {"grant_type": "refresh_token", "refresh_token": refresh_token},
        http_client=http_client,
    )
