"""
Token Refresh Bridge

Guarantees a valid access token for a principal on either platform before any
outbound call. Expired tokens are refreshed through the platform's token
endpoint and the new pair is persisted. Concurrent callers asking for the same
credential while a refresh is running share that single exchange, so a
single-use refresh token is never spent twice.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx
from cryptography.fernet import InvalidToken
from sqlalchemy.orm import Session

from ..config import TOKEN_EXPIRY_SKEW_SECONDS
from ..enums import Platform
from ..errors import CredentialRefreshFailed, ErrorKind, NotFoundError, RemoteServiceError
from ..security_utils import decrypt_token
from .credential_store import CredentialStore
from .http_client import AccessToken
from .oauth import DESCRIPTORS, PlatformDescriptor, refresh_access_token

logger = logging.getLogger(__name__)

# Process-wide: one in-flight refresh per (platform, credential key)
_inflight_refreshes: dict[tuple[Platform, str], asyncio.Task] = {}


class TokenRefreshBridge:
    def __init__(
        self,
        descriptors: Optional[dict[Platform, PlatformDescriptor]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        skew_seconds: int = TOKEN_EXPIRY_SKEW_SECONDS,
        clock: Callable[[], datetime] = datetime.utcnow,
        inflight: Optional[dict[tuple[Platform, str], asyncio.Task]] = None,
    ):
        self.descriptors = descriptors or DESCRIPTORS
        self.http_client = http_client
        self.skew = timedelta(seconds=skew_seconds)
        self.clock = clock
        self._inflight = _inflight_refreshes if inflight is None else inflight

    def is_expired(self, expires_at: Optional[datetime], issued_at: Optional[datetime] = None) -> bool:
        if expires_at is None:
            return True
        skew = self.skew
        if issued_at is not None and expires_at > issued_at:
            # Never more than half the token's lifetime
            skew = min(skew, (expires_at - issued_at) / 2)
        return expires_at - skew <= self.clock()

    async def ensure_valid(self, db: Session, platform: Platform, key: Any) -> AccessToken:
        """
        Return a usable access token for the credential ``key`` on ``platform``.

        Raises:
            NotFoundError: no credential stored under ``key``
            CredentialRefreshFailed: the refresh exchange failed, or the stored tokens
                cannot be decrypted; re-authorization needed
        """
        descriptor = self.descriptors[platform]
        inflight_key = (platform, str(key))

        pending = self._inflight.get(inflight_key)
        if pending is not None:
            logger.debug(f"⏳ Joining in-flight {platform.value} refresh for {key}")
            return await asyncio.shield(pending)

        credential = CredentialStore.load(db, descriptor, key)
        if credential is None:
            raise NotFoundError(
                f"No {platform.value} credentials stored for {key}",
                code=f"{platform.value.upper()}_CREDENTIALS_NOT_FOUND",
            )

        if not self.is_expired(credential.expires_at, credential.token_issued_at):
            access_token = self._decrypt(descriptor, key, credential.access_token)
            return AccessToken(access_token, getattr(credential, "api_domain", None))

        refresh_token = self._decrypt(descriptor, key, credential.refresh_token)
        task = asyncio.ensure_future(self._refresh(db, descriptor, key, refresh_token))
        self._inflight[inflight_key] = task
        task.add_done_callback(lambda _t: self._inflight.pop(inflight_key, None))
        return await asyncio.shield(task)

    @staticmethod
    def _decrypt(descriptor: PlatformDescriptor, key: Any, encrypted: str) -> str:
        try:
            return decrypt_token(encrypted)
        except InvalidToken as e:
            platform = descriptor.platform.value
            raise CredentialRefreshFailed(
                platform,
                f"Stored {platform} credentials are unreadable; please reconnect your {platform} account",
                revoked=True,
                details={"key": str(key)},
            ) from e

    async def _refresh(self, db: Session, descriptor: PlatformDescriptor, key: Any, refresh_token: str) -> AccessToken:
        platform = descriptor.platform.value
        logger.info(f"🔄 Refreshing {platform} token for {key}")
        try:
            tokens = await refresh_access_token(descriptor, refresh_token, http_client=self.http_client)
        except RemoteServiceError as e:
            revoked = e.kind == ErrorKind.CREDENTIAL
            logger.warning(f"❌ Failed to refresh {platform} token for {key}: {e.message}")
            raise CredentialRefreshFailed(
                platform,
                f"{platform} token refresh failed; please reconnect your {platform} account",
                revoked=revoked,
                details={"key": str(key), "status_code": e.status_code},
            ) from e

        credential = CredentialStore.save_tokens(db, descriptor, key, tokens)
        logger.info(f"✅ {platform} token refreshed for {key} (expires {tokens.expires_at.isoformat()})")
        api_domain = getattr(credential, "api_domain", None) if credential is not None else tokens.api_domain
        return AccessToken(tokens.access_token, api_domain)
