"""Auth service - OAuth onboarding for Pipedrive and Calendly"""

import logging
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ... import config
from ...enums import Platform
from ...errors import NotFoundError, RemoteServiceError
from ...models import CalendlyAccount, User
from ...services.calendly_service import CalendlyService
from ...services.http_client import AccessToken
from ...services.oauth import DESCRIPTORS, PlatformDescriptor, exchange_code_for_token
from ...services.pipedrive_service import PipedriveService
from .repository import AuthRepository

logger = logging.getLogger(__name__)


class AuthService:
    """Service layer for the two-step connect flow: Pipedrive first, then Calendly"""

    def __init__(
        self,
        db: Session,
        pipedrive: PipedriveService,
        calendly: CalendlyService,
        descriptors: Optional[dict[Platform, PlatformDescriptor]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.db = db
        self.pipedrive = pipedrive
        self.calendly = calendly
        self.descriptors = descriptors or DESCRIPTORS
        self.http_client = http_client
        self.repo = AuthRepository()

    def pipedrive_authorization_url(self) -> str:
        return self.descriptors[Platform.PIPEDRIVE].authorization_url()

    def calendly_authorization_url(self) -> str:
        return self.descriptors[Platform.CALENDLY].authorization_url()

    async def complete_pipedrive_login(self, code: str) -> User:
        """Exchange the code, then find-or-create the tenant by company domain and upsert the user"""
        tokens = await exchange_code_for_token(self.descriptors[Platform.PIPEDRIVE], code, http_client=self.http_client)
        me = await self.pipedrive.get_current_user(AccessToken(tokens.access_token, tokens.api_domain))

        domain = me.get("company_domain")
        if not domain:
            raise NotFoundError("Pipedrive user has no company domain", code="COMPANY_DOMAIN_NOT_FOUND")

        company = self.repo.get_or_create_company(self.db, domain, me.get("company_name"))
        user = self.repo.upsert_user(self.db, company, me, tokens)
        logger.info(f"✅ Pipedrive user {user.id} connected for company {company.domain}")
        return user

    async def complete_calendly_login(self, user_id: int, code: str) -> CalendlyAccount:
        """Link the Calendly account to the principal and subscribe the organization to booking webhooks"""
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"Pipedrive user {user_id} not found", code="USER_NOT_FOUND")

        tokens = await exchange_code_for_token(self.descriptors[Platform.CALENDLY], code, http_client=self.http_client)
        token = AccessToken(tokens.access_token)
        resource = await self.calendly.get_user_info(token)

        account = self.repo.link_calendly_account(self.db, user, resource, tokens)
        logger.info(f"✅ Calendly account {account.uri} linked to Pipedrive user {user.id}")

        await self._subscribe_webhooks(token, account)
        return account

    async def _subscribe_webhooks(self, token: AccessToken, account: CalendlyAccount) -> None:
        if not config.CALENDLY_WEBHOOK_URL:
            logger.warning("⚠️ CALENDLY_WEBHOOK_URL not configured - webhook subscription skipped")
            return
        if not account.organization:
            logger.warning(f"⚠️ Calendly account {account.uri} has no organization - webhook subscription skipped")
            return
        try:
            await self.calendly.create_webhook_subscription(
                token,
                config.CALENDLY_WEBHOOK_URL,
                account.organization,
                user_uri=account.uri,
                signing_key=config.CALENDLY_WEBHOOK_SIGNING_KEY,
            )
            logger.info(f"🔔 Webhook subscription registered for {account.organization}")
        except RemoteServiceError as e:
            # 409 means the organization is already subscribed
            logger.warning(f"⚠️ Could not register Calendly webhook subscription: {e.message}")
