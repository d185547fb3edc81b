"""Auth repository - tenants, principals and linked scheduling accounts"""

from typing import Any, Optional

from sqlalchemy.orm import Session

from ...models import CalendlyAccount, Company, User
from ...services.credential_store import CredentialStore
from ...services.oauth import TokenSet


class AuthRepository:
    """Repository for OAuth onboarding writes"""

    @staticmethod
    def get_company_by_domain(db: Session, domain: str) -> Optional[Company]:
        return db.query(Company).filter(Company.domain == domain).first()

    @staticmethod
    def get_or_create_company(db: Session, domain: str, name: Optional[str]) -> Company:
        company = AuthRepository.get_company_by_domain(db, domain)
        if company:
            if name and company.name != name:
                company.name = name
            return company
        company = Company(domain=domain, name=name)
        db.add(company)
        db.flush()
        return company

    @staticmethod
    def upsert_user(db: Session, company: Company, me: dict[str, Any], tokens: TokenSet) -> User:
        """Insert the Pipedrive user or replace its tokens; clears the tenant's re-auth flag"""
        user = db.get(User, me["id"])
        if user is None:
            user = User(id=me["id"], company_id=company.id)
            db.add(user)
        user.name = me.get("name") or ""
        user.email = me.get("email")
        user.company_id = company.id
        CredentialStore.apply_tokens(user, tokens)
        company.needs_reauth = False
        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def link_calendly_account(db: Session, user: User, resource: dict[str, Any], tokens: TokenSet) -> CalendlyAccount:
        """Attach a Calendly account to a principal, or re-login an already linked one"""
        uri = resource["uri"]
        account = db.get(CalendlyAccount, uri)
        if account is None:
            previous = user.calendly_account
            if previous is not None:
                db.delete(previous)
                db.flush()
            account = CalendlyAccount(uri=uri, user_id=user.id)
            db.add(account)
        account.user_id = user.id
        account.name = resource.get("name")
        account.email = resource.get("email")
        account.organization = resource.get("current_organization") or tokens.organization
        CredentialStore.apply_tokens(account, tokens)

        company = user.company
        if account.organization:
            company.calendly_org = account.organization
        db.commit()
        db.refresh(account)
        return account
