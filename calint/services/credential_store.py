"""Credential store - per-principal OAuth token pairs for both platforms"""

from typing import Any, Optional

from sqlalchemy.orm import Session

from ..security_utils import encrypt_token
from .oauth import PlatformDescriptor, TokenSet


class CredentialStore:
    """Repository for token rows (``users`` for Pipedrive, ``calendly_accounts`` for Calendly)"""

    @staticmethod
    def load(db: Session, descriptor: PlatformDescriptor, key: Any) -> Optional[Any]:
        """Get the credential row by primary key"""
        return db.get(descriptor.credential_model, key)

    @staticmethod
    def apply_tokens(credential: Any, tokens: TokenSet) -> None:
        """Copy a fresh token pair onto a credential row (encrypted)"""
        credential.access_token = encrypt_token(tokens.access_token)
        if tokens.refresh_token:
            # Providers may omit the refresh token when it is not rotated
            credential.refresh_token = encrypt_token(tokens.refresh_token)
        credential.expires_at = tokens.expires_at
        credential.token_issued_at = tokens.issued_at
        if tokens.api_domain and hasattr(credential, "api_domain"):
            credential.api_domain = tokens.api_domain
        if tokens.scope and hasattr(credential, "scope"):
            credential.scope = tokens.scope

    @staticmethod
    def save_tokens(db: Session, descriptor: PlatformDescriptor, key: Any, tokens: TokenSet) -> Any:
        """Overwrite the stored token pair; last writer wins"""
        credential = db.get(descriptor.credential_model, key)
        if credential is None:
            return None
        CredentialStore.apply_tokens(credential, tokens)
        db.commit()
        db.refresh(credential)
        return credential
