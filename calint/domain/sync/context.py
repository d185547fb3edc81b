from dataclasses import dataclass

from ...models import Company, User
from ...services.http_client import AccessToken


@dataclass(frozen=True)
class RequestContext:
    """Resolved tenant, acting principal and validated CRM token for one request"""

    company: Company
    principal: User
    pipedrive: AccessToken

    @property
    def company_id(self) -> str:
        return self.company.id
