from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for RBAC checks.
    Built from access token claims; tokens are issued by the auth service.
    """

    id: UUID
    tenant_id: Optional[UUID] = None
    role: str
    permissions: Dict[str, Dict[str, bool]] = {}
