"""
Caller identity and per-request context.

The identity is resolved once per request at the transport boundary and
passed down explicitly. ANONYMOUS is the zero value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from pydantic import BaseModel, ConfigDict

DEFAULT_TENANT = "default"


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str = "anonymous"
    display_name: str = "anonymous"
    provider: str = "anonymous"
    roles: Tuple[str, ...] = ()

    @property
    def is_anonymous(self) -> bool:
        return self.user_id == "anonymous"

    def has_role(self, role: str) -> bool:
        return role in self.roles


ANONYMOUS = Identity()


@dataclass(frozen=True)
class RequestContext:
    """Identity and tenant of the current request."""

    identity: Identity = field(default=ANONYMOUS)
    tenant_id: str = DEFAULT_TENANT

    @property
    def user(self) -> str:
        """Name recorded in audit entries."""
        return self.identity.display_name or "anonymous"
