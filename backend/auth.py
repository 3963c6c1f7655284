"""
Caller identity from the platform authentication header.

The hosting platform forwards the signed-in principal as base64-encoded JSON
in x-ms-client-principal:

    {"userId": ..., "userDetails": ..., "identityProvider": ..., "userRoles": [...]}

A missing or undecodable header is not an error; the caller is anonymous.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Mapping, Optional

from postmortem.core.config import ServerConfig, config
from postmortem.incident.context import ANONYMOUS, Identity, RequestContext

PRINCIPAL_HEADER = "x-ms-client-principal"

_TENANT_ID_MAX_LENGTH = 50


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def decode_principal(header_value: Optional[str]) -> Optional[Identity]:
    """Decode the principal header; None when absent or malformed."""
    if not header_value:
        return None
    try:
        decoded = base64.b64decode(header_value, validate=True).decode("utf-8")
        principal = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if not isinstance(principal, dict):
        return None

    roles = principal.get("userRoles") or []
    if not isinstance(roles, list):
        roles = []
    return Identity(
        user_id=str(principal.get("userId") or "anonymous"),
        display_name=str(principal.get("userDetails") or "anonymous"),
        provider=str(principal.get("identityProvider") or "anonymous"),
        roles=tuple(str(role) for role in roles),
    )


def resolve_identity(headers: Mapping[str, str]) -> Identity:
    return decode_principal(_header(headers, PRINCIPAL_HEADER)) or ANONYMOUS


def derive_tenant(identity: Identity, server_config: ServerConfig) -> str:
    """
    Tenant partition for a caller.

    In "shared" mode every caller sees the default tenant. In "identity" mode
    authenticated callers get their own partition.
    """
    if server_config.tenant_mode == "identity" and not identity.is_anonymous:
        return f"{identity.provider}_{identity.user_id}"[:_TENANT_ID_MAX_LENGTH]
    return server_config.default_tenant


def resolve_context(headers: Mapping[str, str], server_config: Optional[ServerConfig] = None) -> RequestContext:
    server_config = server_config or config.server
    identity = resolve_identity(headers)
    return RequestContext(identity=identity, tenant_id=derive_tenant(identity, server_config))


def is_authenticated(identity: Identity) -> bool:
    return not identity.is_anonymous


def has_role(identity: Identity, role: str) -> bool:
    return identity.has_role(role)
