"""
Aggregate store interface.

Incidents are stored as whole JSON-compatible documents keyed by
(id, tenant_id). Single-document operations are assumed to be strongly
consistent; there is no multi-document transaction and no version token.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from postmortem.core.exceptions import StoreError

Document = Dict[str, Any]


class DocumentNotFound(StoreError):
    """Raised when a replace or delete targets a missing (id, tenant_id) key."""


class DocumentExists(StoreError):
    """Raised when create targets an existing (id, tenant_id) key."""


def document_key(document: Mapping[str, Any]) -> tuple:
    try:
        return str(document["id"]), str(document["tenantId"])
    except KeyError as exc:
        raise StoreError(f"Document is missing key field {exc.args[0]!r}") from exc


def document_created_at(document: Mapping[str, Any]) -> datetime:
    """Parse the createdAt field of a stored document as an aware UTC datetime."""
    raw = str(document.get("createdAt", ""))
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise StoreError(f"Document has invalid createdAt {raw!r}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class IncidentStore(ABC):
    """
    Document store keyed by (id, tenant_id).

    Implementations return copies: callers may not observe or cause
    mutation of stored state except through create/replace/delete.
    """

    @abstractmethod
    def read(self, incident_id: str, tenant_id: str) -> Optional[Document]:
        """Point read; None when absent."""

    @abstractmethod
    def create(self, document: Document) -> None:
        """Insert a new document. Raises DocumentExists on key collision."""

    @abstractmethod
    def replace(self, document: Document) -> None:
        """Overwrite a whole document. Raises DocumentNotFound when absent."""

    @abstractmethod
    def delete(self, incident_id: str, tenant_id: str) -> None:
        """Remove a document. Raises DocumentNotFound when absent."""

    @abstractmethod
    def list_by_tenant(self, tenant_id: str) -> List[Document]:
        """All documents of a tenant, newest createdAt first."""
