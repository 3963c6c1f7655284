"""
In-process aggregate store.

Used for local development and tests. Documents are deep-copied on the way
in and out so that stored state is only changed through the store API.
"""

from __future__ import annotations

import copy
import threading
from typing import Dict, List, Optional, Tuple

from .base import (
    Document,
    DocumentExists,
    DocumentNotFound,
    IncidentStore,
    document_created_at,
    document_key,
)


class InMemoryIncidentStore(IncidentStore):
    def __init__(self) -> None:
        self._documents: Dict[Tuple[str, str], Document] = {}
        self._lock = threading.Lock()

    def read(self, incident_id: str, tenant_id: str) -> Optional[Document]:
        with self._lock:
            document = self._documents.get((incident_id, tenant_id))
            return copy.deepcopy(document) if document is not None else None

    def create(self, document: Document) -> None:
        key = document_key(document)
        with self._lock:
            if key in self._documents:
                raise DocumentExists(f"Document {key[0]} already exists")
            self._documents[key] = copy.deepcopy(document)

    def replace(self, document: Document) -> None:
        key = document_key(document)
        with self._lock:
            if key not in self._documents:
                raise DocumentNotFound(f"Document {key[0]} not found")
            self._documents[key] = copy.deepcopy(document)

    def delete(self, incident_id: str, tenant_id: str) -> None:
        with self._lock:
            if self._documents.pop((incident_id, tenant_id), None) is None:
                raise DocumentNotFound(f"Document {incident_id} not found")

    def list_by_tenant(self, tenant_id: str) -> List[Document]:
        with self._lock:
            documents = [
                copy.deepcopy(doc)
                for (_, doc_tenant), doc in self._documents.items()
                if doc_tenant == tenant_id
            ]
        documents.sort(key=document_created_at, reverse=True)
        return documents

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)
