"""
Aggregate store: document persistence for incidents.

get_store() returns the process-wide store, created on first use from
config.store and reused afterwards.
"""

from __future__ import annotations

import logging
from typing import Optional

from postmortem.core.config import StoreConfig, config

from .base import DocumentExists, DocumentNotFound, IncidentStore
from .memory import InMemoryIncidentStore
from .sql import SqlIncidentStore

logger = logging.getLogger("postmortem.store")

_STORE: Optional[IncidentStore] = None


def create_store(store_config: StoreConfig) -> IncidentStore:
    if store_config.database_url.startswith("memory://"):
        logger.info("Using in-memory incident store")
        return InMemoryIncidentStore()
    return SqlIncidentStore(store_config.database_url, echo=store_config.echo_sql)


def get_store() -> IncidentStore:
    global _STORE
    if _STORE is None:
        _STORE = create_store(config.store)
    return _STORE


def set_store(store: Optional[IncidentStore]) -> None:
    """Install (or with None, forget) the process-wide store."""
    global _STORE
    _STORE = store


__all__ = [
    "IncidentStore",
    "InMemoryIncidentStore",
    "SqlIncidentStore",
    "DocumentExists",
    "DocumentNotFound",
    "create_store",
    "get_store",
    "set_store",
]
