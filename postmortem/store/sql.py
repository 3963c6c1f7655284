"""
SQLAlchemy-backed document store.

Each incident is one row holding the whole aggregate as JSON text, keyed by
(id, tenant_id). The engine is created lazily on first use and reused for
the life of the process.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from postmortem.core.exceptions import StoreError

from .base import (
    Document,
    DocumentExists,
    DocumentNotFound,
    IncidentStore,
    document_created_at,
    document_key,
)

logger = logging.getLogger("postmortem.store")

metadata = MetaData()

incidents_table = Table(
    "incidents",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(128), primary_key=True),
    Column("created_at", DateTime, nullable=False, index=True),
    Column("document", Text, nullable=False),
)

_IN_MEMORY_SQLITE = {"sqlite://", "sqlite:///:memory:"}


class SqlIncidentStore(IncidentStore):
    """
    Document store on any SQLAlchemy-supported database.

    Notes:
    - created_at is denormalized into its own column (naive UTC) for ordering.
    - An in-memory SQLite URL shares one connection across threads.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = database_url
        self.echo = echo
        self._engine: Optional[Engine] = None

    def engine(self) -> Engine:
        if self._engine is None:
            kwargs = {"echo": self.echo, "pool_pre_ping": True}
            if self.database_url in _IN_MEMORY_SQLITE:
                kwargs["connect_args"] = {"check_same_thread": False}
                kwargs["poolclass"] = StaticPool
            try:
                engine = create_engine(self.database_url, **kwargs)
                metadata.create_all(engine)
            except SQLAlchemyError as exc:
                raise StoreError(f"Could not open store: {exc}") from exc
            logger.info("Opened incident store %s", engine.url.render_as_string(hide_password=True))
            self._engine = engine
        return self._engine

    def read(self, incident_id: str, tenant_id: str) -> Optional[Document]:
        stmt = select(incidents_table.c.document).where(
            incidents_table.c.id == incident_id,
            incidents_table.c.tenant_id == tenant_id,
        )
        try:
            with self.engine().connect() as conn:
                raw = conn.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StoreError(f"Read failed: {exc}") from exc
        return json.loads(raw) if raw is not None else None

    def create(self, document: Document) -> None:
        incident_id, tenant_id = document_key(document)
        stmt = insert(incidents_table).values(
            id=incident_id,
            tenant_id=tenant_id,
            created_at=_naive_utc(document),
            document=json.dumps(document),
        )
        try:
            with self.engine().begin() as conn:
                conn.execute(stmt)
        except IntegrityError as exc:
            raise DocumentExists(f"Document {incident_id} already exists") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Create failed: {exc}") from exc

    def replace(self, document: Document) -> None:
        incident_id, tenant_id = document_key(document)
        stmt = (
            update(incidents_table)
            .where(
                incidents_table.c.id == incident_id,
                incidents_table.c.tenant_id == tenant_id,
            )
            .values(document=json.dumps(document))
        )
        try:
            with self.engine().begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(f"Replace failed: {exc}") from exc
        if result.rowcount == 0:
            raise DocumentNotFound(f"Document {incident_id} not found")

    def delete(self, incident_id: str, tenant_id: str) -> None:
        stmt = delete(incidents_table).where(
            incidents_table.c.id == incident_id,
            incidents_table.c.tenant_id == tenant_id,
        )
        try:
            with self.engine().begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(f"Delete failed: {exc}") from exc
        if result.rowcount == 0:
            raise DocumentNotFound(f"Document {incident_id} not found")

    def list_by_tenant(self, tenant_id: str) -> List[Document]:
        stmt = (
            select(incidents_table.c.document)
            .where(incidents_table.c.tenant_id == tenant_id)
            .order_by(incidents_table.c.created_at.desc())
        )
        try:
            with self.engine().connect() as conn:
                rows = conn.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Query failed: {exc}") from exc
        return [json.loads(raw) for raw in rows]

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


def _naive_utc(document: Document):
    return document_created_at(document).replace(tzinfo=None)
