"""
Incident aggregate service.

Owns the read-modify-write protocol for the incident document. Every
mutating operation is exactly one store read followed by one whole-document
replace, and produces a new Incident with:

- the changed collection or fields,
- a refreshed updated_at (never earlier than the previous value),
- exactly one new audit entry describing the operation.

Validation happens before any store access. Lookups are always qualified by
tenant, so another tenant's incident is indistinguishable from a missing one.

There is no version token: two concurrent writers on the same incident race
and the last replace wins.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from postmortem.core.exceptions import ActionItemNotFound, IncidentNotFound, StoreError
from postmortem.store.base import DocumentNotFound, IncidentStore

from .context import RequestContext
from .export import render_markdown
from .schema import (
    ActionItem,
    AuditEntry,
    CreateActionItem,
    CreateIncident,
    CreateTimelineEvent,
    Incident,
    TimelineEvent,
    UpdateActionItem,
    UpdateIncident,
    new_id,
    parse_payload,
    utc_now,
)

logger = logging.getLogger("postmortem.incident")

# A mutation receives the current aggregate and returns the field updates to
# apply, the audit action tag, the audit details, and a result for the caller.
Mutation = Callable[[Incident], Tuple[Dict[str, Any], str, Optional[str], Any]]


@dataclass
class IncidentAggregateService:
    """
    Tenant-scoped operations on incident aggregates.

    The clock and id factory are injectable so tests can control time and
    identifiers.
    """

    store: IncidentStore
    clock: Callable[[], datetime] = field(default=utc_now)
    id_factory: Callable[[], str] = field(default=new_id)

    # ─── Reads ───────────────────────────────────────────────────────────────

    def get(self, incident_id: str, tenant_id: str) -> Incident:
        document = self.store.read(incident_id, tenant_id)
        if document is None:
            raise IncidentNotFound()
        return Incident.from_document(document)

    def list(self, tenant_id: str) -> List[Incident]:
        return [Incident.from_document(doc) for doc in self.store.list_by_tenant(tenant_id)]

    def export_markdown(self, incident_id: str, tenant_id: str) -> str:
        return render_markdown(self.get(incident_id, tenant_id), generated_at=self.clock())

    # ─── Aggregate lifecycle ─────────────────────────────────────────────────

    def create(self, payload: Any, ctx: RequestContext) -> Incident:
        data = parse_payload(CreateIncident, payload)
        now = self.clock()
        incident = Incident(
            id=self.id_factory(),
            tenant_id=ctx.tenant_id,
            **data.model_dump(),
            timeline=(),
            action_items=(),
            audit_log=(self._audit(ctx, "created", None, now),),
            created_at=now,
            updated_at=now,
        )
        self.store.create(incident.to_document())
        logger.info("Created incident %s (tenant=%s, user=%s)", incident.id, ctx.tenant_id, ctx.user)
        return incident

    def update(self, incident_id: str, payload: Any, ctx: RequestContext) -> Incident:
        patch = parse_payload(UpdateIncident, payload)

        def mutate(existing: Incident):
            return patch.changes(), "updated", json.dumps(patch.changes_json()), None

        updated, _ = self._apply(incident_id, ctx, mutate)
        return updated

    def delete(self, incident_id: str, tenant_id: str) -> None:
        """
        Hard delete; no audit entry is written since the aggregate is gone.

        Any removal failure, not-found included, is reported as IncidentNotFound.
        """
        try:
            self.store.delete(incident_id, tenant_id)
        except StoreError as exc:
            logger.warning("Delete of incident %s failed: %s", incident_id, exc)
            raise IncidentNotFound() from exc
        logger.info("Deleted incident %s (tenant=%s)", incident_id, tenant_id)

    # ─── Timeline ────────────────────────────────────────────────────────────

    def add_timeline_event(self, incident_id: str, payload: Any, ctx: RequestContext) -> TimelineEvent:
        data = parse_payload(CreateTimelineEvent, payload)

        def mutate(existing: Incident):
            event = TimelineEvent(id=self.id_factory(), **data.model_dump())
            # sorted() is stable: equal timestamps keep insertion order.
            timeline = tuple(sorted(existing.timeline + (event,), key=lambda e: e.timestamp))
            return {"timeline": timeline}, "timeline_added", event.description, event

        _, event = self._apply(incident_id, ctx, mutate)
        return event

    def delete_timeline_event(self, incident_id: str, event_id: str, ctx: RequestContext) -> None:
        def mutate(existing: Incident):
            timeline = tuple(e for e in existing.timeline if e.id != event_id)
            return {"timeline": timeline}, "timeline_deleted", event_id, None

        self._apply(incident_id, ctx, mutate)

    # ─── Action items ────────────────────────────────────────────────────────

    def add_action_item(self, incident_id: str, payload: Any, ctx: RequestContext) -> ActionItem:
        data = parse_payload(CreateActionItem, payload)

        def mutate(existing: Incident):
            item = ActionItem(id=self.id_factory(), **data.model_dump())
            return {"action_items": existing.action_items + (item,)}, "action_added", item.title, item

        _, item = self._apply(incident_id, ctx, mutate)
        return item

    def update_action_item(
        self, incident_id: str, action_id: str, payload: Any, ctx: RequestContext
    ) -> ActionItem:
        patch = parse_payload(UpdateActionItem, payload)

        def mutate(existing: Incident):
            index = next(
                (i for i, item in enumerate(existing.action_items) if item.id == action_id),
                None,
            )
            if index is None:
                raise ActionItemNotFound()
            item = existing.action_items[index].model_copy(update=patch.changes())
            items = existing.action_items[:index] + (item,) + existing.action_items[index + 1 :]
            return {"action_items": items}, "action_updated", action_id, item

        _, item = self._apply(incident_id, ctx, mutate)
        return item

    def delete_action_item(self, incident_id: str, action_id: str, ctx: RequestContext) -> None:
        def mutate(existing: Incident):
            items = tuple(a for a in existing.action_items if a.id != action_id)
            return {"action_items": items}, "action_deleted", action_id, None

        self._apply(incident_id, ctx, mutate)

    # ─── Protocol ────────────────────────────────────────────────────────────

    def _apply(self, incident_id: str, ctx: RequestContext, mutate: Mutation) -> Tuple[Incident, Any]:
        existing = self.get(incident_id, ctx.tenant_id)
        changes, action, details, result = mutate(existing)

        now = self.clock()
        updated_at = max(now, existing.updated_at)
        updated = existing.model_copy(
            update={
                **changes,
                "updated_at": updated_at,
                "audit_log": existing.audit_log + (self._audit(ctx, action, details, updated_at),),
            }
        )
        try:
            self.store.replace(updated.to_document())
        except DocumentNotFound as exc:
            # Deleted between our read and write.
            raise IncidentNotFound() from exc

        logger.debug("Incident %s: %s by %s", incident_id, action, ctx.user)
        return updated, result

    def _audit(self, ctx: RequestContext, action: str, details: Optional[str], at: datetime) -> AuditEntry:
        return AuditEntry(id=self.id_factory(), timestamp=at, user=ctx.user, action=action, details=details)
