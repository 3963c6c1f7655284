"""
Unit tests for the incident aggregate service.

Covers the read-modify-write protocol: audit trail growth, updated_at
monotonicity, timeline ordering, shallow merges and tenant scoping.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from postmortem.core.exceptions import (
    ActionItemNotFound,
    IncidentNotFound,
    NotFoundError,
    StoreError,
    ValidationError,
)
from postmortem.incident.context import RequestContext
from postmortem.incident.schema import ActionItemStatus, IncidentStatus, Severity
from postmortem.incident.service import IncidentAggregateService
from postmortem.store.memory import InMemoryIncidentStore


def _event(timestamp: str, description: str = "event", author: str = "bot"):
    return {"timestamp": timestamp, "description": description, "author": author}


class TestCreate:
    def test_created_aggregate_shape(self, service, ctx, incident_payload):
        incident = service.create(incident_payload, ctx)

        assert incident.id
        assert incident.tenant_id == "default"
        assert incident.timeline == ()
        assert incident.action_items == ()
        assert len(incident.audit_log) == 1
        assert incident.audit_log[0].action == "created"
        assert incident.audit_log[0].user == "alice@example.com"
        assert incident.created_at == incident.updated_at

    def test_anonymous_caller_recorded(self, service, incident_payload):
        incident = service.create(incident_payload, RequestContext())
        assert incident.audit_log[0].user == "anonymous"

    def test_invalid_payload_writes_nothing(self, service, store, ctx, incident_payload):
        incident_payload["severity"] = "CRITICAL"
        with pytest.raises(ValidationError):
            service.create(incident_payload, ctx)
        assert len(store) == 0

    def test_round_trip(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        loaded = service.get(created.id, "default")

        assert loaded.to_document() == created.to_document()
        assert loaded.title == "API Outage"
        assert loaded.severity == Severity.SEV2
        assert loaded.status == IncidentStatus.INVESTIGATING
        assert loaded.services_impacted == ("api",)
        assert loaded.started_at == datetime(2026, 1, 9, 12, 0, tzinfo=timezone.utc)


class TestReads:
    def test_get_missing(self, service):
        with pytest.raises(IncidentNotFound):
            service.get("missing", "default")

    def test_cross_tenant_get_is_not_found(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        with pytest.raises(IncidentNotFound):
            service.get(created.id, "other-tenant")

    def test_cross_tenant_mutation_is_not_found(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        intruder = RequestContext(tenant_id="other-tenant")

        with pytest.raises(IncidentNotFound):
            service.update(created.id, {"title": "pwned"}, intruder)
        with pytest.raises(IncidentNotFound):
            service.add_timeline_event(created.id, _event("2026-01-09T12:05:00Z"), intruder)
        with pytest.raises(IncidentNotFound):
            service.delete(created.id, "other-tenant")

        assert service.get(created.id, "default").to_document() == created.to_document()

    def test_list_newest_first(self, service, ctx, incident_payload):
        ids = []
        for title in ("first", "second", "third"):
            incident_payload["title"] = title
            ids.append(service.create(incident_payload, ctx).id)

        listed = service.list("default")
        assert [i.id for i in listed] == list(reversed(ids))

    def test_list_empty_tenant(self, service):
        assert service.list("nobody") == []

    def test_list_is_tenant_scoped(self, service, ctx, incident_payload):
        service.create(incident_payload, ctx)
        service.create(incident_payload, RequestContext(tenant_id="other"))
        assert len(service.list("default")) == 1
        assert len(service.list("other")) == 1


class TestUpdate:
    def test_shallow_merge_of_present_keys(self, service, ctx, incident_payload):
        incident_payload["summary"] = "Original summary"
        created = service.create(incident_payload, ctx)

        updated = service.update(created.id, {"status": "resolved", "resolvedAt": "2026-01-09T14:00:00Z"}, ctx)

        assert updated.status == IncidentStatus.RESOLVED
        assert updated.resolved_at == datetime(2026, 1, 9, 14, 0, tzinfo=timezone.utc)
        assert updated.summary == "Original summary"
        assert updated.title == created.title
        assert updated.id == created.id
        assert updated.tenant_id == created.tenant_id

    def test_audit_details_capture_changes(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        updated = service.update(created.id, {"severity": "SEV1"}, ctx)

        entry = updated.audit_log[-1]
        assert entry.action == "updated"
        assert json.loads(entry.details) == {"severity": "SEV1"}

    def test_empty_update_only_advances_metadata(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        updated = service.update(created.id, {}, ctx)

        domain_fields = ("title", "severity", "status", "summary", "services_impacted",
                         "started_at", "resolved_at", "timeline", "action_items")
        for name in domain_fields:
            assert getattr(updated, name) == getattr(created, name)
        assert updated.updated_at > created.updated_at
        assert len(updated.audit_log) == len(created.audit_log) + 1
        assert updated.audit_log[-1].details == "{}"

    def test_null_does_not_erase(self, service, ctx, incident_payload):
        incident_payload["summary"] = "Keep me"
        created = service.create(incident_payload, ctx)
        updated = service.update(created.id, {"summary": None}, ctx)
        assert updated.summary == "Keep me"

    def test_id_and_tenant_are_immutable(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        updated = service.update(created.id, {"id": "hijack", "tenantId": "other"}, ctx)

        assert updated.id == created.id
        assert updated.tenant_id == "default"
        assert service.get(created.id, "default").id == created.id

    def test_validation_happens_before_lookup(self, service, ctx):
        with pytest.raises(ValidationError):
            service.update("does-not-exist", {"status": "closed"}, ctx)

    def test_update_missing_incident(self, service, ctx):
        with pytest.raises(IncidentNotFound):
            service.update("does-not-exist", {"status": "resolved"}, ctx)

    def test_invalid_update_writes_nothing(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        with pytest.raises(ValidationError):
            service.update(created.id, {"title": ""}, ctx)
        assert service.get(created.id, "default").to_document() == created.to_document()

    def test_any_status_transition_allowed(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        service.update(created.id, {"status": "resolved"}, ctx)
        reopened = service.update(created.id, {"status": "investigating"}, ctx)
        assert reopened.status == IncidentStatus.INVESTIGATING


class TestDelete:
    def test_delete_removes_aggregate(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        service.delete(created.id, "default")

        with pytest.raises(IncidentNotFound):
            service.get(created.id, "default")

    def test_delete_missing_is_not_found(self, service):
        with pytest.raises(IncidentNotFound):
            service.delete("missing", "default")

    def test_delete_twice_is_not_found(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        service.delete(created.id, "default")
        with pytest.raises(IncidentNotFound):
            service.delete(created.id, "default")

    def test_any_removal_failure_is_not_found(self, clock, ctx, incident_payload):
        class FailingDeleteStore(InMemoryIncidentStore):
            def delete(self, incident_id, tenant_id):
                raise StoreError("connection reset")

        service = IncidentAggregateService(store=FailingDeleteStore(), clock=clock)
        created = service.create(incident_payload, ctx)
        with pytest.raises(IncidentNotFound):
            service.delete(created.id, "default")


class TestTimeline:
    def test_timeline_sorted_regardless_of_insertion_order(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        for ts in ("2026-01-09T10:00:00Z", "2026-01-09T09:00:00Z", "2026-01-09T09:30:00Z"):
            service.add_timeline_event(created.id, _event(ts), ctx)

        timeline = service.get(created.id, "default").timeline
        assert [(e.timestamp.hour, e.timestamp.minute) for e in timeline] == [(9, 0), (9, 30), (10, 0)]

    def test_equal_timestamps_keep_insertion_order(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        service.add_timeline_event(created.id, _event("2026-01-09T10:00:00Z", "first"), ctx)
        service.add_timeline_event(created.id, _event("2026-01-09T09:00:00Z", "earlier"), ctx)
        service.add_timeline_event(created.id, _event("2026-01-09T10:00:00Z", "second"), ctx)

        timeline = service.get(created.id, "default").timeline
        assert [e.description for e in timeline] == ["earlier", "first", "second"]

    def test_add_returns_event_and_audits_description(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        event = service.add_timeline_event(created.id, _event("2026-01-09T12:05:00Z", "Alert fired"), ctx)

        incident = service.get(created.id, "default")
        assert event.id
        assert incident.timeline == (event,)
        assert incident.audit_log[-1].action == "timeline_added"
        assert incident.audit_log[-1].details == "Alert fired"

    def test_event_ids_unique(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        a = service.add_timeline_event(created.id, _event("2026-01-09T12:05:00Z"), ctx)
        b = service.add_timeline_event(created.id, _event("2026-01-09T12:05:00Z"), ctx)
        assert a.id != b.id

    def test_invalid_event_rejected(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        with pytest.raises(ValidationError):
            service.add_timeline_event(created.id, _event("2026-01-09T12:05:00Z", author=""), ctx)
        assert service.get(created.id, "default").timeline == ()

    def test_add_to_missing_incident(self, service, ctx):
        with pytest.raises(IncidentNotFound):
            service.add_timeline_event("missing", _event("2026-01-09T12:05:00Z"), ctx)

    def test_delete_event(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        keep = service.add_timeline_event(created.id, _event("2026-01-09T12:05:00Z", "keep"), ctx)
        drop = service.add_timeline_event(created.id, _event("2026-01-09T12:06:00Z", "drop"), ctx)

        service.delete_timeline_event(created.id, drop.id, ctx)

        incident = service.get(created.id, "default")
        assert incident.timeline == (keep,)
        assert incident.audit_log[-1].action == "timeline_deleted"
        assert incident.audit_log[-1].details == drop.id

    def test_delete_missing_event_is_noop_but_audited(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        service.add_timeline_event(created.id, _event("2026-01-09T12:05:00Z"), ctx)
        before = service.get(created.id, "default")

        service.delete_timeline_event(created.id, "no-such-event", ctx)

        after = service.get(created.id, "default")
        assert after.timeline == before.timeline
        assert after.updated_at > before.updated_at
        assert len(after.audit_log) == len(before.audit_log) + 1
        assert after.audit_log[-1].details == "no-such-event"

    def test_delete_event_of_missing_incident(self, service, ctx):
        with pytest.raises(IncidentNotFound):
            service.delete_timeline_event("missing", "evt", ctx)


class TestActionItems:
    def test_add_defaults_to_open_and_keeps_insertion_order(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        first = service.add_action_item(created.id, {"title": "Zebra", "owner": "bob"}, ctx)
        second = service.add_action_item(created.id, {"title": "Alpha", "owner": "carol"}, ctx)

        incident = service.get(created.id, "default")
        assert first.status == ActionItemStatus.OPEN
        assert incident.action_items == (first, second)
        assert incident.audit_log[-1].action == "action_added"
        assert incident.audit_log[-1].details == "Alpha"

    def test_update_merges_partial_payload(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        item = service.add_action_item(
            created.id, {"title": "Add alert", "owner": "bob", "dueDate": "2026-02-01T00:00:00Z"}, ctx
        )

        updated = service.update_action_item(created.id, item.id, {"status": "done"}, ctx)

        assert updated.id == item.id
        assert updated.status == ActionItemStatus.DONE
        assert updated.title == "Add alert"
        assert updated.owner == "bob"
        assert updated.due_date == item.due_date

        incident = service.get(created.id, "default")
        assert incident.action_items == (updated,)
        assert incident.audit_log[-1].action == "action_updated"
        assert incident.audit_log[-1].details == item.id

    def test_update_preserves_position(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        a = service.add_action_item(created.id, {"title": "A", "owner": "x"}, ctx)
        b = service.add_action_item(created.id, {"title": "B", "owner": "x"}, ctx)
        c = service.add_action_item(created.id, {"title": "C", "owner": "x"}, ctx)

        service.update_action_item(created.id, b.id, {"title": "B2"}, ctx)

        titles = [i.title for i in service.get(created.id, "default").action_items]
        assert titles == ["A", "B2", "C"]
        assert a.id != c.id

    def test_update_missing_item_is_distinct_not_found(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        before = service.get(created.id, "default")

        with pytest.raises(ActionItemNotFound) as exc_info:
            service.update_action_item(created.id, "no-such-item", {"status": "done"}, ctx)

        assert isinstance(exc_info.value, NotFoundError)
        assert not isinstance(exc_info.value, IncidentNotFound)
        assert service.get(created.id, "default").to_document() == before.to_document()

    def test_update_item_of_missing_incident(self, service, ctx):
        with pytest.raises(IncidentNotFound):
            service.update_action_item("missing", "item", {"status": "done"}, ctx)

    def test_update_item_validates_payload(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        item = service.add_action_item(created.id, {"title": "A", "owner": "x"}, ctx)
        with pytest.raises(ValidationError):
            service.update_action_item(created.id, item.id, {"status": "finished"}, ctx)

    def test_delete_item(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        item = service.add_action_item(created.id, {"title": "A", "owner": "x"}, ctx)

        service.delete_action_item(created.id, item.id, ctx)

        incident = service.get(created.id, "default")
        assert incident.action_items == ()
        assert incident.audit_log[-1].action == "action_deleted"
        assert incident.audit_log[-1].details == item.id

    def test_delete_missing_item_is_noop_but_audited(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        service.delete_action_item(created.id, "no-such-item", ctx)

        incident = service.get(created.id, "default")
        assert incident.action_items == ()
        assert len(incident.audit_log) == 2


class TestAggregateInvariants:
    def test_audit_grows_by_one_and_updated_at_never_decreases(self, service, ctx, incident_payload):
        incident = service.create(incident_payload, ctx)
        item_holder = {}

        def add_item():
            item_holder["item"] = service.add_action_item(incident.id, {"title": "T", "owner": "o"}, ctx)

        operations = [
            lambda: service.update(incident.id, {"title": "Renamed"}, ctx),
            lambda: service.add_timeline_event(incident.id, _event("2026-01-09T12:05:00Z"), ctx),
            lambda: service.delete_timeline_event(incident.id, "none", ctx),
            add_item,
            lambda: service.update_action_item(incident.id, item_holder["item"].id, {"status": "done"}, ctx),
            lambda: service.delete_action_item(incident.id, item_holder["item"].id, ctx),
            lambda: service.update(incident.id, {}, ctx),
        ]

        previous = service.get(incident.id, "default")
        for operation in operations:
            operation()
            current = service.get(incident.id, "default")
            assert current.updated_at >= previous.updated_at
            assert len(current.audit_log) == len(previous.audit_log) + 1
            assert current.audit_log[: len(previous.audit_log)] == previous.audit_log
            previous = current

    def test_updated_at_monotonic_under_clock_skew(self, store, ctx, incident_payload):
        start = datetime(2026, 1, 9, 13, 0, tzinfo=timezone.utc)
        times = iter([start, start - timedelta(minutes=5)])
        service = IncidentAggregateService(store=store, clock=lambda: next(times))

        created = service.create(incident_payload, ctx)
        updated = service.update(created.id, {"status": "identified"}, ctx)

        assert updated.updated_at == created.updated_at
        assert updated.audit_log[-1].timestamp == updated.updated_at

    def test_export_is_read_only(self, service, ctx, incident_payload):
        created = service.create(incident_payload, ctx)
        markdown = service.export_markdown(created.id, "default")

        assert markdown.startswith("# Postmortem: API Outage")
        assert service.get(created.id, "default").to_document() == created.to_document()

    def test_export_missing(self, service):
        with pytest.raises(IncidentNotFound):
            service.export_markdown("missing", "default")


def test_api_outage_scenario(service, ctx, incident_payload):
    incident = service.create(incident_payload, ctx)
    service.add_timeline_event(
        incident.id,
        {"timestamp": "2026-01-09T12:05:00Z", "description": "Alert fired", "author": "bot"},
        ctx,
    )
    service.add_action_item(incident.id, {"title": "Add alert", "owner": "bob", "status": "open"}, ctx)

    loaded = service.get(incident.id, "default")
    assert len(loaded.timeline) == 1
    assert len(loaded.action_items) == 1
    assert len(loaded.audit_log) == 3
    assert [e.action for e in loaded.audit_log] == ["created", "timeline_added", "action_added"]
