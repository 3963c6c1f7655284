"""
Schema for the incident aggregate.

An Incident is the aggregate root: it owns its timeline, action items and
audit log, and is stored and replaced as one document. All records are
frozen; every mutation produces a new Incident value.

Wire format is camelCase JSON with UTC ISO-8601 timestamps. Python code uses
the snake_case attribute names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Mapping, Optional, Tuple, Type, TypeVar
from uuid import uuid4

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from postmortem.core.exceptions import ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.astimezone(timezone.utc)
    except OverflowError as exc:
        # pydantic only reports ValueError as a field error.
        raise ValueError("timestamp out of range") from exc


def isoformat_utc(value: datetime) -> str:
    """Render a timestamp the way it appears on the wire (2026-01-09T12:00:00Z)."""
    return _as_utc(value).isoformat().replace("+00:00", "Z")


Timestamp = Annotated[datetime, AfterValidator(_as_utc)]


class Severity(str, Enum):
    """Incident severity, SEV1 being the most severe."""

    SEV1 = "SEV1"
    SEV2 = "SEV2"
    SEV3 = "SEV3"
    SEV4 = "SEV4"


class IncidentStatus(str, Enum):
    """
    Incident lifecycle status.

    No transition graph is enforced: any status may follow any other.
    """

    INVESTIGATING = "investigating"
    IDENTIFIED = "identified"
    MONITORING = "monitoring"
    RESOLVED = "resolved"


class ActionItemStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class _Record(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class TimelineEvent(_Record):
    """
    A single dated entry on the incident timeline.

    Fields:
    - id: unique within the incident
    - timestamp: when the event happened (UTC)
    - description: what happened (1-2000 chars)
    - author: who recorded it (1-200 chars)
    """

    id: str
    timestamp: Timestamp
    description: str = Field(min_length=1, max_length=2000)
    author: str = Field(min_length=1, max_length=200)


class ActionItem(_Record):
    """
    Follow-up work item attached to an incident.

    Fields:
    - id: unique within the incident
    - title: short description (1-500 chars)
    - owner: responsible person (1-200 chars)
    - due_date: optional deadline
    - status: open, in_progress or done
    """

    id: str
    title: str = Field(min_length=1, max_length=500)
    owner: str = Field(min_length=1, max_length=200)
    due_date: Optional[Timestamp] = None
    status: ActionItemStatus = ActionItemStatus.OPEN


class AuditEntry(_Record):
    """
    Immutable audit trail record.

    Fields:
    - action: tag such as created, updated, timeline_added, action_deleted
    - user: display name of the caller, or "anonymous"
    - details: optional free text (serialized changes, title or id)
    """

    id: str
    timestamp: Timestamp
    user: str
    action: str
    details: Optional[str] = None


class Incident(_Record):
    """
    Incident aggregate root.

    Invariants:
    - id and tenant_id never change after creation.
    - updated_at never decreases.
    - audit_log only grows, by one entry per mutation.
    - timeline is sorted ascending by timestamp.
    """

    id: str
    tenant_id: str = "default"
    title: str = Field(min_length=1, max_length=500)
    severity: Severity
    status: IncidentStatus
    summary: Optional[str] = Field(default=None, max_length=5000)
    services_impacted: Tuple[str, ...] = ()
    started_at: Timestamp
    resolved_at: Optional[Timestamp] = None
    timeline: Tuple[TimelineEvent, ...] = ()
    action_items: Tuple[ActionItem, ...] = ()
    audit_log: Tuple[AuditEntry, ...] = ()
    created_at: Timestamp
    updated_at: Timestamp

    def to_document(self) -> Dict[str, Any]:
        """JSON-compatible document as stored and returned over HTTP."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Incident":
        return cls.model_validate(document)


# ─── Request payloads ────────────────────────────────────────────────────────


class CreateIncident(_Record):
    title: str = Field(min_length=1, max_length=500)
    severity: Severity
    status: IncidentStatus
    summary: Optional[str] = Field(default=None, max_length=5000)
    services_impacted: Tuple[str, ...] = ()
    started_at: Timestamp
    resolved_at: Optional[Timestamp] = None


class UpdateIncident(_Record):
    """
    Partial incident update.

    Only keys present in the payload are applied; an explicit null is treated
    as absent and never erases a stored value.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    severity: Optional[Severity] = None
    status: Optional[IncidentStatus] = None
    summary: Optional[str] = Field(default=None, max_length=5000)
    services_impacted: Optional[Tuple[str, ...]] = None
    started_at: Optional[Timestamp] = None
    resolved_at: Optional[Timestamp] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)

    def changes_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True, exclude_none=True)


class CreateTimelineEvent(_Record):
    timestamp: Timestamp
    description: str = Field(min_length=1, max_length=2000)
    author: str = Field(min_length=1, max_length=200)


class CreateActionItem(_Record):
    title: str = Field(min_length=1, max_length=500)
    owner: str = Field(min_length=1, max_length=200)
    due_date: Optional[Timestamp] = None
    status: ActionItemStatus = ActionItemStatus.OPEN


class UpdateActionItem(_Record):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    owner: Optional[str] = Field(default=None, min_length=1, max_length=200)
    due_date: Optional[Timestamp] = None
    status: Optional[ActionItemStatus] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


PayloadT = TypeVar("PayloadT", bound=BaseModel)


def _format_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "body"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)


def parse_payload(model: Type[PayloadT], payload: Any) -> PayloadT:
    """
    Validate a request payload into a DTO.

    Raises:
        ValidationError: payload is not an object or a field is invalid.
    """
    if isinstance(payload, model):
        return payload
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(_format_errors(exc)) from exc
