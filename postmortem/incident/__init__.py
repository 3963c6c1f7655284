"""
Incident aggregate: schema, request context, service, and Markdown export.
"""

from .context import ANONYMOUS, DEFAULT_TENANT, Identity, RequestContext
from .export import export_filename, render_markdown
from .schema import (
    ActionItem,
    ActionItemStatus,
    AuditEntry,
    CreateActionItem,
    CreateIncident,
    CreateTimelineEvent,
    Incident,
    IncidentStatus,
    Severity,
    TimelineEvent,
    UpdateActionItem,
    UpdateIncident,
    parse_payload,
)
from .service import IncidentAggregateService

__all__ = [
    "ANONYMOUS",
    "DEFAULT_TENANT",
    "Identity",
    "RequestContext",
    "IncidentAggregateService",
    "render_markdown",
    "export_filename",
    "Incident",
    "TimelineEvent",
    "ActionItem",
    "AuditEntry",
    "Severity",
    "IncidentStatus",
    "ActionItemStatus",
    "CreateIncident",
    "UpdateIncident",
    "CreateTimelineEvent",
    "CreateActionItem",
    "UpdateActionItem",
    "parse_payload",
]
