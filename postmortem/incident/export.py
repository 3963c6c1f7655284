"""
Markdown postmortem export.

Pure read-side projection of an incident; never mutates or audits.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from .schema import ActionItemStatus, Incident, isoformat_utc, utc_now


def render_markdown(incident: Incident, generated_at: Optional[datetime] = None) -> str:
    """
    Render the fixed postmortem document.

    Timeline bullets follow the stored order, which is ascending by timestamp.
    """
    lines: List[str] = []
    lines.append(f"# Postmortem: {incident.title}")
    lines.append("")
    lines.append(f"**Severity:** {incident.severity.value}  ")
    lines.append(f"**Status:** {incident.status.value}  ")
    lines.append(f"**Started:** {isoformat_utc(incident.started_at)}  ")
    if incident.resolved_at:
        lines.append(f"**Resolved:** {isoformat_utc(incident.resolved_at)}  ")
    lines.append("")

    if incident.services_impacted:
        lines.append("## Services Impacted")
        lines.extend(f"- {service}" for service in incident.services_impacted)
        lines.append("")

    if incident.summary:
        lines.append("## Summary")
        lines.append(incident.summary)
        lines.append("")

    if incident.timeline:
        lines.append("## Timeline")
        for event in incident.timeline:
            lines.append(f"- **{isoformat_utc(event.timestamp)}** ({event.author}): {event.description}")
        lines.append("")

    if incident.action_items:
        lines.append("## Action Items")
        for item in incident.action_items:
            check = "x" if item.status == ActionItemStatus.DONE else " "
            due = f" (due {isoformat_utc(item.due_date)})" if item.due_date else ""
            lines.append(f"- [{check}] {item.title} — *{item.owner}*{due}")
        lines.append("")

    lines.append("---")
    lines.append(f"*Generated at {isoformat_utc(generated_at or utc_now())}*")
    return "\n".join(lines)


def export_filename(incident_id: str) -> str:
    return f"postmortem-{incident_id}.md"
