"""
Prompt construction for incident narratives.

Timestamps are pre-formatted in the caller's timezone and the model is told
to copy them verbatim, since models tend to "correct" times they are given.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from postmortem.incident.schema import ActionItemStatus, Incident

from .schema import Prompt, TimezoneHint

SUMMARY_SYSTEM = (
    "You are an expert Site Reliability Engineer writing incident postmortem summaries. "
    "Be concise, professional, and blameless. Write 2-3 paragraphs. "
    "Do not use markdown formatting or headers. "
    "CRITICAL: Use the exact dates and times provided - do not change them."
)

ACTIONS_SYSTEM = (
    "You are an expert Site Reliability Engineer. You must respond with ONLY a JSON array "
    "of strings containing action items. No other text, no explanation, no markdown - "
    "just the JSON array."
)

REPORT_SYSTEM = (
    "You are an expert Site Reliability Engineer writing comprehensive incident postmortem "
    "reports. Use proper Markdown formatting with headers.\n\n"
    "CRITICAL INSTRUCTION: You MUST use the EXACT dates and times provided. Do NOT change, "
    "recalculate, or adjust any timestamps. Copy them exactly as given."
)


def resolve_timezone(hint: Optional[TimezoneHint]) -> tzinfo:
    """
    Pick the display timezone: IANA name, then fixed offset, then UTC.
    """
    if hint is None:
        return timezone.utc
    if hint.timezone:
        try:
            return ZoneInfo(hint.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    if hint.timezone_offset is not None:
        # getTimezoneOffset() is positive west of UTC.
        try:
            return timezone(timedelta(minutes=-hint.timezone_offset))
        except ValueError:
            pass
    return timezone.utc


def format_for_prompt(value: datetime, hint: Optional[TimezoneHint] = None) -> str:
    """Format as 'January 9, 2026 at 12:05 PM' in the caller's timezone."""
    try:
        local = value.astimezone(resolve_timezone(hint))
    except OverflowError:
        # Shifting a timestamp at the edge of the datetime range; show it in UTC.
        local = value.astimezone(timezone.utc)
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local:%B} {local.day}, {local.year} at {hour}:{local:%M} {meridiem}"


def _services(incident: Incident) -> str:
    return ", ".join(incident.services_impacted) or "Not specified"


def build_summary_prompt(incident: Incident, hint: Optional[TimezoneHint] = None) -> Prompt:
    started = format_for_prompt(incident.started_at, hint)
    timeline = "\n".join(
        f"- {format_for_prompt(e.timestamp, hint)}: {e.description} (by {e.author})"
        for e in incident.timeline
    )
    user = (
        "Write an incident summary. Use the EXACT dates/times below - do not modify them:\n\n"
        f"Title: {incident.title}\n"
        f"Severity: {incident.severity.value}\n"
        f"Status: {incident.status.value}\n"
        f"Incident Start Time: {started}\n"
        f"Services Affected: {_services(incident)}\n\n"
        f"Timeline:\n{timeline}\n\n"
        "Cover: what happened, the impact, root cause (if apparent from timeline), and "
        f"resolution. Start by mentioning the incident occurred on {started}."
    )
    return Prompt(system=SUMMARY_SYSTEM, user=user)


def build_actions_prompt(incident: Incident, count: int = 4) -> Prompt:
    existing = "\n".join(f"- {a.title}" for a in incident.action_items)
    already_planned = f"Already planned (do not repeat these):\n{existing}\n\n" if existing else ""
    user = (
        f"Suggest {count} follow-up action items for this incident:\n\n"
        f"Incident: {incident.title}\n"
        f"Severity: {incident.severity.value}\n"
        f"Services: {_services(incident)}\n"
        f"Summary: {incident.summary or 'No summary'}\n\n"
        f"{already_planned}"
        'Respond with ONLY a JSON array like: ["Add monitoring for X", "Create runbook for Y", '
        '"Review Z", "Implement W"]'
    )
    return Prompt(system=ACTIONS_SYSTEM, user=user)


def build_report_prompt(incident: Incident, hint: Optional[TimezoneHint] = None) -> Prompt:
    started = format_for_prompt(incident.started_at, hint)
    resolved = format_for_prompt(incident.resolved_at, hint) if incident.resolved_at else "Ongoing"

    if incident.timeline:
        timeline = "\n".join(
            f"- {format_for_prompt(e.timestamp, hint)}: {e.description} ({e.author})"
            for e in incident.timeline
        )
    else:
        timeline = "No timeline recorded"

    if incident.action_items:
        actions = "\n".join(
            f"- [{'x' if a.status == ActionItemStatus.DONE else ' '}] {a.title} (Owner: {a.owner})"
            for a in incident.action_items
        )
    else:
        actions = "No action items"

    user = (
        "Write a complete postmortem report. COPY ALL DATES EXACTLY - DO NOT CHANGE THEM:\n\n"
        "=== INCIDENT DETAILS (USE THESE EXACT VALUES) ===\n"
        f"Title: {incident.title}\n"
        f"Severity: {incident.severity.value}\n"
        f"Status: {incident.status.value}\n"
        f"INCIDENT START TIME: {started}\n"
        f"RESOLUTION TIME: {resolved}\n"
        f"Services: {_services(incident)}\n"
        f"Summary: {incident.summary or 'Not provided'}\n\n"
        "=== TIMELINE (COPY THESE TIMESTAMPS EXACTLY) ===\n"
        f"{timeline}\n\n"
        "=== ACTION ITEMS ===\n"
        f"{actions}\n\n"
        "Write a professional Markdown postmortem report. In the Executive Summary, state that "
        f'the incident started on "{started}". Include these sections:\n\n'
        f"# {incident.title} Postmortem Report\n"
        "## Executive Summary\n"
        "## Impact\n"
        "## Root Cause Analysis\n"
        "## Timeline\n"
        "## Action Items\n"
        "## Lessons Learned"
    )
    return Prompt(system=REPORT_SYSTEM, user=user)
