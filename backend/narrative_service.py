"""
Backend service layer for AI-generated incident narratives.

Turns an incident snapshot into a summary, action suggestions, or a full
Markdown report using a swappable text generator. Read-only with respect to
the aggregate: nothing generated here is persisted.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from postmortem.core.config import AIConfig
from postmortem.core.exceptions import ConfigurationError, UpstreamGenerationError, ValidationError
from postmortem.incident.schema import ActionItemStatus, Incident, IncidentStatus, Severity

from llm.chat import ChatCompletionsModel
from llm.prompt import build_actions_prompt, build_report_prompt, build_summary_prompt, format_for_prompt
from llm.schema import Prompt, TextGenerator, TimezoneHint

logger = logging.getLogger("backend.narrative")

_JSON_ARRAY = re.compile(r"\[[\s\S]*?\]")


@dataclass
class IncidentNarrativeService:
    """
    Narrative generation with a deterministic fallback.

    - Builds prompts from the incident snapshot.
    - Calls the generator once per request.
    - Validates the output shape.
    - On any upstream failure, answers from templates when fallback_enabled,
      otherwise raises UpstreamGenerationError.

    model=None means template-only operation.
    """

    model: Optional[TextGenerator]
    fallback_enabled: bool = True
    max_suggestions: int = 5

    def generate_summary(self, incident: Incident, hint: Optional[TimezoneHint] = None) -> str:
        if not incident.timeline:
            raise ValidationError("Add at least one timeline event before generating a summary")

        prompt = build_summary_prompt(incident, hint)
        return self._with_fallback(
            lambda: self._generate(prompt),
            lambda: self._fallback_summary(incident, hint),
            "AI summary generation failed. Please try again.",
        )

    def suggest_actions(self, incident: Incident, hint: Optional[TimezoneHint] = None) -> List[str]:
        prompt = build_actions_prompt(incident)
        return self._with_fallback(
            lambda: self._parse_suggestions(self._generate(prompt)),
            lambda: self._fallback_suggestions(incident),
            "AI did not return valid suggestions. Please try again.",
        )

    def generate_report(self, incident: Incident, hint: Optional[TimezoneHint] = None) -> str:
        prompt = build_report_prompt(incident, hint)
        return self._with_fallback(
            lambda: self._generate(prompt),
            lambda: self._fallback_report(incident, hint),
            "AI report generation failed. Please try again.",
        )

    def _with_fallback(self, attempt: Callable, fallback: Callable, user_message: str):
        try:
            return attempt()
        except Exception as exc:
            if not self.fallback_enabled:
                raise UpstreamGenerationError(user_message) from exc
            logger.warning("Narrative generation failed, using template fallback: %s", exc)
            return fallback()

    def _generate(self, prompt: Prompt) -> str:
        if self.model is None:
            raise UpstreamGenerationError("AI is not configured")
        raw = self.model.generate(prompt)
        if not raw or not raw.strip():
            raise UpstreamGenerationError("AI returned an empty response")
        return raw.strip()

    def _parse_suggestions(self, raw: str) -> List[str]:
        match = _JSON_ARRAY.search(raw)
        if match is None:
            raise UpstreamGenerationError("No JSON array found in AI output")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise UpstreamGenerationError("AI returned malformed data") from exc

        suggestions = [s.strip() for s in parsed if isinstance(s, str) and s.strip()]
        if not suggestions:
            raise UpstreamGenerationError("AI did not generate any suggestions")
        return suggestions[: self.max_suggestions]

    # ─── Deterministic templates ─────────────────────────────────────────────

    def _fallback_summary(self, incident: Incident, hint: Optional[TimezoneHint]) -> str:
        started = format_for_prompt(incident.started_at, hint)
        services = ", ".join(incident.services_impacted) or "no recorded services"
        first, last = incident.timeline[0], incident.timeline[-1]

        opening = (
            f'On {started}, a {incident.severity.value} incident "{incident.title}" began, '
            f"affecting {services}."
        )
        timeline = (
            f"The timeline records {len(incident.timeline)} event(s), starting at "
            f"{format_for_prompt(first.timestamp, hint)} with: {first.description}"
        )
        if len(incident.timeline) > 1:
            timeline += f" The latest entry, at {format_for_prompt(last.timestamp, hint)}, reads: {last.description}"

        if incident.status == IncidentStatus.RESOLVED and incident.resolved_at:
            closing = f"The incident was resolved on {format_for_prompt(incident.resolved_at, hint)}."
        else:
            closing = f"The incident is currently {incident.status.value}."
        return f"{opening}\n\n{timeline}\n\n{closing}"

    def _fallback_suggestions(self, incident: Incident) -> List[str]:
        primary = incident.services_impacted[0] if incident.services_impacted else "the affected service"
        candidates = [
            f"Add monitoring and alerting for {primary}",
            f"Create a runbook for responding to {incident.title}",
            "Review the root cause and document contributing factors",
            "Add automated tests covering the failure mode",
            "Schedule a blameless postmortem review with stakeholders",
        ]
        if incident.severity in (Severity.SEV1, Severity.SEV2):
            candidates.insert(2, "Review on-call escalation paths and paging thresholds")

        existing = {item.title.strip().lower() for item in incident.action_items}
        fresh = [c for c in candidates if c.lower() not in existing]
        if not fresh:
            raise UpstreamGenerationError("No new action items to suggest. Please try again.")
        return fresh[: self.max_suggestions]

    def _fallback_report(self, incident: Incident, hint: Optional[TimezoneHint]) -> str:
        started = format_for_prompt(incident.started_at, hint)
        resolved = format_for_prompt(incident.resolved_at, hint) if incident.resolved_at else "Ongoing"
        services = ", ".join(incident.services_impacted) or "Not specified"

        lines = [f"# {incident.title} Postmortem Report", ""]
        lines += [
            "## Executive Summary",
            f"The incident started on \"{started}\" and was classified {incident.severity.value}. "
            f"Current status: {incident.status.value}.",
            "",
        ]
        if incident.summary:
            lines += [incident.summary, ""]
        lines += [
            "## Impact",
            f"- Services affected: {services}",
            f"- Started: {started}",
            f"- Resolved: {resolved}",
            "",
            "## Root Cause Analysis",
            "Root cause has not been documented yet. Review the timeline below.",
            "",
            "## Timeline",
        ]
        if incident.timeline:
            lines += [
                f"- {format_for_prompt(e.timestamp, hint)}: {e.description} ({e.author})"
                for e in incident.timeline
            ]
        else:
            lines.append("No timeline recorded")
        lines += ["", "## Action Items"]
        if incident.action_items:
            lines += [
                f"- [{'x' if a.status == ActionItemStatus.DONE else ' '}] {a.title} (Owner: {a.owner})"
                for a in incident.action_items
            ]
        else:
            lines.append("No action items")
        lines += [
            "",
            "## Lessons Learned",
            "To be completed during the postmortem review.",
        ]
        return "\n".join(lines)


def create_narrative_service(ai_config: AIConfig) -> IncidentNarrativeService:
    """
    Factory selecting the text generator named by ai_config.provider.
    """

    provider = ai_config.provider.strip().lower()
    if provider == "template":
        return IncidentNarrativeService(model=None, fallback_enabled=True, max_suggestions=ai_config.max_suggestions)

    if provider == "chat":
        model: TextGenerator = ChatCompletionsModel.from_config(ai_config)
    elif provider == "local":
        if not ai_config.model_path:
            raise ConfigurationError("POSTMORTEM_AI__MODEL_PATH is required for provider=local")
        from llm.local import LocalModel

        model = LocalModel.from_config(ai_config)
    else:
        raise ConfigurationError(f"Unknown AI provider: {ai_config.provider!r}")

    logger.info("Narrative generator: provider=%s fallback=%s", provider, ai_config.fallback_enabled)
    return IncidentNarrativeService(
        model=model,
        fallback_enabled=ai_config.fallback_enabled,
        max_suggestions=ai_config.max_suggestions,
    )
