"""
HTTP route table for the incident API.

Transport-agnostic: dispatch() takes a method, path, headers, and raw body
and returns an ApiResponse. backend.main wires it into http.server.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Pattern, Tuple
from urllib.parse import unquote, urlsplit

from pydantic import ValidationError as PydanticValidationError

from postmortem.core.config import AIConfig, ServerConfig, config
from postmortem.core.exceptions import (
    ConfigurationError,
    IncidentNotFound,
    NotFoundError,
    StoreError,
    UpstreamGenerationError,
    ValidationError,
)
from postmortem.incident.context import RequestContext
from postmortem.incident.export import export_filename
from postmortem.incident.service import IncidentAggregateService

from llm.schema import TimezoneHint

from .auth import resolve_context
from .narrative_service import IncidentNarrativeService, create_narrative_service

logger = logging.getLogger("backend.api")

_GENERIC_ERROR = "Internal server error"


@dataclass
class ApiResponse:
    status: int
    body: bytes = b""
    content_type: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def json(cls, payload: Any, status: int = 200) -> "ApiResponse":
        return cls(status=status, body=json.dumps(payload).encode("utf-8"), content_type="application/json")

    @classmethod
    def error(cls, message: str, status: int = 400) -> "ApiResponse":
        return cls.json({"error": message}, status)

    @classmethod
    def no_content(cls) -> "ApiResponse":
        return cls(status=204)

    def json_body(self) -> Any:
        return json.loads(self.body.decode("utf-8")) if self.body else None


Handler = Callable[[RequestContext, Dict[str, str], bytes], ApiResponse]


def _read_json(body: bytes) -> Optional[Any]:
    if not body or not body.strip():
        return None
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("Request body is not valid JSON") from exc


def _read_hint(body: bytes) -> Optional[TimezoneHint]:
    """AI routes accept an optional {timezone, timezoneOffset} body; anything else means no hint."""
    try:
        payload = _read_json(body)
    except ValidationError:
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return TimezoneHint.model_validate(payload)
    except PydanticValidationError:
        return None


class IncidentApi:
    """
    Route table and error mapping.

    Error bodies are {"error": message}: 400 for validation, 404 for missing
    incidents or action items, 500 for upstream and store failures. Store and
    unexpected errors never expose their diagnostic text.
    """

    def __init__(
        self,
        service: IncidentAggregateService,
        narrative_factory: Optional[Callable[[], IncidentNarrativeService]] = None,
        server_config: Optional[ServerConfig] = None,
        ai_config: Optional[AIConfig] = None,
    ) -> None:
        self.service = service
        self.server_config = server_config or config.server
        self._ai_config = ai_config or config.ai
        self._narrative_factory = narrative_factory or (lambda: create_narrative_service(self._ai_config))
        self._narrative: Optional[IncidentNarrativeService] = None
        self._routes: List[Tuple[str, Pattern[str], Handler]] = []

        self._route("GET", r"/incidents", self._list_incidents)
        self._route("POST", r"/incidents", self._create_incident)
        self._route("GET", r"/incidents/(?P<id>[^/]+)", self._get_incident)
        self._route("PATCH", r"/incidents/(?P<id>[^/]+)", self._update_incident)
        self._route("DELETE", r"/incidents/(?P<id>[^/]+)", self._delete_incident)
        self._route("POST", r"/incidents/(?P<id>[^/]+)/timeline", self._add_timeline_event)
        self._route("DELETE", r"/incidents/(?P<id>[^/]+)/timeline/(?P<event_id>[^/]+)", self._delete_timeline_event)
        self._route("POST", r"/incidents/(?P<id>[^/]+)/actions", self._add_action_item)
        self._route("PATCH", r"/incidents/(?P<id>[^/]+)/actions/(?P<action_id>[^/]+)", self._update_action_item)
        self._route("DELETE", r"/incidents/(?P<id>[^/]+)/actions/(?P<action_id>[^/]+)", self._delete_action_item)
        self._route("GET", r"/incidents/(?P<id>[^/]+)/export", self._export_markdown)
        self._route("POST", r"/incidents/(?P<id>[^/]+)/ai/summary", self._ai_summary)
        self._route("POST", r"/incidents/(?P<id>[^/]+)/ai/actions", self._ai_actions)
        self._route("POST", r"/incidents/(?P<id>[^/]+)/ai/report", self._ai_report)

    def _route(self, method: str, pattern: str, handler: Handler) -> None:
        self._routes.append((method, re.compile(f"^{pattern}$"), handler))

    def dispatch(self, method: str, path: str, headers: Mapping[str, str], body: bytes = b"") -> ApiResponse:
        route_path = self._strip_prefix(urlsplit(path).path)
        if route_path is None:
            return ApiResponse.error("Not found", 404)

        for route_method, pattern, handler in self._routes:
            if route_method != method.upper():
                continue
            match = pattern.match(route_path)
            if match is None:
                continue
            params = {key: unquote(value) for key, value in match.groupdict().items()}
            return self._invoke(handler, headers, params, body)

        return ApiResponse.error("Not found", 404)

    def _strip_prefix(self, path: str) -> Optional[str]:
        prefix = self.server_config.api_prefix.rstrip("/")
        if not prefix:
            return path.rstrip("/") or "/"
        if path != prefix and not path.startswith(prefix + "/"):
            return None
        return path[len(prefix):].rstrip("/") or "/"

    def _invoke(self, handler: Handler, headers: Mapping[str, str], params: Dict[str, str], body: bytes) -> ApiResponse:
        try:
            ctx = resolve_context(headers, self.server_config)
            return handler(ctx, params, body)
        except ValidationError as exc:
            return ApiResponse.error(str(exc), 400)
        except NotFoundError as exc:
            return ApiResponse.error(str(exc), 404)
        except UpstreamGenerationError as exc:
            return ApiResponse.error(str(exc), 500)
        except StoreError:
            logger.exception("Store failure")
            return ApiResponse.error(_GENERIC_ERROR, 500)
        except Exception:
            logger.exception("Unhandled error")
            return ApiResponse.error(_GENERIC_ERROR, 500)

    def _narrative_service(self) -> IncidentNarrativeService:
        if self._narrative is None:
            try:
                self._narrative = self._narrative_factory()
            except ConfigurationError as exc:
                logger.error("Narrative service unavailable: %s", exc)
                raise UpstreamGenerationError("AI is not configured") from exc
        return self._narrative

    # ─── Incidents ───────────────────────────────────────────────────────────

    def _list_incidents(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        return ApiResponse.json([i.to_document() for i in self.service.list(ctx.tenant_id)])

    def _get_incident(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        return ApiResponse.json(self.service.get(params["id"], ctx.tenant_id).to_document())

    def _create_incident(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        incident = self.service.create(_read_json(body), ctx)
        return ApiResponse.json(incident.to_document(), 201)

    def _update_incident(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        incident = self.service.update(params["id"], _read_json(body), ctx)
        return ApiResponse.json(incident.to_document())

    def _delete_incident(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        self.service.delete(params["id"], ctx.tenant_id)
        return ApiResponse.no_content()

    def _export_markdown(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        markdown = self.service.export_markdown(params["id"], ctx.tenant_id)
        return ApiResponse(
            status=200,
            body=markdown.encode("utf-8"),
            content_type="text/markdown; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{export_filename(params["id"])}"'},
        )

    # ─── Timeline & action items ─────────────────────────────────────────────

    def _add_timeline_event(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        event = self.service.add_timeline_event(params["id"], _read_json(body), ctx)
        return ApiResponse.json(event.model_dump(mode="json", by_alias=True, exclude_none=True), 201)

    def _delete_timeline_event(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        self.service.delete_timeline_event(params["id"], params["event_id"], ctx)
        return ApiResponse.no_content()

    def _add_action_item(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        item = self.service.add_action_item(params["id"], _read_json(body), ctx)
        return ApiResponse.json(item.model_dump(mode="json", by_alias=True, exclude_none=True), 201)

    def _update_action_item(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        item = self.service.update_action_item(params["id"], params["action_id"], _read_json(body), ctx)
        return ApiResponse.json(item.model_dump(mode="json", by_alias=True, exclude_none=True))

    def _delete_action_item(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        self.service.delete_action_item(params["id"], params["action_id"], ctx)
        return ApiResponse.no_content()

    # ─── AI ──────────────────────────────────────────────────────────────────

    def _load_for_ai(self, ctx: RequestContext, incident_id: str):
        try:
            return self.service.get(incident_id, ctx.tenant_id)
        except IncidentNotFound as exc:
            raise IncidentNotFound("Incident not found") from exc

    def _ai_summary(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        incident = self._load_for_ai(ctx, params["id"])
        summary = self._narrative_service().generate_summary(incident, _read_hint(body))
        return ApiResponse.json({"summary": summary})

    def _ai_actions(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        incident = self._load_for_ai(ctx, params["id"])
        suggestions = self._narrative_service().suggest_actions(incident, _read_hint(body))
        return ApiResponse.json({"suggestions": suggestions})

    def _ai_report(self, ctx: RequestContext, params: Dict[str, str], body: bytes) -> ApiResponse:
        incident = self._load_for_ai(ctx, params["id"])
        report = self._narrative_service().generate_report(incident, _read_hint(body))
        return ApiResponse.json({"report": report})
