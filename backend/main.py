"""
Backend HTTP server for the Postmortem Tracker.

Serves the incident API over http.server; routing and error mapping live in
backend.api.
"""

from __future__ import annotations

import argparse
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from dotenv import load_dotenv

from postmortem.core.config import config
from postmortem.core.logging_config import setup_logging
from postmortem.incident.service import IncidentAggregateService
from postmortem.store import get_store

from backend.api import ApiResponse, IncidentApi

load_dotenv()

logger = logging.getLogger("backend")

API: Optional[IncidentApi] = None

_ALLOWED_METHODS = "GET, POST, PATCH, DELETE, OPTIONS"


def _api() -> IncidentApi:
    global API
    if API is None:
        API = IncidentApi(IncidentAggregateService(store=get_store()))
    return API


class BackendHandler(BaseHTTPRequestHandler):
    server_version = "PostmortemBackend/1.0"

    def _send_cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", config.server.cors_origin)
        self.send_header("Access-Control-Allow-Headers", "Content-Type, x-ms-client-principal")
        self.send_header("Access-Control-Allow-Methods", _ALLOWED_METHODS)

    def _send(self, response: ApiResponse) -> None:
        self.send_response(response.status)
        if response.content_type:
            self.send_header("Content-Type", response.content_type)
        for key, value in response.headers.items():
            self.send_header(key, value)
        self._send_cors_headers()
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        if response.body:
            self.wfile.write(response.body)

    def _read_body(self) -> bytes:
        """Raises ValueError when Content-Length is not an integer."""
        length = int(self.headers.get("Content-Length", "0") or "0")
        if length <= 0:
            return b""
        return self.rfile.read(length)

    def _dispatch(self, method: str) -> None:
        try:
            body = self._read_body()
        except ValueError:
            self._send(ApiResponse.error("Invalid Content-Length header", 400))
            self.close_connection = True
            return
        headers = {key: value for key, value in self.headers.items()}
        self._send(_api().dispatch(method, self.path, headers, body))

    def do_GET(self) -> None:
        if self.path == "/health":
            self._send(ApiResponse.json({"status": "ok"}))
            return
        self._dispatch("GET")

    def do_POST(self) -> None:
        self._dispatch("POST")

    def do_PATCH(self) -> None:
        self._dispatch("PATCH")

    def do_DELETE(self) -> None:
        self._dispatch("DELETE")

    def do_OPTIONS(self) -> None:
        self.send_response(204)
        self._send_cors_headers()
        self.end_headers()

    def log_message(self, format: str, *args: object) -> None:
        logger.info("%s - %s", self.address_string(), format % args)


def run(host: str, port: int) -> None:
    setup_logging()
    logger.info("Starting backend server on %s:%s", host, port)
    logger.info("API prefix=%s tenant_mode=%s", config.server.api_prefix, config.server.tenant_mode)
    logger.info("AI provider=%s fallback=%s", config.ai.provider, config.ai.fallback_enabled)
    _api()
    server = ThreadingHTTPServer((host, port), BackendHandler)
    server.serve_forever()


def main() -> None:
    parser = argparse.ArgumentParser(description="Postmortem Tracker backend server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=7071)
    args = parser.parse_args()

    run(args.host, args.port)


if __name__ == "__main__":
    main()
