"""
OpenAI-compatible chat-completions client.

Works with any endpoint speaking the /v1/chat/completions shape (Groq by
default). One request per call, bounded by timeout_seconds, no retries.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, Optional

import httpx

from postmortem.core.config import AIConfig
from postmortem.core.exceptions import ModelInferenceError

from .schema import Prompt

logger = logging.getLogger("llm")


@dataclass
class ChatCompletionsModel:
    """
    Remote text generator.

    A client may be injected (e.g. with httpx.MockTransport); otherwise one is
    created on first use and reused.
    """

    api_url: str
    api_key: str
    model: str
    max_tokens: int = 1024
    temperature: float = 0.7
    timeout_seconds: float = 30.0
    client: Optional[httpx.Client] = None

    @classmethod
    def from_config(cls, ai_config: AIConfig) -> "ChatCompletionsModel":
        return cls(
            api_url=ai_config.api_url,
            api_key=ai_config.api_key,
            model=ai_config.model,
            max_tokens=ai_config.max_tokens,
            temperature=ai_config.temperature,
            timeout_seconds=ai_config.timeout_seconds,
        )

    def _client(self) -> httpx.Client:
        if self.client is None:
            self.client = httpx.Client(timeout=self.timeout_seconds)
        return self.client

    def generate(self, prompt: Prompt) -> str:
        if not self.api_key:
            raise ModelInferenceError("AI is not configured: no API key set")

        body = {
            "model": self.model,
            "messages": prompt.as_messages(),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            response = self._client().post(
                self.api_url, json=body, headers=headers, timeout=self.timeout_seconds
            )
        except httpx.TimeoutException as exc:
            raise ModelInferenceError(f"AI request timed out after {self.timeout_seconds}s") from exc
        except httpx.HTTPError as exc:
            raise ModelInferenceError(f"AI request failed: {exc}") from exc

        if response.is_error:
            raise ModelInferenceError(f"AI service error: {_error_message(response)}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ModelInferenceError("AI service returned non-JSON body") from exc

        content = _first_choice_content(data)
        if not content:
            raise ModelInferenceError("AI returned an empty response")
        logger.debug("Chat completion returned %d chars", len(content))
        return content.strip()


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return f"HTTP {response.status_code}"


def _first_choice_content(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first: Dict[str, Any] = choices[0] if isinstance(choices[0], dict) else {}
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None
