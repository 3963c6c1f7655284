"""
LLM utilities for incident narratives.

Prompt construction and the remote chat-completions generator. The local
transformers-backed generator lives in llm.local and is imported lazily,
since it pulls in torch.
"""

from .chat import ChatCompletionsModel
from .prompt import (
    build_actions_prompt,
    build_report_prompt,
    build_summary_prompt,
    format_for_prompt,
    resolve_timezone,
)
from .schema import Prompt, TextGenerator, TimezoneHint

__all__ = [
    "ChatCompletionsModel",
    "Prompt",
    "TextGenerator",
    "TimezoneHint",
    "build_summary_prompt",
    "build_actions_prompt",
    "build_report_prompt",
    "format_for_prompt",
    "resolve_timezone",
]
