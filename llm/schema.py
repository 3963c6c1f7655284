"""
Schema shared by prompt construction and text generators.

Every generator implements one interface: generate(prompt) -> text.
"""

from __future__ import annotations

from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Prompt(BaseModel):
    """
    A two-part chat prompt.

    Fields:
    - system: role and hard constraints for the model
    - user: the task, with incident facts inlined
    """

    model_config = ConfigDict(frozen=True)

    system: str = Field(min_length=1)
    user: str = Field(min_length=1)

    def as_messages(self) -> list:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]

    def as_text(self) -> str:
        """Single-string rendering for instruction-tuned local models."""
        return f"[INST] {self.system}\n\n{self.user} [/INST]"


class TimezoneHint(BaseModel):
    """
    Caller's timezone, sent by the browser.

    Fields:
    - timezone: IANA name such as "Europe/Berlin"
    - timezone_offset: minutes WEST of UTC (JavaScript getTimezoneOffset)
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    timezone: Optional[str] = Field(default=None, max_length=64)
    timezone_offset: Optional[int] = Field(default=None, gt=-24 * 60, lt=24 * 60)


class TextGenerator(Protocol):
    def generate(self, prompt: Prompt) -> str:
        ...
