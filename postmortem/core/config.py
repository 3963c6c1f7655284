"""
Application configuration for the Postmortem Tracker.

Provides environment-aware settings with conservative defaults. Every value
can be overridden with a POSTMORTEM_ prefixed environment variable or a .env
file (nested sections use "__", e.g. POSTMORTEM_AI__API_KEY).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreConfig(BaseModel):
	"""
	Aggregate store configuration.

	Notes:
	- database_url: SQLAlchemy URL, or "memory://" for the in-process store.
	- echo_sql: log every statement emitted by the engine.
	"""

	database_url: str = Field(
		"sqlite:///postmortem.db",
		description="SQLAlchemy URL or memory:// for the in-memory store",
	)
	echo_sql: bool = False


class AIConfig(BaseModel):
	"""
	Narrative generation configuration.

	Notes:
	- provider: "chat" (OpenAI-compatible HTTP endpoint), "local" (local
	  transformers model) or "template" (deterministic templates only).
	- fallback_enabled: on upstream failure, answer from templates instead of
	  returning an error.
	- max_suggestions: cap on suggested action items.
	"""

	provider: str = Field("chat", description="Provider: 'chat', 'local', or 'template'")
	api_url: str = Field("https://api.groq.com/openai/v1/chat/completions")
	api_key: str = Field("", description="Bearer token for the chat endpoint")
	model: str = Field("llama-3.1-8b-instant")
	max_tokens: int = Field(1024, ge=64, le=8192)
	temperature: float = Field(0.7, ge=0.0, le=2.0)
	timeout_seconds: float = Field(30.0, gt=0.0)
	model_path: Optional[str] = Field(None, description="Local model directory or hub id for provider=local")
	lora_path: Optional[str] = Field(None, description="Optional LoRA adapter attached for provider=local")
	fallback_enabled: bool = True
	max_suggestions: int = Field(5, ge=1, le=20)


class ServerConfig(BaseModel):
	"""
	HTTP surface configuration.

	Notes:
	- tenant_mode: "shared" puts every caller in default_tenant; "identity"
	  derives the tenant from the caller's principal.
	"""

	api_prefix: str = "/api"
	default_tenant: str = Field("default", min_length=1)
	tenant_mode: str = Field("shared", description="Tenant derivation: 'shared' or 'identity'")
	cors_origin: str = "*"


class Config(BaseSettings):
	"""
	Global configuration with environment overrides.
	"""

	model_config = SettingsConfigDict(
		env_prefix="POSTMORTEM_",
		env_file=".env",
		env_nested_delimiter="__",
		extra="ignore",
	)

	log_level: str = Field("INFO", description="Default logging level")
	logs_dir: Path = Field(Path("logs"), description="Directory for log files")
	store: StoreConfig = StoreConfig()
	ai: AIConfig = AIConfig()
	server: ServerConfig = ServerConfig()

	def model_post_init(self, __context: object) -> None:
		self.logs_dir.mkdir(parents=True, exist_ok=True)


config = Config()
