"""
Core module: Configuration, logging, and exception handling.
"""

from .config import AIConfig, Config, ServerConfig, StoreConfig, config
from .exceptions import (
    ActionItemNotFound,
    ConfigurationError,
    IncidentNotFound,
    ModelInferenceError,
    NotFoundError,
    StoreError,
    UpstreamGenerationError,
    ValidationError,
)

__all__ = [
    "Config",
    "StoreConfig",
    "AIConfig",
    "ServerConfig",
    "config",
    "ValidationError",
    "NotFoundError",
    "IncidentNotFound",
    "ActionItemNotFound",
    "UpstreamGenerationError",
    "ModelInferenceError",
    "StoreError",
    "ConfigurationError",
]
