"""
Custom exceptions for the Postmortem Tracker.

Each exception carries the HTTP status it maps to at the transport boundary.
Use them to distinguish between bad input, missing data, AI provider
problems, and persistence failures.
"""


class ValidationError(Exception):
    """Raised when a request payload fails field validation."""

    status_code = 400


class NotFoundError(Exception):
    """Base exception for missing aggregates or embedded entities."""

    status_code = 404


class IncidentNotFound(NotFoundError):
    """Raised when an incident is absent or belongs to another tenant."""

    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message)


class ActionItemNotFound(NotFoundError):
    """Raised when an action item id is absent from an existing incident."""

    def __init__(self, message: str = "Action item not found") -> None:
        super().__init__(message)


class UpstreamGenerationError(Exception):
    """Raised when the text-generation provider fails or returns unusable output."""

    status_code = 500


class ModelInferenceError(Exception):
    """Raised by a text generator when a single generation attempt fails."""
    pass


class StoreError(Exception):
    """Raised when the underlying document store fails."""

    status_code = 500


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass
