"""Custom exception hierarchy for the CloudStack client."""
from __future__ import annotations

from typing import Any


class CloudStackError(RuntimeError):
    """Base error for CloudStack failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        details: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class ConfigurationError(CloudStackError):
    """Raised when endpoint or credential settings cannot produce a signed URL."""


class RequestError(CloudStackError):
    """Raised when an HTTP request cannot be fulfilled."""


class UnexpectedResponseError(CloudStackError):
    """Raised when the API returns a body that is not valid JSON."""
