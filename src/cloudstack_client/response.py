"""Result holders filled in by a `Caller`."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .enums import DumpType

if TYPE_CHECKING:  # pragma: no cover - import-time guard
    from .caller import Caller

Callback = Callable[["Caller", Any], Any]


class ResponseInterface(ABC):
    """State a `Caller` records about the outcome of a call."""

    @abstractmethod
    def set_response(self, response: Any) -> None:
        """Store the decoded success payload."""

    @abstractmethod
    def get_response(self) -> Any:
        """Return the decoded success payload."""

    @abstractmethod
    def set_async_job(self, async_job: Any) -> None:
        """Store the raw async job submission payload."""

    @abstractmethod
    def get_async_job(self) -> Any:
        """Return the raw async job submission payload."""

    @abstractmethod
    def set_async_job_id(self, job_id: str | None) -> None:
        """Store the job id extracted from the submission payload."""

    @abstractmethod
    def get_async_job_id(self) -> str | None:
        """Return the job id to poll."""

    @abstractmethod
    def set_error(self, error: dict[str, Any] | None) -> None:
        """Store a structured error record."""

    @abstractmethod
    def get_error(self) -> dict[str, Any] | None:
        """Return the error record with ``code``, ``message``, ``parsed`` and ``plain``."""

    @abstractmethod
    def set_callback(self, callback: Callback | None, arguments: Any = None) -> None:
        """Register the callable run as ``callback(caller, arguments)`` on completion."""

    @abstractmethod
    def get_callback(self) -> tuple[Callback | None, Any]:
        """Return the completion callback and its arguments."""

    @abstractmethod
    def dump(self, format: DumpType) -> Any:
        """Export the response state."""

    @abstractmethod
    def reload(self, data: Any, format: DumpType) -> None:
        """Import state produced by `dump`."""


class PlainResponse(ResponseInterface):
    """Payload, async job and error bookkeeping for one call.

    The error record has the keys ``code``, ``message``, ``parsed`` (the
    decoded error body) and ``plain`` (the exception text).
    """

    def __init__(self, callback: Callback | None = None, arguments: Any = None) -> None:
        self._response: Any = None
        self._async_job: Any = None
        self._async_job_id: str | None = None
        self._error: dict[str, Any] | None = None
        self._callback = callback
        self._callback_arguments = arguments

    def set_response(self, response: Any) -> None:
        self._response = response

    def get_response(self) -> Any:
        return self._response

    def set_async_job(self, async_job: Any) -> None:
        self._async_job = async_job

    def get_async_job(self) -> Any:
        return self._async_job

    def set_async_job_id(self, job_id: str | None) -> None:
        self._async_job_id = job_id

    def get_async_job_id(self) -> str | None:
        return self._async_job_id

    def set_error(self, error: dict[str, Any] | None) -> None:
        self._error = error

    def get_error(self) -> dict[str, Any] | None:
        return self._error

    def get_error_code(self) -> str | None:
        return self._error["code"] if self._error else None

    def get_error_message(self) -> str | None:
        return self._error["message"] if self._error else None

    def set_callback(self, callback: Callback | None, arguments: Any = None) -> None:
        self._callback = callback
        self._callback_arguments = arguments

    def get_callback(self) -> tuple[Callback | None, Any]:
        return self._callback, self._callback_arguments

    def dump(self, format: DumpType) -> Any:
        # The callable itself stays with the live object; only its arguments travel.
        data = {
            "response": self._response,
            "async_job": self._async_job,
            "async_job_id": self._async_job_id,
            "error": self._error,
            "callback_arguments": self._callback_arguments,
        }
        return json.dumps(data) if format == DumpType.JSON else data

    def reload(self, data: Any, format: DumpType) -> None:
        if format == DumpType.JSON:
            data = json.loads(data)
        self._response = data.get("response")
        self._async_job = data.get("async_job")
        self._async_job_id = data.get("async_job_id")
        self._error = data.get("error")
        self._callback_arguments = data.get("callback_arguments")


__all__ = ["Callback", "ResponseInterface", "PlainResponse"]
