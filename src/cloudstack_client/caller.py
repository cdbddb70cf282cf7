"""Execution state machine for a single CloudStack API call."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

import requests
import urllib3
from urllib3.exceptions import InsecureRequestWarning

from .config import ASYNC_JOB_COMMAND, ApiConfig
from .enums import DumpType, RequestType, ResponseType
from .exceptions import CloudStackError, RequestError, UnexpectedResponseError
from .http import HttpResponse, send
from .request import RequestInterface
from .response import PlainResponse, ResponseInterface
from .signing import signed_url

logger = logging.getLogger(__name__)

DEFAULT_ERROR_CODE = "M100"
DEFAULT_ERROR_MESSAGE = "Error! Something Unexpected Happened."
INVALID_JSON_ERROR_CODE = "M101"
INVALID_JSON_ERROR_MESSAGE = "Error! Response did not contain valid JSON."


class CallerStatus(str, Enum):
    """Lifecycle of a call; ``ASYNC_JOB`` waits for a poll."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ASYNC_JOB = "async_job"


class Caller:
    """Sign, send and track one logical API call.

    ``execute()`` is the only verb. A succeeded caller returns immediately, a
    caller waiting on an async job polls ``queryAsyncJobResult`` once, and any
    other state (re)submits the request. Each invocation performs at most one
    HTTP round trip; repeated polling is left to the code that owns the
    caller.
    """

    def __init__(
        self,
        request: RequestInterface,
        response: ResponseInterface | None = None,
        ident: str | None = None,
        config: ApiConfig | Mapping[str, Any] | None = None,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self._request = request
        self._response = response if response is not None else PlainResponse()
        self._ident = ident
        self._config = config if isinstance(config, ApiConfig) else ApiConfig.from_mapping(config)
        self._shared: dict[str, Any] = {}
        self._session = session or requests.Session()
        self._suppress_insecure_warning_if_needed()
        self._request.add_parameter("apiKey", self._config.api_key)
        self._status = CallerStatus.PENDING

    def __repr__(self) -> str:
        return f"Caller(ident={self._ident!r}, status={self._status.value!r})"

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> Caller:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - passthrough
        self.close()

    # Public API --------------------------------------------------------------
    def execute(self) -> Caller:
        if self._status == CallerStatus.SUCCEEDED:
            return self
        if self._status == CallerStatus.ASYNC_JOB:
            return self._check_async_call()
        if self._request.get_type() == RequestType.ASYNCHRONOUS:
            return self._execute_async_call()
        return self._execute_sync_call()

    @property
    def request(self) -> RequestInterface:
        return self._request

    @property
    def response(self) -> ResponseInterface:
        return self._response

    @property
    def config(self) -> ApiConfig:
        return self._config

    def get_status(self) -> CallerStatus:
        return self._status

    def set_status(self, status: CallerStatus) -> None:
        self._status = CallerStatus(status)

    def get_ident(self) -> str | None:
        return self._ident

    def set_ident(self, ident: str | None) -> None:
        self._ident = ident

    def add_item(self, key: str, value: Any) -> None:
        self._shared[key] = value

    def get_item(self, key: str) -> Any:
        return self._shared.get(key)

    def item_exists(self, key: str) -> bool:
        return key in self._shared

    def dump(self, format: DumpType) -> Any:
        """Export everything needed to resume this call in another process."""

        data = {
            "shared": dict(self._shared),
            "status": self._status.value,
            "ident": self._ident,
            "apiData": self._config.to_dict(),
            "response": self._response.dump(DumpType.DICT),
            "request": self._request.dump(DumpType.DICT),
        }
        return json.dumps(data) if format == DumpType.JSON else data

    def reload(self, data: Any, format: DumpType) -> Caller:
        if format == DumpType.JSON:
            data = json.loads(data)
        self._shared = dict(data["shared"])
        self._status = CallerStatus(data["status"])
        self._ident = data["ident"]
        self._config = ApiConfig.from_mapping(data["apiData"])
        self._suppress_insecure_warning_if_needed()
        self._response.reload(data["response"], DumpType.DICT)
        self._request.reload(data["request"], DumpType.DICT)
        return self

    def close(self) -> None:
        self._session.close()

    # Internal helpers -------------------------------------------------------
    def _execute_sync_call(self) -> Caller:
        url = self._get_url()
        return self._dispatch(url, self._record_result)

    def _execute_async_call(self) -> Caller:
        url = self._get_url()
        self._response.set_async_job(None)
        self._response.set_async_job_id(None)
        return self._dispatch(url, self._record_async_job)

    def _check_async_call(self) -> Caller:
        url = self._get_job_url(self._response.get_async_job_id())
        return self._dispatch(url, self._record_result, command=ASYNC_JOB_COMMAND)

    def _dispatch(
        self,
        url: str,
        on_success: Callable[[Any], None],
        *,
        command: str | None = None,
    ) -> Caller:
        self._transition(CallerStatus.IN_PROGRESS)
        try:
            result = self._perform_request(url, command=command)
        except CloudStackError as exc:
            self._record_failure(exc)
        else:
            on_success(result.data)
        self._run_callback()
        return self

    def _perform_request(self, url: str, *, command: str | None) -> HttpResponse:
        method = (self._request.get_method() or "GET").upper()
        self._log_request(method, command or self._request.get_parameters().get("command"))
        try:
            return send(
                self._session,
                method,
                url,
                headers=self._request.get_headers(),
                body=self._request.get_body(DumpType.JSON),
                timeout=self._config.timeout,
                verify=self._config.verify_ssl,
            )
        except requests.RequestException as exc:
            reason = str(exc).strip() or exc.__class__.__name__
            response = exc.response
            raise RequestError(
                f"Failed to communicate with CloudStack API: {reason}",
                status_code=response.status_code if response is not None else None,
                details=response.text if response is not None else None,
            ) from exc

    def _record_result(self, payload: Any) -> None:
        self._response.set_response(payload)
        self._response.set_error(None)
        self._transition(CallerStatus.SUCCEEDED)

    def _record_async_job(self, payload: Any) -> None:
        job_id: str | None = ""
        # Every entry overwrites the previous one, so the last job id wins.
        for entry in _entries(payload):
            if isinstance(entry, Mapping) and entry.get("jobid") is not None:
                job_id = str(entry["jobid"])
        self._response.set_response(None)
        self._response.set_error(None)
        self._response.set_async_job(payload)
        self._response.set_async_job_id(job_id)
        self._transition(CallerStatus.ASYNC_JOB)

    def _record_failure(self, exc: CloudStackError) -> None:
        code = DEFAULT_ERROR_CODE
        message = DEFAULT_ERROR_MESSAGE
        parsed: Any = []
        if isinstance(exc, UnexpectedResponseError):
            code = INVALID_JSON_ERROR_CODE
            message = INVALID_JSON_ERROR_MESSAGE
        else:
            parsed = _parse_error_body(exc.details)
            # Same last-wins policy as job ids: later entries override earlier ones.
            for entry in _entries(parsed):
                if not isinstance(entry, Mapping):
                    continue
                if entry.get("errorcode") is not None:
                    code = str(entry["errorcode"])
                if entry.get("errortext") is not None:
                    message = entry["errortext"]

        self._response.set_response(None)
        self._response.set_error(
            {
                "parsed": parsed,
                "plain": str(exc),
                "code": code,
                "message": message,
            }
        )
        self._transition(CallerStatus.FAILED)
        logger.warning(
            "CloudStack call failed (ident=%s): %s %s",
            self._ident or "unspecified",
            code,
            message,
        )

    def _run_callback(self) -> None:
        if self._status not in (CallerStatus.SUCCEEDED, CallerStatus.FAILED):
            return
        method, arguments = self._response.get_callback()
        if method is not None:
            method(self, arguments)

    def _transition(self, status: CallerStatus) -> None:
        logger.debug(
            "Caller %s: %s -> %s",
            self._ident or "unspecified",
            self._status.value,
            status.value,
        )
        self._status = status

    def _get_url(self) -> str:
        return signed_url(
            self._config.endpoint(),
            self._request.get_parameters(),
            self._config.signing_key(),
        )

    def _get_job_url(self, job_id: str | None) -> str:
        parameters = {
            "response": ResponseType.JSON.value,
            "apiKey": self._config.api_key,
            "command": ASYNC_JOB_COMMAND,
            "jobId": job_id,
        }
        return signed_url(self._config.endpoint(), parameters, self._config.signing_key())

    def _log_request(self, method: str, command: str | None) -> None:
        logger.info(
            "CloudStack request %s %s (ident=%s)",
            method,
            command or "unspecified",
            self._ident or "unspecified",
        )

    def _suppress_insecure_warning_if_needed(self) -> None:
        if isinstance(self._config.verify_ssl, bool) and not self._config.verify_ssl:
            urllib3.disable_warnings(InsecureRequestWarning)


def _parse_error_body(body: Any) -> Any:
    if not body:
        return []
    try:
        parsed = json.loads(body)
    except (TypeError, ValueError):
        return []
    return parsed if isinstance(parsed, (list, dict)) else []


def _entries(payload: Any) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        return list(payload.values())
    return []


__all__ = ["Caller", "CallerStatus", "DEFAULT_ERROR_CODE", "DEFAULT_ERROR_MESSAGE"]
