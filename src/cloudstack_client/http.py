"""HTTP utilities for CloudStack API access."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from requests import Response, Session

from .exceptions import RequestError, UnexpectedResponseError


@dataclass(slots=True)
class HttpResponse:
    """Typed response wrapper with helper accessors."""

    status_code: int
    data: Any
    headers: Mapping[str, str]


def ensure_success(response: Response) -> None:
    """Raise `RequestError` if the response signals a failure."""

    if 200 <= response.status_code < 300:
        return
    message = f"CloudStack API error {response.status_code}: {response.text[:200]}"
    raise RequestError(message, status_code=response.status_code, details=response.text)


def parse_json(response: Response) -> Any:
    """Parse JSON with helpful error context."""

    try:
        return response.json()
    except ValueError as exc:
        raise UnexpectedResponseError(
            "Response did not contain valid JSON",
            status_code=response.status_code,
            details=response.text,
        ) from exc


def send(
    session: Session,
    method: str,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    body: str | None = None,
    timeout: float | tuple[float, float] | None = None,
    verify: bool | str = True,
) -> HttpResponse:
    """Send one request and return a parsed response envelope.

    The URL is expected to carry its signed query already; it is not
    re-encoded here.
    """

    response = session.request(
        method=method,
        url=url,
        headers=dict(headers or {}),
        data=body,
        timeout=timeout,
        verify=verify,
    )
    ensure_success(response)

    data: Any = None
    if response.content:
        data = parse_json(response)

    return HttpResponse(status_code=response.status_code, data=data, headers=response.headers)
