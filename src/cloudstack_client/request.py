"""Request descriptors sent through a `Caller`."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

from .enums import DumpType, RequestType


class RequestInterface(ABC):
    """Capabilities a `Caller` needs from a request.

    Alternative request shapes only have to provide these accessors; signing
    and transport stay in the caller.
    """

    @abstractmethod
    def get_method(self) -> str | None:
        """Return the HTTP verb."""

    @abstractmethod
    def get_type(self) -> RequestType | None:
        """Return whether the call is synchronous or an async job."""

    @abstractmethod
    def get_headers(self) -> dict[str, str]:
        """Return the request headers."""

    @abstractmethod
    def get_body(self, format: DumpType = DumpType.JSON) -> Any:
        """Return the body items as JSON text or as a mapping."""

    @abstractmethod
    def get_parameters(self) -> dict[str, Any]:
        """Return the URL parameters used for the query and the signature."""

    @abstractmethod
    def add_parameter(self, key: str, value: Any) -> None:
        """Insert or replace a URL parameter."""

    @abstractmethod
    def get_parameter(self, key: str) -> Any:
        """Return one URL parameter, or ``None`` when missing."""

    @abstractmethod
    def parameter_exists(self, key: str) -> bool:
        """Return whether the URL parameter is set."""

    @abstractmethod
    def add_item(self, key: str, value: Any) -> None:
        """Insert or replace a body item."""

    @abstractmethod
    def get_item(self, key: str) -> Any:
        """Return one body item, or ``None`` when missing."""

    @abstractmethod
    def item_exists(self, key: str) -> bool:
        """Return whether the body item is set."""

    @abstractmethod
    def dump(self, format: DumpType) -> Any:
        """Export the request state."""

    @abstractmethod
    def reload(self, data: Any, format: DumpType) -> None:
        """Import state produced by `dump`."""


class PlainRequest(RequestInterface):
    """Query parameters plus a JSON body, the common CloudStack request."""

    def __init__(
        self,
        method: str | None = None,
        type: RequestType | None = None,
        parameters: Mapping[str, Any] | None = None,
        items: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._method = method
        self._type = type
        self._parameters: dict[str, Any] = dict(parameters or {})
        self._items: dict[str, Any] = dict(items or {})
        self._headers: dict[str, str] = dict(headers or {})

    def __repr__(self) -> str:
        command = self._parameters.get("command")
        return f"PlainRequest(method={self._method!r}, type={self._type!r}, command={command!r})"

    # Mutators -----------------------------------------------------------------
    def set_method(self, method: str) -> None:
        self._method = method

    def set_type(self, type: RequestType) -> None:
        self._type = type

    def add_parameter(self, key: str, value: Any) -> None:
        self._parameters[key] = value

    def add_item(self, key: str, value: Any) -> None:
        self._items[key] = value

    def add_header(self, key: str, value: str) -> None:
        self._headers[key] = value

    # Accessors ----------------------------------------------------------------
    def get_method(self) -> str | None:
        return self._method

    def get_type(self) -> RequestType | None:
        return self._type

    def get_parameter(self, key: str) -> Any:
        return self._parameters.get(key)

    def get_parameters(self) -> dict[str, Any]:
        return dict(self._parameters)

    def get_item(self, key: str) -> Any:
        return self._items.get(key)

    def get_items(self, format: DumpType = DumpType.JSON) -> Any:
        if format == DumpType.JSON:
            return json.dumps(self._items)
        return dict(self._items)

    def get_body(self, format: DumpType = DumpType.JSON) -> Any:
        return self.get_items(format)

    def get_header(self, key: str) -> str | None:
        return self._headers.get(key)

    def get_headers(self) -> dict[str, str]:
        return dict(self._headers)

    def parameter_exists(self, key: str) -> bool:
        return key in self._parameters

    def item_exists(self, key: str) -> bool:
        return key in self._items

    def header_exists(self, key: str) -> bool:
        return key in self._headers

    def debug(self) -> str:
        """Return an equivalent, unsigned ``curl`` command line."""

        body = json.dumps(self._items)
        url = f"https://example.com?{urlencode(self._parameters)}"
        headers = " ".join(f'-H "{key}: {value}"' for key, value in self._headers.items())
        parts = [f"curl -X {self._method}"]
        if headers:
            parts.append(headers)
        parts.append(f"-d '{body}'")
        parts.append(f'"{url}"')
        return " ".join(parts)

    # Persistence --------------------------------------------------------------
    def dump(self, format: DumpType) -> Any:
        data = {
            "method": self._method,
            "type": self._type.value if isinstance(self._type, RequestType) else self._type,
            "parameters": dict(self._parameters),
            "items": dict(self._items),
            "headers": dict(self._headers),
        }
        return json.dumps(data) if format == DumpType.JSON else data

    def reload(self, data: Any, format: DumpType) -> None:
        if format == DumpType.JSON:
            data = json.loads(data)
        request_type = data.get("type")
        self._method = data.get("method")
        self._type = RequestType(request_type) if request_type else None
        self._parameters = dict(data.get("parameters") or {})
        self._items = dict(data.get("items") or {})
        self._headers = dict(data.get("headers") or {})


__all__ = ["RequestInterface", "PlainRequest"]
