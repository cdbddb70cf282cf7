"""Enumerations shared by requests, responses and callers."""
from __future__ import annotations

from enum import Enum


class RequestType(str, Enum):
    """Declared call kind of a request."""

    SYNCHRONOUS = "synchronous"
    ASYNCHRONOUS = "asynchronous"


class ResponseType(str, Enum):
    """Response formats accepted by the API `response` parameter."""

    JSON = "json"
    XML = "xml"


class DumpType(str, Enum):
    """Representation used when exporting or importing state."""

    JSON = "json"
    DICT = "dict"


__all__ = ["RequestType", "ResponseType", "DumpType"]
