"""High-level CloudStack client entrypoints."""
from .caller import Caller, CallerStatus
from .client import CloudStackClient
from .config import ApiConfig
from .enums import DumpType, RequestType, ResponseType
from .exceptions import CloudStackError, ConfigurationError
from .request import PlainRequest, RequestInterface
from .response import PlainResponse, ResponseInterface

__all__ = [
    "CloudStackClient",
    "Caller",
    "CallerStatus",
    "ApiConfig",
    "CloudStackError",
    "ConfigurationError",
    "DumpType",
    "RequestType",
    "ResponseType",
    "PlainRequest",
    "RequestInterface",
    "PlainResponse",
    "ResponseInterface",
]
