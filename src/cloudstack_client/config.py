"""Configuration helpers for the CloudStack client."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any

from .exceptions import ConfigurationError

ASYNC_JOB_COMMAND = "queryAsyncJobResult"


@dataclass(frozen=True, slots=True)
class ApiConfig:
    """Endpoint and credential settings used to sign and send a call.

    ``sso_enabled`` switches the signing key from ``secret_key`` to
    ``sso_key``. ``verify_ssl`` accepts a boolean or a CA bundle path, as
    understood by ``requests``. ``timeout`` is handed to the transport;
    ``None`` blocks until the server answers.
    """

    api_url: str = ""
    api_key: str = ""
    secret_key: str = ""
    sso_enabled: bool = False
    sso_key: str = ""
    verify_ssl: bool | str = True
    timeout: float | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> ApiConfig:
        """Merge a partial mapping over the defaults, ignoring unknown keys."""

        known = {field.name for field in fields(cls)}
        return cls(**{key: value for key, value in (data or {}).items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def signing_key(self) -> str:
        """Return the key that signs requests for this configuration."""

        if self.sso_enabled:
            if not self.sso_key:
                raise ConfigurationError("Required options not defined: sso_key")
            return self.sso_key
        return self.secret_key

    def endpoint(self) -> str:
        """Return the API URL, which every signed request needs."""

        if not self.api_url:
            raise ConfigurationError("Required options not defined: api_url")
        return self.api_url
