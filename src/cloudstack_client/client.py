"""High-level CloudStack client entrypoint."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .caller import Caller
from .config import ApiConfig
from .enums import DumpType, RequestType, ResponseType
from .request import PlainRequest
from .response import Callback, PlainResponse
from .signing import signed_url

logger = logging.getLogger(__name__)


class CloudStackClient:
    """Build callers that share one endpoint and credential configuration.

    The client holds no connection state of its own: every caller it creates
    opens and owns its own session.
    """

    def __init__(
        self,
        *,
        api_url: str,
        api_key: str = "",
        secret_key: str = "",
        sso_enabled: bool = False,
        sso_key: str = "",
        verify_ssl: bool | str = True,
        timeout: float | None = None,
        default_headers: Mapping[str, str] | None = None,
    ) -> None:
        self.config = ApiConfig(
            api_url=api_url,
            api_key=api_key,
            secret_key=secret_key,
            sso_enabled=sso_enabled,
            sso_key=sso_key,
            verify_ssl=verify_ssl,
            timeout=timeout,
        )
        self.default_headers = dict(default_headers or {})

    # Public API --------------------------------------------------------------
    def caller(
        self,
        command: str,
        parameters: Mapping[str, Any] | None = None,
        *,
        items: Mapping[str, Any] | None = None,
        method: str = "GET",
        request_type: RequestType = RequestType.SYNCHRONOUS,
        ident: str | None = None,
        callback: Callback | None = None,
        callback_arguments: Any = None,
    ) -> Caller:
        """Return an unexecuted caller for ``command``."""

        request = PlainRequest(
            method=method,
            type=request_type,
            parameters=self._prepare_params(command, parameters),
            items=items,
            headers=self.default_headers,
        )
        response = PlainResponse(callback, callback_arguments)
        return Caller(request, response, ident or command, self.config)

    def call(
        self,
        command: str,
        parameters: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> Caller:
        """Build a caller for ``command`` and execute it once."""

        return self.caller(command, parameters, **kwargs).execute()

    def resume(
        self,
        state: Any,
        format: DumpType = DumpType.JSON,
        *,
        callback: Callback | None = None,
    ) -> Caller:
        """Rebuild a caller from a dump produced by ``Caller.dump``.

        The configuration stored in the dump wins over this client's
        configuration, so a job is polled with the credentials that submitted
        it.
        """

        caller = Caller(PlainRequest(), PlainResponse(callback), config=self.config)
        caller.reload(state, format)
        logger.debug("Resumed caller %s in state %s", caller.get_ident(), caller.get_status().value)
        return caller

    def signed_url(self, command: str, parameters: Mapping[str, Any] | None = None) -> str:
        """Return the signed URL for ``command`` without sending it."""

        merged = self._prepare_params(command, parameters)
        merged["apiKey"] = self.config.api_key
        return signed_url(self.config.endpoint(), merged, self.config.signing_key())

    # Internal helpers -------------------------------------------------------
    @staticmethod
    def _prepare_params(command: str, parameters: Mapping[str, Any] | None) -> dict[str, Any]:
        merged: dict[str, Any] = {"command": command, "response": ResponseType.JSON.value}
        if parameters:
            merged.update(parameters)
        return merged
