"""Command-line interface for calling the CloudStack API."""
from __future__ import annotations

import json
import os
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, NoReturn

import typer

try:  # pragma: no cover - exercised in runtime environments
    from rich import box
    from rich.console import Console
    from rich.table import Table
except ImportError as exc:  # pragma: no cover - optional dependency guard
    raise RuntimeError(
        "The CLI requires Rich for table rendering. Install the CLI extras via "
        "'pip install cloudstack-python[cli]' to enable this command."
    ) from exc

from . import CloudStackClient
from .caller import Caller, CallerStatus
from .enums import DumpType, RequestType
from .exceptions import ConfigurationError
from .request import PlainRequest
from .response import PlainResponse

app = typer.Typer(help="Apache CloudStack API CLI.", no_args_is_help=True)


def _build_client(
    api_url: str,
    api_key: str | None,
    secret_key: str | None,
    sso: bool,
    sso_key: str | None,
    verify_ssl: bool,
    cert_path: Path | None,
    timeout: float | None,
) -> CloudStackClient:
    if sso:
        if not sso_key:
            raise typer.BadParameter("--sso-key is required when --sso is enabled.")
    elif not secret_key:
        raise typer.BadParameter("--secret-key is required unless --sso is enabled.")

    verify_target: bool | str
    if cert_path:
        expanded_cert = cert_path.expanduser()
        if not expanded_cert.exists():
            raise typer.BadParameter("Certificate file not found for --cert option.")
        if not verify_ssl:
            raise typer.BadParameter("Cannot combine --cert with --no-verify.")
        verify_target = str(expanded_cert)
    else:
        verify_target = verify_ssl

    return CloudStackClient(
        api_url=api_url,
        api_key=api_key or "",
        secret_key=secret_key or "",
        sso_enabled=sso,
        sso_key=sso_key or "",
        verify_ssl=verify_target,
        timeout=timeout,
    )


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2))


console = Console(force_terminal=False, color_system=None)


def _extract_rows(payload: Any) -> list[Mapping[str, Any]]:
    """Find the record list inside a ``{"listxresponse": {"x": [...]}}`` envelope."""

    candidates: list[Any] = [payload]
    if isinstance(payload, Mapping):
        for value in payload.values():
            candidates.append(value)
            if isinstance(value, Mapping):
                candidates.extend(value.values())
    for candidate in candidates:
        if isinstance(candidate, Sequence) and not isinstance(candidate, (str, bytes)):
            rows = [item for item in candidate if isinstance(item, Mapping)]
            if rows:
                return rows
    return []


def _render_rich_table(rows: Sequence[Mapping[str, Any]]) -> None:
    columns: list[str] = []
    for row in rows:
        for key, value in row.items():
            if key not in columns and not isinstance(value, (Mapping, list)):
                columns.append(key)
    table = Table(box=box.SIMPLE, show_lines=False, header_style="bold cyan")
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*("" if row.get(column) is None else str(row.get(column)) for column in columns))
    console.print(table)


def _present_output(payload: Any, *, json_output: bool) -> None:
    if json_output:
        _echo_json(payload)
        return
    rows = _extract_rows(payload)
    if not rows:
        _echo_json(payload)
        return
    _render_rich_table(rows)


def _parse_params(entries: Sequence[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for entry in entries:
        if "=" not in entry:
            raise typer.BadParameter("Parameters must be provided as key=value pairs.")
        key, value = entry.split("=", 1)
        params[key.strip()] = value
    return params


def _job_running(payload: Any) -> bool:
    # queryAsyncJobResult reports jobstatus 0 while the job is still pending.
    if not isinstance(payload, Mapping):
        return False
    if payload.get("jobstatus") == 0:
        return True
    return any(
        isinstance(value, Mapping) and value.get("jobstatus") == 0 for value in payload.values()
    )


def _rearm_if_running(caller: Caller) -> None:
    if (
        caller.get_status() == CallerStatus.SUCCEEDED
        and caller.response.get_async_job_id()
        and _job_running(caller.response.get_response())
    ):
        caller.set_status(CallerStatus.ASYNC_JOB)


def _drive(caller: Caller, *, wait: bool, poll_interval: float, max_polls: int) -> None:
    caller.execute()
    _rearm_if_running(caller)
    polls = 0
    while wait and caller.get_status() == CallerStatus.ASYNC_JOB and polls < max_polls:
        time.sleep(poll_interval)
        caller.execute()
        _rearm_if_running(caller)
        polls += 1


def _report(caller: Caller, *, json_output: bool, state_file: Path | None) -> None:
    if state_file:
        state_file.write_text(caller.dump(DumpType.JSON), encoding="utf-8")

    status = caller.get_status()
    if status == CallerStatus.FAILED:
        error = caller.response.get_error() or {}
        message = f"Request failed ({error.get('code')}): {error.get('message')}"
        if error.get("plain"):
            message += f"\nDetails: {error['plain']}"
        typer.secho(message, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if status == CallerStatus.ASYNC_JOB:
        _echo_json({"jobid": caller.response.get_async_job_id(), "status": status.value})
        return
    _present_output(caller.response.get_response(), json_output=json_output)


def _handle_configuration_error(exc: ConfigurationError) -> NoReturn:
    typer.secho(f"Configuration error: {exc}", err=True, fg=typer.colors.RED)
    raise typer.Exit(code=2)


def _shared_options() -> dict[str, Any]:  # pragma: no cover - helper indirection
    # Respect CLOUDSTACK_VERIFY_SSL environment variable when present.
    env_verify = os.getenv("CLOUDSTACK_VERIFY_SSL")
    if env_verify is None:
        default_verify = True
    else:
        default_verify = env_verify.strip().lower() not in {"0", "false", "no", "off"}

    return {
        "api_url": typer.Option(
            ..., "--api-url", envvar="CLOUDSTACK_API_URL", help="CloudStack API endpoint URL."
        ),
        "api_key": typer.Option(
            None, "--api-key", envvar="CLOUDSTACK_API_KEY", help="Account API key."
        ),
        "secret_key": typer.Option(
            None,
            "--secret-key",
            envvar="CLOUDSTACK_SECRET_KEY",
            help="Account secret key used to sign requests.",
            hide_input=True,
        ),
        "sso": typer.Option(
            False,
            "--sso/--no-sso",
            help="Sign requests with the SSO key instead of the secret key.",
            show_default=True,
        ),
        "sso_key": typer.Option(
            None,
            "--sso-key",
            envvar="CLOUDSTACK_SSO_KEY",
            help="SSO signing key when --sso is enabled.",
        ),
        "verify_ssl": typer.Option(
            default_verify,
            "--verify/--no-verify",
            envvar="CLOUDSTACK_VERIFY_SSL",
            help="Enable or disable TLS certificate verification.",
            show_default=True,
        ),
        "cert_path": typer.Option(
            None,
            "--cert",
            envvar="CLOUDSTACK_CA_CERT",
            help="Path to a custom CA bundle for TLS verification.",
        ),
        "timeout": typer.Option(None, help="Request timeout (seconds)."),
        "params": typer.Option(
            [],
            "--param",
            "-P",
            help="API parameter in key=value form (repeatable).",
            show_default=False,
        ),
    }


def _polling_options() -> dict[str, Any]:  # pragma: no cover - helper indirection
    return {
        "wait": typer.Option(
            False,
            "--wait/--no-wait",
            help="Keep polling an async job until it completes.",
            show_default=True,
        ),
        "poll_interval": typer.Option(
            5.0, "--poll-interval", help="Seconds between job polls.", show_default=True
        ),
        "max_polls": typer.Option(
            60, "--max-polls", help="Give up waiting after this many polls.", show_default=True
        ),
        "state_file": typer.Option(
            None,
            "--state-file",
            help="Write the call state to this file so it can be resumed later.",
        ),
        "output_json": typer.Option(
            False,
            "--json",
            "-j",
            help="Return raw JSON instead of rendering a table.",
        ),
    }


_SHARED_OPTIONS = _shared_options()
_POLLING_OPTIONS = _polling_options()


@app.command("call")
def call(
    command: str = typer.Argument(..., help="API command name, e.g. listZones."),
    api_url: str = _SHARED_OPTIONS["api_url"],
    api_key: str | None = _SHARED_OPTIONS["api_key"],
    secret_key: str | None = _SHARED_OPTIONS["secret_key"],
    sso: bool = _SHARED_OPTIONS["sso"],
    sso_key: str | None = _SHARED_OPTIONS["sso_key"],
    verify_ssl: bool = _SHARED_OPTIONS["verify_ssl"],
    cert_path: Path | None = _SHARED_OPTIONS["cert_path"],
    timeout: float | None = _SHARED_OPTIONS["timeout"],
    params: list[str] = _SHARED_OPTIONS["params"],
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method.", show_default=True),
    async_job: bool = typer.Option(
        False,
        "--async/--sync",
        help="Treat the command as an asynchronous job.",
        show_default=True,
    ),
    wait: bool = _POLLING_OPTIONS["wait"],
    poll_interval: float = _POLLING_OPTIONS["poll_interval"],
    max_polls: int = _POLLING_OPTIONS["max_polls"],
    state_file: Path | None = _POLLING_OPTIONS["state_file"],
    output_json: bool = _POLLING_OPTIONS["output_json"],
) -> None:
    """Execute an API command."""

    client = _build_client(
        api_url=api_url,
        api_key=api_key,
        secret_key=secret_key,
        sso=sso,
        sso_key=sso_key,
        verify_ssl=verify_ssl,
        cert_path=cert_path,
        timeout=timeout,
    )
    request_type = RequestType.ASYNCHRONOUS if async_job else RequestType.SYNCHRONOUS
    with client.caller(
        command,
        _parse_params(params),
        method=method,
        request_type=request_type,
    ) as caller:
        try:
            _drive(caller, wait=wait, poll_interval=poll_interval, max_polls=max_polls)
        except ConfigurationError as exc:
            _handle_configuration_error(exc)
    _report(caller, json_output=output_json, state_file=state_file)


@app.command("resume")
def resume(
    state_path: Path = typer.Argument(..., help="State file written by --state-file."),
    wait: bool = _POLLING_OPTIONS["wait"],
    poll_interval: float = _POLLING_OPTIONS["poll_interval"],
    max_polls: int = _POLLING_OPTIONS["max_polls"],
    output_json: bool = _POLLING_OPTIONS["output_json"],
) -> None:
    """Continue a call saved with --state-file, polling its job if one is pending."""

    try:
        state = state_path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem errors
        raise typer.BadParameter(f"Unable to read state file: {exc}") from exc

    with Caller(PlainRequest(), PlainResponse()) as caller:
        try:
            caller.reload(state, DumpType.JSON)
        except (ValueError, KeyError) as exc:
            raise typer.BadParameter(f"State file is not a saved call: {exc}") from exc
        try:
            _drive(caller, wait=wait, poll_interval=poll_interval, max_polls=max_polls)
        except ConfigurationError as exc:
            _handle_configuration_error(exc)
    _report(caller, json_output=output_json, state_file=state_path)


@app.command("sign")
def sign(
    command: str = typer.Argument(..., help="API command name, e.g. listZones."),
    api_url: str = _SHARED_OPTIONS["api_url"],
    api_key: str | None = _SHARED_OPTIONS["api_key"],
    secret_key: str | None = _SHARED_OPTIONS["secret_key"],
    sso: bool = _SHARED_OPTIONS["sso"],
    sso_key: str | None = _SHARED_OPTIONS["sso_key"],
    verify_ssl: bool = _SHARED_OPTIONS["verify_ssl"],
    cert_path: Path | None = _SHARED_OPTIONS["cert_path"],
    timeout: float | None = _SHARED_OPTIONS["timeout"],
    params: list[str] = _SHARED_OPTIONS["params"],
) -> None:
    """Print the signed URL for a command without sending it."""

    client = _build_client(
        api_url=api_url,
        api_key=api_key,
        secret_key=secret_key,
        sso=sso,
        sso_key=sso_key,
        verify_ssl=verify_ssl,
        cert_path=cert_path,
        timeout=timeout,
    )
    try:
        typer.echo(client.signed_url(command, _parse_params(params)))
    except ConfigurationError as exc:
        _handle_configuration_error(exc)
