import json

import pytest
import requests
from urllib3.exceptions import InsecureRequestWarning

from cloudstack_client.caller import DEFAULT_ERROR_CODE, DEFAULT_ERROR_MESSAGE, Caller, CallerStatus
from cloudstack_client.enums import DumpType, RequestType
from cloudstack_client.exceptions import ConfigurationError
from cloudstack_client.request import PlainRequest
from cloudstack_client.response import PlainResponse
from cloudstack_client.signing import signed_url

API_URL = "https://cloud.example.com/client/api"
CONFIG = {"api_url": API_URL, "api_key": "KEY", "secret_key": "secret"}
ZONES = {"listzonesresponse": {"count": 1, "zone": [{"id": "z1", "name": "zone-1"}]}}


def build_caller(
    request_type: RequestType = RequestType.SYNCHRONOUS,
    *,
    command: str = "listZones",
    response: PlainResponse | None = None,
    **config_overrides,
) -> Caller:
    request = PlainRequest(
        "GET",
        request_type,
        parameters={"command": command, "response": "json"},
    )
    return Caller(request, response or PlainResponse(), "ident-1", {**CONFIG, **config_overrides})


def poll_url(job_id: str, key: str = "secret") -> str:
    params = {
        "response": "json",
        "apiKey": "KEY",
        "command": "queryAsyncJobResult",
        "jobId": job_id,
    }
    return signed_url(API_URL, params, key)


def test_constructor_adds_api_key_parameter():
    caller = build_caller()

    assert caller.request.get_parameter("apiKey") == "KEY"
    assert caller.get_status() == CallerStatus.PENDING


def test_constructor_adds_empty_api_key_when_not_configured():
    caller = Caller(PlainRequest("GET"), config={"api_url": API_URL})

    assert caller.request.parameter_exists("apiKey")
    assert caller.request.get_parameter("apiKey") == ""


def test_sync_call_succeeds_with_signed_url(requests_mock):
    requests_mock.get(API_URL, json=ZONES)
    caller = build_caller()

    result = caller.execute()

    assert result is caller
    assert caller.get_status() == CallerStatus.SUCCEEDED
    assert caller.response.get_response() == ZONES
    assert caller.response.get_error() is None
    expected = signed_url(
        API_URL,
        {"command": "listZones", "response": "json", "apiKey": "KEY"},
        "secret",
    )
    assert requests_mock.last_request.url == expected


def test_succeeded_caller_does_not_call_again(requests_mock):
    matcher = requests_mock.get(API_URL, json=ZONES)
    caller = build_caller()
    caller.execute()
    payload = caller.response.get_response()

    caller.execute()
    caller.execute()

    assert matcher.call_count == 1
    assert caller.get_status() == CallerStatus.SUCCEEDED
    assert caller.response.get_response() is payload


def test_method_headers_and_body_are_sent(requests_mock):
    requests_mock.post(API_URL, json={"ok": True})
    request = PlainRequest(
        "POST",
        RequestType.SYNCHRONOUS,
        parameters={"command": "createTags"},
        items={"key": "env", "value": "prod"},
        headers={"X-Trace": "abc"},
    )
    caller = Caller(request, PlainResponse(), "tags", CONFIG)

    caller.execute()

    assert requests_mock.last_request.method == "POST"
    assert requests_mock.last_request.headers["X-Trace"] == "abc"
    assert requests_mock.last_request.json() == {"key": "env", "value": "prod"}


def test_verify_and_timeout_are_passed_to_transport(requests_mock):
    requests_mock.get(API_URL, json=ZONES)
    caller = build_caller(verify_ssl="/etc/ssl/ca.pem", timeout=12.5)

    caller.execute()

    assert requests_mock.last_request.verify == "/etc/ssl/ca.pem"
    assert requests_mock.last_request.timeout == 12.5


def test_http_error_without_body_uses_default_error(requests_mock):
    requests_mock.get(API_URL, status_code=500, text="")
    caller = build_caller()

    caller.execute()

    assert caller.get_status() == CallerStatus.FAILED
    error = caller.response.get_error()
    assert error["code"] == DEFAULT_ERROR_CODE == "M100"
    assert error["message"] == DEFAULT_ERROR_MESSAGE
    assert error["parsed"] == []
    assert "500" in error["plain"]
    assert caller.response.get_response() is None


def test_unparsable_error_body_uses_default_error(requests_mock):
    requests_mock.get(API_URL, status_code=502, text="<html>Bad gateway</html>")
    caller = build_caller()

    caller.execute()

    assert caller.response.get_error_code() == "M100"
    assert caller.response.get_error_message() == DEFAULT_ERROR_MESSAGE


def test_last_error_entry_wins(requests_mock):
    body = [
        {"errorcode": "431", "errortext": "bad"},
        {"errorcode": "530", "errortext": "worse"},
    ]
    requests_mock.get(API_URL, status_code=431, json=body)
    caller = build_caller()

    caller.execute()

    error = caller.response.get_error()
    assert error["code"] == "530"
    assert error["message"] == "worse"
    assert error["parsed"] == body


def test_error_entries_without_fields_keep_previous_values(requests_mock):
    requests_mock.get(
        API_URL,
        status_code=431,
        json=[{"errorcode": "431", "errortext": "bad"}, {"uuidList": []}],
    )
    caller = build_caller()

    caller.execute()

    assert caller.response.get_error_code() == "431"
    assert caller.response.get_error_message() == "bad"


def test_error_envelope_object_is_unwrapped(requests_mock):
    requests_mock.get(
        API_URL,
        status_code=431,
        json={"listzonesresponse": {"errorcode": 431, "errortext": "Unable to verify user"}},
    )
    caller = build_caller()

    caller.execute()

    assert caller.response.get_error_code() == "431"
    assert caller.response.get_error_message() == "Unable to verify user"


def test_transport_error_is_captured(requests_mock):
    requests_mock.get(API_URL, exc=requests.exceptions.ConnectionError("connection refused"))
    caller = build_caller()

    caller.execute()

    assert caller.get_status() == CallerStatus.FAILED
    error = caller.response.get_error()
    assert error["code"] == "M100"
    assert "connection refused" in error["plain"]


def test_invalid_json_success_body_fails(requests_mock):
    requests_mock.get(API_URL, text="not json")
    caller = build_caller()

    caller.execute()

    assert caller.get_status() == CallerStatus.FAILED
    assert caller.response.get_error_code() == "M101"


def test_empty_success_body_yields_empty_payload(requests_mock):
    requests_mock.get(API_URL, text="")
    caller = build_caller()

    caller.execute()

    assert caller.get_status() == CallerStatus.SUCCEEDED
    assert caller.response.get_response() is None


def test_failed_call_is_resubmitted(requests_mock):
    matcher = requests_mock.get(API_URL, [{"status_code": 500, "text": ""}, {"json": ZONES}])
    caller = build_caller()

    caller.execute()
    assert caller.get_status() == CallerStatus.FAILED

    caller.execute()

    assert caller.get_status() == CallerStatus.SUCCEEDED
    assert caller.response.get_response() == ZONES
    assert caller.response.get_error() is None
    assert matcher.call_count == 2


def test_in_progress_caller_resubmits(requests_mock):
    requests_mock.get(API_URL, json=ZONES)
    caller = build_caller()
    caller.set_status(CallerStatus.IN_PROGRESS)

    caller.execute()

    assert caller.get_status() == CallerStatus.SUCCEEDED


def test_async_job_happy_path(requests_mock):
    result = {"queryasyncjobresultresponse": {"jobid": "123", "jobstatus": 1}}
    requests_mock.get(API_URL, [{"json": [{"jobid": "123"}]}, {"json": result}])
    caller = build_caller(RequestType.ASYNCHRONOUS, command="deployVirtualMachine")

    caller.execute()

    assert caller.get_status() == CallerStatus.ASYNC_JOB
    assert caller.response.get_async_job_id() == "123"
    assert caller.response.get_async_job() == [{"jobid": "123"}]
    assert caller.response.get_response() is None

    caller.execute()

    assert caller.get_status() == CallerStatus.SUCCEEDED
    assert caller.response.get_response() == result
    assert caller.response.get_async_job_id() == "123"
    assert requests_mock.last_request.url == poll_url("123")


def test_last_job_id_wins(requests_mock):
    requests_mock.get(API_URL, json=[{"jobid": "1"}, {"jobid": "2"}])
    caller = build_caller(RequestType.ASYNCHRONOUS)

    caller.execute()

    assert caller.response.get_async_job_id() == "2"


def test_job_id_from_response_envelope(requests_mock):
    requests_mock.get(
        API_URL,
        json={"deployvirtualmachineresponse": {"id": "vm-1", "jobid": "abc"}},
    )
    caller = build_caller(RequestType.ASYNCHRONOUS)

    caller.execute()

    assert caller.response.get_async_job_id() == "abc"


def test_async_submit_failure(requests_mock):
    requests_mock.get(API_URL, status_code=530, json=[{"errorcode": "530", "errortext": "no capacity"}])
    caller = build_caller(RequestType.ASYNCHRONOUS)

    caller.execute()

    assert caller.get_status() == CallerStatus.FAILED
    assert caller.response.get_async_job_id() is None
    assert caller.response.get_error_message() == "no capacity"


def test_poll_failure_keeps_job_id(requests_mock):
    requests_mock.get(
        API_URL,
        [{"json": [{"jobid": "123"}]}, {"status_code": 530, "json": [{"errorcode": "530"}]}],
    )
    caller = build_caller(RequestType.ASYNCHRONOUS)

    caller.execute()
    caller.execute()

    assert caller.get_status() == CallerStatus.FAILED
    assert caller.response.get_error_code() == "530"
    assert caller.response.get_async_job_id() == "123"


def test_failed_async_submit_is_resubmitted(requests_mock):
    matcher = requests_mock.get(
        API_URL,
        [
            {"status_code": 530, "json": [{"errorcode": "530", "errortext": "no capacity"}]},
            {"json": [{"jobid": "7"}]},
        ],
    )
    caller = build_caller(RequestType.ASYNCHRONOUS, command="deployVirtualMachine")

    caller.execute()
    assert caller.get_status() == CallerStatus.FAILED

    caller.execute()

    assert caller.get_status() == CallerStatus.ASYNC_JOB
    assert caller.response.get_async_job_id() == "7"
    assert caller.response.get_error() is None
    assert matcher.call_count == 2
    assert all("command=deployVirtualMachine" in request.url for request in matcher.request_history)


def test_resubmit_after_failed_poll_replaces_job_id(requests_mock):
    matcher = requests_mock.get(
        API_URL,
        [
            {"json": [{"jobid": "1"}]},
            {"status_code": 530, "json": [{"errorcode": "530", "errortext": "job lost"}]},
            {"json": [{"jobid": "2"}]},
        ],
    )
    caller = build_caller(RequestType.ASYNCHRONOUS, command="deployVirtualMachine")

    caller.execute()
    caller.execute()
    assert caller.get_status() == CallerStatus.FAILED
    assert caller.response.get_async_job_id() == "1"

    caller.execute()

    assert caller.get_status() == CallerStatus.ASYNC_JOB
    assert caller.response.get_async_job_id() == "2"
    assert caller.response.get_async_job() == [{"jobid": "2"}]
    assert caller.response.get_error() is None
    assert matcher.call_count == 3
    assert "command=deployVirtualMachine" in matcher.last_request.url


def test_poll_reuses_method_headers_and_sso_key(requests_mock):
    matcher = requests_mock.post(
        API_URL,
        [{"json": [{"jobid": "9"}]}, {"json": {"jobstatus": 1}}],
    )
    request = PlainRequest(
        "POST",
        RequestType.ASYNCHRONOUS,
        parameters={"command": "deployVirtualMachine", "response": "json"},
        items={"name": "web-1"},
        headers={"X-Trace": "1"},
    )
    caller = Caller(
        request,
        PlainResponse(),
        "deploy",
        {**CONFIG, "sso_enabled": True, "sso_key": "sso"},
    )

    caller.execute()
    caller.execute()

    assert caller.get_status() == CallerStatus.SUCCEEDED
    assert matcher.call_count == 2
    poll = matcher.last_request
    assert poll.method == "POST"
    assert poll.headers["X-Trace"] == "1"
    assert poll.json() == {"name": "web-1"}
    assert poll.url == poll_url("9", key="sso")


def test_callback_runs_on_terminal_states_only(requests_mock):
    requests_mock.get(
        API_URL,
        [{"json": [{"jobid": "123"}]}, {"json": {"jobstatus": 1}}],
    )
    seen = []

    def on_done(caller, arguments):
        seen.append((caller.get_status(), arguments))

    caller = build_caller(RequestType.ASYNCHRONOUS, response=PlainResponse(on_done, {"vm": "web"}))

    caller.execute()
    assert seen == []

    caller.execute()
    assert seen == [(CallerStatus.SUCCEEDED, {"vm": "web"})]

    caller.execute()
    assert len(seen) == 1


def test_callback_runs_on_failure(requests_mock):
    requests_mock.get(API_URL, status_code=500, text="")
    seen = []
    response = PlainResponse()
    response.set_callback(lambda caller, arguments: seen.append(arguments), "args")
    caller = build_caller(response=response)

    caller.execute()

    assert seen == ["args"]


def test_sso_key_signs_requests(requests_mock):
    requests_mock.get(API_URL, json=ZONES)
    caller = build_caller(sso_enabled=True, sso_key="sso-secret")

    caller.execute()

    expected = signed_url(
        API_URL,
        {"command": "listZones", "response": "json", "apiKey": "KEY"},
        "sso-secret",
    )
    assert requests_mock.last_request.url == expected


def test_sso_without_key_fails_before_submit(requests_mock):
    requests_mock.get(API_URL, json=ZONES)
    caller = build_caller(sso_enabled=True)

    with pytest.raises(ConfigurationError):
        caller.execute()

    assert not requests_mock.called
    assert caller.get_status() == CallerStatus.PENDING


def test_sso_without_key_fails_before_poll(requests_mock):
    requests_mock.get(API_URL, json={"jobstatus": 1})
    caller = build_caller(RequestType.ASYNCHRONOUS, sso_enabled=True)
    caller.set_status(CallerStatus.ASYNC_JOB)
    caller.response.set_async_job_id("123")

    with pytest.raises(ConfigurationError):
        caller.execute()

    assert not requests_mock.called
    assert caller.get_status() == CallerStatus.ASYNC_JOB


def test_missing_api_url_is_a_configuration_error(requests_mock):
    caller = Caller(PlainRequest("GET", parameters={"command": "listZones"}), config={})

    with pytest.raises(ConfigurationError, match="api_url"):
        caller.execute()

    assert not requests_mock.called


def test_shared_items_do_not_affect_signing(requests_mock):
    requests_mock.get(API_URL, json=ZONES)
    caller = build_caller()
    caller.add_item("owner", "ops")

    caller.execute()

    assert caller.item_exists("owner")
    assert caller.get_item("owner") == "ops"
    assert caller.get_item("missing") is None
    assert "owner" not in requests_mock.last_request.url


def test_dump_and_reload_round_trip(requests_mock):
    requests_mock.get(API_URL, json=[{"jobid": "123"}])
    caller = build_caller(RequestType.ASYNCHRONOUS, command="deployVirtualMachine")
    caller.add_item("ticket", 42)
    caller.execute()

    state = caller.dump(DumpType.JSON)
    restored = Caller(PlainRequest(), PlainResponse()).reload(state, DumpType.JSON)

    assert restored.dump(DumpType.DICT) == caller.dump(DumpType.DICT)
    assert restored.get_status() == CallerStatus.ASYNC_JOB
    assert restored.get_ident() == "ident-1"
    assert restored.get_item("ticket") == 42
    assert restored.response.get_async_job_id() == "123"
    assert restored.request.get_parameter("command") == "deployVirtualMachine"
    assert restored.config.secret_key == "secret"


def test_reloaded_caller_polls_the_saved_job(requests_mock):
    requests_mock.get(API_URL, [{"json": [{"jobid": "123"}]}, {"json": {"jobstatus": 1}}])
    caller = build_caller(RequestType.ASYNCHRONOUS)
    caller.execute()

    restored = Caller(PlainRequest(), PlainResponse())
    restored.reload(caller.dump(DumpType.DICT), DumpType.DICT)
    restored.execute()

    assert restored.get_status() == CallerStatus.SUCCEEDED
    assert requests_mock.last_request.url == poll_url("123")


def test_dump_of_failed_call_is_json_serializable(requests_mock):
    requests_mock.get(API_URL, status_code=431, json=[{"errorcode": "431", "errortext": "bad"}])
    caller = build_caller()
    caller.execute()

    data = json.loads(caller.dump(DumpType.JSON))

    assert data["status"] == "failed"
    assert data["response"]["error"]["code"] == "431"
    assert data["apiData"]["api_url"] == API_URL


def test_request_logging_includes_ident(caplog, requests_mock):
    requests_mock.get(API_URL, json=ZONES)
    caller = build_caller()

    with caplog.at_level("INFO", logger="cloudstack_client.caller"):
        caller.execute()

    assert "CloudStack request GET listZones (ident=ident-1)" in caplog.text
    assert "signature=" not in caplog.text


def test_failure_is_logged_as_warning(caplog, requests_mock):
    requests_mock.get(API_URL, status_code=431, json=[{"errorcode": "431", "errortext": "bad"}])
    caller = build_caller()

    with caplog.at_level("WARNING", logger="cloudstack_client.caller"):
        caller.execute()

    assert "431 bad" in caplog.text


def test_disables_insecure_warning_when_verify_disabled(monkeypatch):
    captured: list[object] = []

    def fake_disable(warning):  # pragma: no cover - helper
        captured.append(warning)

    monkeypatch.setattr(
        "cloudstack_client.caller.urllib3.disable_warnings",
        fake_disable,
    )

    build_caller(verify_ssl=False)

    assert captured and captured[0] is InsecureRequestWarning


def test_response_interface_declares_error_job_and_callback_accessors():
    from cloudstack_client.response import ResponseInterface

    expected = {"get_error", "get_async_job", "set_callback", "get_callback"}

    assert expected <= ResponseInterface.__abstractmethods__
