import asyncio
import json

import httpx
import pytest

from amplie_backend.whatsapp.auth import ApiKeyHeaderAuth
from amplie_backend.whatsapp.errors import AuthError, ProviderRejectedError, TransportError
from amplie_backend.whatsapp.http import HttpClient, HttpClientConfig, RetryPolicy, extract_provider_message

_NO_WAIT = RetryPolicy(max_attempts=3, initial_delay_s=0.0, max_delay_s=0.0, jitter_s=0.0)


def _client(handler, api_key="secret-key"):
    return HttpClient(
        config=HttpClientConfig(base_url="https://evo.test/"),
        auth=ApiKeyHeaderAuth(api_key=api_key),
        retry=_NO_WAIT,
        transport=httpx.MockTransport(handler),
    )


def test_request_sends_apikey_and_json_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["apikey"] = request.headers.get("apikey")
        seen["content_type"] = request.headers.get("content-type")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"key": {"id": "ABC"}})

    body = asyncio.run(_client(handler).request("POST", "/message/sendText/inst1", json={"number": "5511", "text": "oi"}))

    assert body == {"key": {"id": "ABC"}}
    assert seen["url"] == "https://evo.test/message/sendText/inst1"
    assert seen["apikey"] == "secret-key"
    assert seen["content_type"] == "application/json"
    assert seen["body"] == {"number": "5511", "text": "oi"}


def test_provider_4xx_raises_rejected_with_status_and_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403,
            json={"status": 403, "error": "Forbidden", "response": {"message": ['This name "acme" is already in use.']}},
        )

    with pytest.raises(ProviderRejectedError) as exc:
        asyncio.run(_client(handler).request("POST", "/instance/create", json={}))

    assert exc.value.status_code == 403
    assert exc.value.transient is False
    assert "already in use" in exc.value.message
    assert exc.value.details["status_code"] == 403


def test_non_idempotent_request_is_sent_once_even_on_5xx():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, json={"message": "down"})

    with pytest.raises(ProviderRejectedError) as exc:
        asyncio.run(_client(handler).request("POST", "/message/sendText/inst1", json={}))

    assert len(calls) == 1
    assert exc.value.transient is True


def test_idempotent_request_retries_transient_failures():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"instance": {"state": "open"}})

    body = asyncio.run(_client(handler).request("GET", "/instance/connectionState/inst1", idempotent=True))

    assert body == {"instance": {"state": "open"}}
    assert len(calls) == 3


def test_idempotent_request_gives_up_after_max_attempts():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransportError) as exc:
        asyncio.run(_client(handler).request("GET", "/instance/connectionState/inst1", idempotent=True))

    assert len(calls) == 3
    assert exc.value.code == "transport_failure"


def test_idempotent_request_does_not_retry_4xx():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404, json={"message": "instance not found"})

    with pytest.raises(ProviderRejectedError):
        asyncio.run(_client(handler).request("GET", "/instance/connectionState/x", idempotent=True))

    assert len(calls) == 1


def test_non_json_success_body_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>gateway</html>")

    with pytest.raises(TransportError) as exc:
        asyncio.run(_client(handler).request("GET", "/instance/fetchInstances"))

    assert exc.value.transient is False


def test_missing_api_key_raises_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(AuthError):
        asyncio.run(_client(handler, api_key="").request("GET", "/instance/fetchInstances"))


def test_extract_provider_message_shapes():
    assert extract_provider_message({"response": {"message": ["a", "b"]}}) == "a; b"
    assert extract_provider_message({"response": {"message": "falhou"}}) == "falhou"
    assert extract_provider_message({"message": "msg"}) == "msg"
    assert extract_provider_message({"error": "Bad Request"}) == "Bad Request"
    assert extract_provider_message(None) == ""
