"""Tests for ProviderHttpClient error mapping and retry behaviour."""

import httpx
import pytest

from app.services.integrations.errors import (
    ProviderError,
    RateLimited,
    TokenRejected,
    TransientNetworkError,
)
from app.services.integrations.http_client import ProviderHttpClient


def _client(handler, sleeps=None, max_attempts=3) -> ProviderHttpClient:
    recorded = sleeps if sleeps is not None else []
    return ProviderHttpClient(
        timeout=5,
        max_attempts=max_attempts,
        backoff=0.5,
        transport=httpx.MockTransport(handler),
        sleep=recorded.append,
    )


class TestSuccess:
    def test_get_json_returns_body(self):
        client = _client(lambda request: httpx.Response(200, json={"ok": True}))

        assert client.get_json("https://api.example.com/things") == {"ok": True}

    def test_bearer_token_and_accept_headers(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={})

        _client(handler).get_json("https://api.example.com/things", token="tok-1")

        assert seen["authorization"] == "Bearer tok-1"
        assert seen["accept"] == "application/json"

    def test_empty_body_is_empty_dict(self):
        client = _client(lambda request: httpx.Response(204))

        assert client.patch_json("https://api.example.com/things/1", json={"a": 1}) == {}


class TestErrorMapping:
    def test_unauthorized_is_token_rejected(self):
        client = _client(lambda request: httpx.Response(401, json={"error": "expired"}))

        with pytest.raises(TokenRejected):
            client.get_json("https://api.example.com/things")

    def test_client_error_is_provider_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, text="not found")

        with pytest.raises(ProviderError) as exc_info:
            _client(handler).get_json("https://api.example.com/things/9")

        assert exc_info.value.status_code == 404
        assert len(calls) == 1

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(TransientNetworkError):
            _client(handler, max_attempts=1).get_json("https://api.example.com/things")


class TestRetries:
    def test_server_error_on_get_is_retried(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"n": 1})])
        sleeps: list[float] = []

        result = _client(lambda request: next(responses), sleeps).get_json(
            "https://api.example.com/things"
        )

        assert result == {"n": 1}
        assert len(sleeps) == 1

    def test_gives_up_after_max_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        with pytest.raises(TransientNetworkError):
            _client(handler, max_attempts=3).get_json("https://api.example.com/things")

        assert len(calls) == 3

    def test_retry_after_header_sets_wait(self):
        responses = iter(
            [httpx.Response(429, headers={"Retry-After": "7"}), httpx.Response(200, json={})]
        )
        sleeps: list[float] = []

        _client(lambda request: next(responses), sleeps).get_json("https://api.example.com/x")

        assert sleeps == [7.0]

    def test_long_retry_after_is_capped(self):
        responses = iter(
            [httpx.Response(429, headers={"Retry-After": "3600"}), httpx.Response(200, json={})]
        )
        sleeps: list[float] = []

        _client(lambda request: next(responses), sleeps).get_json("https://api.example.com/x")

        assert sleeps == [60.0]

    def test_rate_limited_carries_retry_after(self):
        client = _client(
            lambda request: httpx.Response(429, headers={"Retry-After": "3"}), max_attempts=1
        )

        with pytest.raises(RateLimited) as exc_info:
            client.get_json("https://api.example.com/x")

        assert exc_info.value.retry_after == 3.0

    def test_post_is_not_retried_by_default(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        with pytest.raises(TransientNetworkError):
            _client(handler).post_json("https://api.example.com/things", json={"a": 1})

        assert len(calls) == 1

    def test_post_marked_idempotent_is_retried(self):
        responses = iter([httpx.Response(500), httpx.Response(200, json={"id": "1"})])

        result = _client(lambda request: next(responses)).post_json(
            "https://api.example.com/search", json={}, idempotent=True
        )

        assert result == {"id": "1"}
