"""HTTP client shared by all provider adapters.

Wraps ``httpx.Client`` with a bounded timeout and maps provider responses onto
the sync error taxonomy. Idempotent requests are retried with exponential
backoff; a ``Retry-After`` header on a 429 overrides the computed wait.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.services.integrations.errors import (
    ProviderError,
    RateLimited,
    TokenRejected,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "PUT", "DELETE", "OPTIONS"})
MAX_WAIT_SECONDS = 60.0


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class ProviderHttpClient:
    """Synchronous JSON client for provider REST APIs."""

    def __init__(
        self,
        timeout: float | None = None,
        max_attempts: int | None = None,
        backoff: float | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.timeout = timeout if timeout is not None else settings.PROVIDER_HTTP_TIMEOUT_SECONDS
        self.max_attempts = max_attempts or settings.PROVIDER_MAX_ATTEMPTS
        self.backoff = backoff if backoff is not None else settings.PROVIDER_BACKOFF_SECONDS
        self._transport = transport
        self._sleep = sleep

    def _wait(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            return min(exc.retry_after, MAX_WAIT_SECONDS)
        computed = wait_exponential(multiplier=self.backoff, max=MAX_WAIT_SECONDS)(retry_state)
        return float(computed)

    def request(
        self,
        method: str,
        url: str,
        *,
        token: str | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        idempotent: bool | None = None,
    ) -> httpx.Response:
        """Send a request, retrying transient failures when it is safe to.

        Non-idempotent requests (POST, PATCH) are attempted once unless the
        caller marks them idempotent, for example when a provider-side
        idempotency key is attached.
        """
        method = method.upper()
        if idempotent is None:
            idempotent = method in IDEMPOTENT_METHODS
        request_headers = {"Accept": "application/json"}
        if token:
            request_headers["Authorization"] = f"Bearer {token}"
        if headers:
            request_headers.update(headers)

        def send() -> httpx.Response:
            return self._send_once(
                method, url, params=params, json=json, data=data, headers=request_headers
            )

        if not idempotent:
            return send()

        retrying = Retrying(
            retry=retry_if_exception_type(TransientNetworkError),
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(send)

    def _send_once(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None,
        json: Any,
        data: dict[str, Any] | None,
        headers: dict[str, str],
    ) -> httpx.Response:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.request(
                    method, url, params=params, json=json, data=data, headers=headers
                )
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"{method} {url} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"{method} {url} failed: {exc}") from exc

        if 200 <= resp.status_code < 300:
            return resp

        body = resp.text[:500] if resp.text else ""
        if resp.status_code == 429:
            raise RateLimited(
                f"{method} {url} rate limited",
                retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
            )
        if resp.status_code >= 500:
            raise TransientNetworkError(f"{method} {url} returned {resp.status_code}: {body}")
        if resp.status_code == 401:
            raise TokenRejected(f"{method} {url} rejected the access token")
        raise ProviderError(
            f"{method} {url} returned {resp.status_code}: {body}",
            status_code=resp.status_code,
        )

    def get_json(self, url: str, **kwargs: Any) -> Any:
        resp = self.request("GET", url, **kwargs)
        return resp.json() if resp.content else {}

    def post_json(self, url: str, **kwargs: Any) -> Any:
        resp = self.request("POST", url, **kwargs)
        return resp.json() if resp.content else {}

    def patch_json(self, url: str, **kwargs: Any) -> Any:
        resp = self.request("PATCH", url, **kwargs)
        return resp.json() if resp.content else {}

    def put_json(self, url: str, **kwargs: Any) -> Any:
        resp = self.request("PUT", url, **kwargs)
        return resp.json() if resp.content else {}
