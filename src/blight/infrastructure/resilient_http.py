import os
import time
from dataclasses import dataclass, field
from typing import Any

import httpx


_RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class CircuitOpenError(RuntimeError):
    pass


def _is_truthy(value: str | None, *, default: str) -> bool:
    normalized = str(value if value is not None else default).strip().lower()
    return normalized in {"1", "true", "yes"}


@dataclass
class CircuitBreaker:
    """Per-target failure counter that refuses calls for a while after repeated failures."""

    enabled: bool = True
    failure_threshold: int = 3
    reset_seconds: float = 120.0
    _failures: dict[str, int] = field(default_factory=dict)
    _opened_until: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "CircuitBreaker":
        return cls(
            enabled=_is_truthy(os.getenv("BLIGHT_HTTP_CIRCUIT_BREAKER_ENABLED"), default="1"),
            failure_threshold=max(1, int(os.getenv("BLIGHT_HTTP_CIRCUIT_FAILURE_THRESHOLD", "3"))),
            reset_seconds=max(0.0, float(os.getenv("BLIGHT_HTTP_CIRCUIT_RESET_SECONDS", "120"))),
        )

    def before_attempt(self, key: str) -> None:
        if not self.enabled:
            return
        opened_until = self._opened_until.get(key, 0.0)
        if opened_until > time.time():
            raise CircuitOpenError(f"HTTP circuit open for {key} until {int(opened_until)}")
        if opened_until > 0:
            self.reset(key)

    def record_success(self, key: str) -> None:
        if self.enabled:
            self.reset(key)

    def record_failure(self, key: str) -> None:
        if not self.enabled:
            return
        self._failures[key] = self._failures.get(key, 0) + 1
        if self._failures[key] >= self.failure_threshold:
            self._opened_until[key] = time.time() + self.reset_seconds

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._failures.clear()
            self._opened_until.clear()
            return
        self._failures.pop(key, None)
        self._opened_until.pop(key, None)


def _circuit_key(client: httpx.Client, path: str) -> str:
    base = str(getattr(client, "base_url", "") or "")
    return f"{base}{path}" if base else path


def _is_retryable_exception(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS_CODES
    return False


def post_json_with_retry(
    client: httpx.Client,
    path: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str] | None = None,
    retries: int = 0,
    backoff_seconds: float = 0.2,
    breaker: CircuitBreaker | None = None,
) -> httpx.Response:
    attempts = max(0, int(retries)) + 1
    key = _circuit_key(client, path)

    for attempt_index in range(attempts):
        try:
            if breaker is not None:
                breaker.before_attempt(key)
            response = client.post(path, json=payload, headers=headers)
            if response.status_code in _RETRYABLE_STATUS_CODES:
                raise httpx.HTTPStatusError(
                    f"Retryable HTTP status: {response.status_code}",
                    request=response.request,
                    response=response,
                )
            response.raise_for_status()
            if breaker is not None:
                breaker.record_success(key)
            return response
        except Exception as exc:
            should_retry = _is_retryable_exception(exc)
            if should_retry and breaker is not None:
                breaker.record_failure(key)
            is_last_attempt = attempt_index >= attempts - 1
            if not should_retry or is_last_attempt:
                raise
            delay = max(0.0, backoff_seconds) * (2 ** attempt_index)
            if delay > 0:
                time.sleep(delay)

    raise RuntimeError("post_json_with_retry exhausted without a response")
