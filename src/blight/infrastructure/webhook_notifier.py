from __future__ import annotations

import logging

import httpx

from blight.domain.gateways import Notifier
from blight.infrastructure.resilient_http import CircuitBreaker, CircuitOpenError, post_json_with_retry


logger = logging.getLogger(__name__)


class WebhookNotifier(Notifier):
    """Posts blight messages as JSON to a relay webhook that owns the chat transport.

    Payloads look like ``{"kind": "dm", "target": "<user id>", "content": "..."}``
    with ``kind`` one of ``dm`` or ``broadcast``.
    """

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout: float = 5.0,
        retries: int = 1,
        backoff_seconds: float = 0.2,
        client: httpx.Client | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self._client = client or httpx.Client(timeout=timeout)
        self._breaker = breaker if breaker is not None else CircuitBreaker.from_env()

    def _post(self, kind: str, target: str, message: str) -> bool:
        payload = {"kind": kind, "target": str(target), "content": message}
        try:
            post_json_with_retry(
                self._client,
                self.webhook_url,
                payload,
                retries=self.retries,
                backoff_seconds=self.backoff_seconds,
                breaker=self._breaker,
            )
        except CircuitOpenError as exc:
            logger.warning("Blight webhook circuit open", extra={"kind": kind, "target": target, "error": str(exc)})
            return False
        except httpx.HTTPError as exc:
            logger.warning("Blight webhook delivery failed", extra={"kind": kind, "target": target, "error": str(exc)})
            return False
        return True

    def dm_user(self, user_id: str, message: str) -> bool:
        return self._post("dm", user_id, message)

    def broadcast(self, channel_id: str, message: str) -> bool:
        return self._post("broadcast", channel_id, message)

    def close(self) -> None:
        self._client.close()
