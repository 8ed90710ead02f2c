"""
Event publishers — destino final dos eventos do outbox.

  - LoggingEventPublisher: só registra (dev / default)
  - WebhookEventPublisher: POST JSON com chave de idempotência
"""

import logging

import httpx

from payproof.core.interfaces.event_publisher import IEventPublisher

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "X-Idempotency-Key"


class LoggingEventPublisher(IEventPublisher):
    """Publica no log da aplicação."""

    def publish(self, dedupe_key: str, payload: dict) -> None:
        logger.info(
            f"Event {payload.get('type')} for extraction {payload.get('extraction_id')} "
            f"(outcome={payload.get('outcome')}, key={dedupe_key})"
        )


class WebhookEventPublisher(IEventPublisher):
    """Entrega via HTTP POST; qualquer status != 2xx levanta."""

    def __init__(self, url: str, timeout_seconds: float = 5.0, client: httpx.Client | None = None):
        if not url:
            raise ValueError("webhook url is required")
        self.url = url
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def publish(self, dedupe_key: str, payload: dict) -> None:
        resp = self._client.post(
            self.url,
            json=payload,
            headers={IDEMPOTENCY_HEADER: dedupe_key, "content-type": "application/json"},
        )
        resp.raise_for_status()

    def close(self) -> None:
        self._client.close()
