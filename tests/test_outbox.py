"""
Tests for the event outbox e publishers.

Covers:
  - emit idempotente por dedupe_key
  - Entrega → SENT; falha → RETRY com backoff → FAILED
  - compute_backoff
  - WebhookEventPublisher (header de idempotência, erro HTTP)
  - EventDeliveryLoop
"""

from datetime import timedelta

import httpx
import pytest

from conftest import RecordingPublisher
from payproof.core.entities.event import EventType, PaymentEvent
from payproof.infrastructure.db.models import utcnow
from payproof.infrastructure.events.outbox import (
    FAILED,
    PENDING,
    RETRY,
    SENT,
    EventDeliveryLoop,
    OutboxEventEmitter,
    compute_backoff,
    deliver_pending_once,
)
from payproof.infrastructure.events.publishers import IDEMPOTENCY_HEADER, WebhookEventPublisher


def _event(extraction_id: str = "ext-1", type: EventType = EventType.AUTO_APPROVED, **kwargs) -> PaymentEvent:
    kwargs.setdefault("outcome", "auto_approved")
    kwargs.setdefault("decision_id", "dec-1")
    return PaymentEvent(type=type, extraction_id=extraction_id, user_id="buyer-1",
                        platforms=("whatsapp",), **kwargs)


# ═══════════════════════════════════════════════════════════════
# Emitter
# ═══════════════════════════════════════════════════════════════


def test_emit_is_idempotent(db):
    emitter = OutboxEventEmitter(db)

    assert emitter.emit(_event()) is True
    assert emitter.emit(_event()) is False

    events = emitter.list_events("ext-1")
    assert len(events) == 1
    assert events[0]["status"] == PENDING
    assert events[0]["dedupe_key"] == "ext-1:auto_approved:auto_approved:dec-1"
    assert events[0]["payload"]["user_id"] == "buyer-1"


def test_distinct_decisions_are_distinct_events(db):
    emitter = OutboxEventEmitter(db)
    emitter.emit(_event(type=EventType.REVIEW_REQUIRED, outcome="manual_review", decision_id="dec-1"))
    emitter.emit(_event(type=EventType.REVIEW_REQUIRED, outcome="manual_review", decision_id="dec-2"))
    assert len(emitter.list_events("ext-1")) == 2


# ═══════════════════════════════════════════════════════════════
# Entrega
# ═══════════════════════════════════════════════════════════════


def test_deliver_marks_sent(db):
    emitter = OutboxEventEmitter(db)
    publisher = RecordingPublisher()
    emitter.emit(_event())
    emitter.emit(_event("ext-2"))

    sent = deliver_pending_once(db, publisher, now=utcnow() + timedelta(seconds=1))

    assert sent == 2
    assert [key for key, _ in publisher.published] == [
        "ext-1:auto_approved:auto_approved:dec-1",
        "ext-2:auto_approved:auto_approved:dec-1",
    ]
    assert emitter.list_events("ext-1")[0]["status"] == SENT
    # nada mais a entregar
    assert deliver_pending_once(db, publisher, now=utcnow() + timedelta(seconds=2)) == 0
    assert len(publisher.published) == 2


def test_failed_delivery_retries_then_fails(db):
    emitter = OutboxEventEmitter(db)
    emitter.emit(_event())
    publisher = RecordingPublisher(fail=True)
    now = utcnow() + timedelta(seconds=1)

    assert deliver_pending_once(db, publisher, max_attempts=2, now=now) == 0
    event = emitter.list_events("ext-1")[0]
    assert event["status"] == RETRY
    assert event["attempt_count"] == 1

    # ainda dentro do backoff: não tenta de novo
    deliver_pending_once(db, publisher, max_attempts=2, now=now + timedelta(seconds=1))
    assert emitter.list_events("ext-1")[0]["attempt_count"] == 1

    deliver_pending_once(db, publisher, max_attempts=2, now=now + timedelta(minutes=30))
    event = emitter.list_events("ext-1")[0]
    assert event["status"] == FAILED
    assert event["attempt_count"] == 2


def test_retry_then_success(db):
    emitter = OutboxEventEmitter(db)
    emitter.emit(_event())
    publisher = RecordingPublisher(fail=True)
    now = utcnow() + timedelta(seconds=1)

    deliver_pending_once(db, publisher, now=now)
    publisher.fail = False
    assert deliver_pending_once(db, publisher, now=now + timedelta(minutes=30)) == 1
    assert emitter.list_events("ext-1")[0]["status"] == SENT


@pytest.mark.parametrize("attempt,seconds", [(0, 5), (1, 5), (2, 10), (3, 20), (8, 600), (30, 600)])
def test_compute_backoff(attempt, seconds):
    assert compute_backoff(attempt) == timedelta(seconds=seconds)


# ═══════════════════════════════════════════════════════════════
# Publishers
# ═══════════════════════════════════════════════════════════════


def test_webhook_sends_idempotency_key():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    publisher = WebhookEventPublisher("https://hooks.example/payments", client=client)
    publisher.publish("ext-1:auto_approved:auto_approved:dec-1", {"type": "auto_approved"})

    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert seen[0].headers[IDEMPOTENCY_HEADER] == "ext-1:auto_approved:auto_approved:dec-1"
    assert b"auto_approved" in seen[0].content
    publisher.close()


def test_webhook_error_status_raises():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    publisher = WebhookEventPublisher("https://hooks.example/payments", client=client)
    with pytest.raises(httpx.HTTPStatusError):
        publisher.publish("k", {})


def test_webhook_requires_url():
    with pytest.raises(ValueError):
        WebhookEventPublisher("")


# ═══════════════════════════════════════════════════════════════
# Loop
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_delivery_loop_flushes_on_stop(db):
    emitter = OutboxEventEmitter(db)
    publisher = RecordingPublisher()
    loop = EventDeliveryLoop(db, publisher, interval_seconds=30)

    loop.start()
    assert loop.running
    emitter.emit(_event())
    await loop.stop()

    assert not loop.running
    assert len(publisher.published) == 1
    assert emitter.list_events("ext-1")[0]["status"] == SENT
