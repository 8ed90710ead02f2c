"""
Event outbox — publicação at-least-once de eventos de pagamento.

O pipeline só insere no outbox (idempotente por dedupe_key); um
loop em background entrega as linhas pendentes ao publisher, com
backoff exponencial e limite de tentativas.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from payproof.core.entities.event import PaymentEvent
from payproof.core.interfaces.event_publisher import IEventEmitter, IEventPublisher
from payproof.infrastructure.db.database import Database
from payproof.infrastructure.db.models import EventOutboxRecord, utcnow

logger = logging.getLogger(__name__)

PENDING = "PENDING"
RETRY = "RETRY"
SENT = "SENT"
FAILED = "FAILED"


def compute_backoff(attempt_count: int, base_seconds: float = 5.0, max_seconds: float = 600.0) -> timedelta:
    # 5s, 10s, 20s, 40s, ... até 10min
    seconds = base_seconds * (2 ** max(0, attempt_count - 1))
    return timedelta(seconds=max(base_seconds, min(max_seconds, seconds)))


class OutboxEventEmitter(IEventEmitter):
    """Grava eventos no outbox."""

    def __init__(self, db: Database):
        self._db = db

    def emit(self, event: PaymentEvent) -> bool:
        """
        Insere o evento; retorna False se a mesma dedupe_key já existia.
        """
        values = {
            "dedupe_key": event.dedupe_key,
            "event_type": event.type.value,
            "extraction_id": event.extraction_id,
            "payload": event.to_payload(),
            "status": PENDING,
            "attempt_count": 0,
            "next_attempt_at": utcnow(),
            "created_at": utcnow(),
        }
        table = EventOutboxRecord.__table__

        with self._db.session() as s:
            dialect = self._db.dialect
            if dialect == "postgresql":
                stmt = pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=["dedupe_key"])
                inserted = bool(s.execute(stmt).rowcount)
            elif dialect == "sqlite":
                stmt = sqlite_insert(table).values(**values).prefix_with("OR IGNORE")
                inserted = bool(s.execute(stmt).rowcount)
            else:
                existing = s.execute(
                    select(EventOutboxRecord.id).where(EventOutboxRecord.dedupe_key == event.dedupe_key)
                ).scalar_one_or_none()
                inserted = existing is None
                if inserted:
                    s.execute(insert(table).values(**values))

        if inserted:
            logger.debug(f"Queued event {event.dedupe_key}")
        else:
            logger.debug(f"Event {event.dedupe_key} already queued, skipping")
        return inserted

    def list_events(self, extraction_id: str) -> list[dict]:
        """Eventos de uma extração (auditoria / testes)."""
        with self._db.session() as s:
            rows = s.execute(
                select(EventOutboxRecord)
                .where(EventOutboxRecord.extraction_id == extraction_id)
                .order_by(EventOutboxRecord.id.asc())
            ).scalars().all()
            return [
                {
                    "dedupe_key": r.dedupe_key,
                    "event_type": r.event_type,
                    "status": r.status,
                    "attempt_count": r.attempt_count,
                    "payload": r.payload,
                }
                for r in rows
            ]


def deliver_pending_once(
    db: Database,
    publisher: IEventPublisher,
    batch_size: int = 50,
    max_attempts: int = 8,
    now: datetime | None = None,
) -> int:
    """
    Entrega os eventos vencidos.
    Returns number of successfully SENT items.
    """
    now = now or utcnow()

    with db.session() as s:
        due = s.execute(
            select(EventOutboxRecord)
            .where(
                EventOutboxRecord.status.in_([PENDING, RETRY]),
                EventOutboxRecord.next_attempt_at <= now,
            )
            .order_by(EventOutboxRecord.next_attempt_at.asc(), EventOutboxRecord.id.asc())
            .limit(int(max(1, batch_size)))
        ).scalars().all()

        sent = 0
        for row in due:
            row.attempt_count = int(row.attempt_count or 0) + 1
            try:
                publisher.publish(row.dedupe_key, row.payload or {})
            except Exception as exc:
                row.last_error = f"{type(exc).__name__}: {exc}"[:2000]
                if row.attempt_count >= max_attempts:
                    row.status = FAILED
                    logger.error(f"Event {row.dedupe_key} failed permanently after {row.attempt_count} attempts: {exc}")
                else:
                    row.status = RETRY
                    row.next_attempt_at = now + compute_backoff(row.attempt_count)
                    logger.warning(f"Event {row.dedupe_key} delivery failed (attempt {row.attempt_count}): {exc}")
                continue

            row.status = SENT
            row.sent_at = now
            row.last_error = None
            sent += 1

    if due:
        logger.info(f"Event outbox processed: sent={sent} total={len(due)}")
    return sent


class EventDeliveryLoop:
    """Roda deliver_pending_once periodicamente em background."""

    def __init__(
        self,
        db: Database,
        publisher: IEventPublisher,
        interval_seconds: float = 2.0,
        batch_size: int = 50,
        max_attempts: int = 8,
    ):
        self._db = db
        self.publisher = publisher
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        return await asyncio.to_thread(
            deliver_pending_once, self._db, self.publisher, self.batch_size, self.max_attempts
        )

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Event delivery pass failed: {e}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="event-delivery")
        logger.info(f"Event delivery loop started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Para o loop após um último flush."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        try:
            await self.run_once()
        except Exception as e:
            logger.warning(f"Final event flush failed: {e}")
        logger.info("Event delivery loop stopped")
