"""
SQL Order Store — transações pendentes sobre a tabela pending_payments.

`claim` usa update condicional (status + versão): dois pipelines
disputando o mesmo pedido nunca o marcam como pago duas vezes.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update

from payproof.core.entities.match import PENDING_STATUS, MatchCandidate
from payproof.core.exceptions import ConcurrentClaimConflict
from payproof.core.interfaces.order_store import IOrderStore
from payproof.infrastructure.db.database import Database
from payproof.infrastructure.db.models import PendingPaymentRecord, as_utc, utcnow
from payproof.infrastructure.rules.payment_patterns import normalize_reference

logger = logging.getLogger(__name__)

PAID_STATUS = "paid"


def _to_candidate(record: PendingPaymentRecord) -> MatchCandidate:
    return MatchCandidate(
        id=record.id,
        expected_reference=record.reference,
        expected_amount=Decimal(str(record.expected_amount)),
        currency=record.currency,
        buyer_identity=record.buyer_identity or "",
        status=record.status,
        created_at=as_utc(record.created_at),
        payment_methods=tuple(record.payment_methods or ()),
        claimed_by=record.claimed_by_extraction,
    )


class SqlOrderStore(IOrderStore):
    """Order store sobre SQLAlchemy."""

    def __init__(self, db: Database):
        self._db = db

    def find_pending(
        self,
        currency: str,
        since: datetime,
        until: datetime,
        reference_hint: str | None = None,
        amount_hint: Decimal | None = None,
    ) -> list[MatchCandidate]:
        with self._db.session() as s:
            records = s.execute(
                select(PendingPaymentRecord)
                .where(
                    PendingPaymentRecord.currency == currency,
                    PendingPaymentRecord.status == PENDING_STATUS,
                    PendingPaymentRecord.created_at >= since,
                    PendingPaymentRecord.created_at <= until,
                )
                .order_by(PendingPaymentRecord.created_at.desc())
            ).scalars().all()
            candidates = [_to_candidate(r) for r in records]

        # hints só ordenam: o matching é quem decide
        ref = normalize_reference(reference_hint)
        candidates.sort(key=lambda c: (
            0 if ref and normalize_reference(c.expected_reference) == ref else 1,
            0 if amount_hint is not None and c.expected_amount == amount_hint else 1,
        ))
        return candidates

    def get(self, candidate_id: str) -> MatchCandidate | None:
        with self._db.session() as s:
            record = s.get(PendingPaymentRecord, candidate_id)
            return _to_candidate(record) if record else None

    def claim(self, candidate_id: str, extraction_id: str) -> None:
        with self._db.session() as s:
            record = s.get(PendingPaymentRecord, candidate_id)
            if record is None:
                raise ConcurrentClaimConflict(candidate_id, "candidate not found")
            if record.status != PENDING_STATUS:
                if record.claimed_by_extraction == extraction_id:
                    return
                raise ConcurrentClaimConflict(candidate_id, f"status is {record.status}")

            result = s.execute(
                update(PendingPaymentRecord)
                .where(
                    PendingPaymentRecord.id == candidate_id,
                    PendingPaymentRecord.status == PENDING_STATUS,
                    PendingPaymentRecord.version == record.version,
                )
                .values(
                    status=PAID_STATUS,
                    version=record.version + 1,
                    claimed_by_extraction=extraction_id,
                    claimed_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrentClaimConflict(candidate_id, "lost conditional update")

        logger.info(f"Candidate {candidate_id} claimed by extraction {extraction_id}")

    def add_pending(
        self,
        candidate_id: str,
        reference: str,
        expected_amount: Decimal,
        currency: str,
        buyer_identity: str = "",
        payment_methods: list[str] | None = None,
        created_at: datetime | None = None,
    ) -> MatchCandidate:
        """Registra uma transação pendente (seed/demo e testes)."""
        with self._db.session() as s:
            record = PendingPaymentRecord(
                id=candidate_id,
                reference=reference,
                expected_amount=expected_amount,
                currency=currency,
                buyer_identity=buyer_identity,
                payment_methods=list(payment_methods or []),
                status=PENDING_STATUS,
                version=1,
                created_at=created_at or utcnow(),
            )
            s.add(record)
            s.flush()
            return _to_candidate(record)
