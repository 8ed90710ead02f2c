"""
Database Models — SQLAlchemy.

Tables:
  - processing_jobs: Jobs aceitos na entrada (status + imagem normalizada)
  - payment_extractions: Extrações fundidas (append-only)
  - decisions: Log de decisões (automatizada + revisões), append-only
  - event_outbox: Eventos a publicar (outbox transacional)
  - pending_payments: Transações aguardando pagamento (lado do order store)
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, JSON,
    LargeBinary, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite devolve datetimes sem fuso; todos são gravados em UTC."""
    if value is None:
        return None
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    pass


class ProcessingJobRecord(Base):
    """Um comprovante aceito na entrada."""
    __tablename__ = "processing_jobs"

    id = Column(String(36), primary_key=True)
    extraction_id = Column(String(36), unique=True, nullable=False)
    fingerprint = Column(String(64), nullable=False, index=True)
    source_platform = Column(String(20), nullable=False, default="web")
    submitted_by = Column(String(120), default="")
    priority = Column(String(10), nullable=False, default="normal")
    submission_context = Column(JSON, nullable=True)
    image_data = Column(LargeBinary, nullable=True)
    image_width = Column(Integer, default=0)
    image_height = Column(Integer, default=0)

    status = Column(String(20), nullable=False, default="queued", index=True)
    attempts = Column(Integer, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Job {self.id} [{self.status}] fp={self.fingerprint[:8]}>"


class PaymentExtractionRecord(Base):
    """Extração fundida. Nunca atualizada depois de inserida."""
    __tablename__ = "payment_extractions"

    id = Column(String(36), primary_key=True)
    job_id = Column(String(36), ForeignKey("processing_jobs.id"), nullable=False, index=True)

    overall_confidence = Column(Float, default=0.0)
    requires_review = Column(Boolean, default=True)
    flags = Column(JSON, default=list)
    legibility = Column(Float, default=0.0)
    candidates = Column(JSON, default=list)

    # Desnormalizado do candidato primário (estatísticas)
    primary_amount = Column(Numeric(12, 2), nullable=True)
    primary_currency = Column(String(3), nullable=True, index=True)
    primary_method = Column(String(40), nullable=True)

    ocr_status = Column(String(20), default="ok")
    vision_status = Column(String(20), default="ok")
    ocr_result = Column(JSON, nullable=True)
    vision_result = Column(JSON, nullable=True)

    processing_time_ms = Column(Float, default=0.0)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self):
        return f"<Extraction {self.id} conf={self.overall_confidence}>"


class DecisionRecord(Base):
    """
    Decisão sobre uma extração.

    `seq` numera o histórico por extração (1 = automatizada). O par
    (extraction_id, seq) é único: duas revisões concorrentes sobre a
    mesma decisão não conseguem ambas gravar.
    """
    __tablename__ = "decisions"
    __table_args__ = (
        UniqueConstraint("extraction_id", "seq", name="uq_decisions_extraction_seq"),
    )

    id = Column(String(36), primary_key=True)
    extraction_id = Column(String(36), nullable=False, index=True)
    job_id = Column(String(36), nullable=False)
    seq = Column(Integer, nullable=False)

    outcome = Column(String(30), nullable=False, index=True)
    confidence = Column(Float, default=0.0)
    reason_codes = Column(JSON, default=list)
    matched_candidate_id = Column(String(64), nullable=True)
    match_score = Column(Float, nullable=True)
    scored_candidates = Column(JSON, default=list)

    decided_by = Column(String(120), default="system")
    automated = Column(Boolean, default=True)
    supersedes_id = Column(String(36), nullable=True)
    corrections = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    decided_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self):
        return f"<Decision {self.id} {self.extraction_id}#{self.seq} [{self.outcome}]>"


class EventOutboxRecord(Base):
    """Evento pendente de publicação."""
    __tablename__ = "event_outbox"
    __table_args__ = (
        Index("ix_event_outbox_due", "status", "next_attempt_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    dedupe_key = Column(String(255), unique=True, nullable=False)
    event_type = Column(String(40), nullable=False)
    extraction_id = Column(String(36), nullable=False, index=True)
    payload = Column(JSON, nullable=False)

    status = Column(String(20), nullable=False, default="PENDING")   # PENDING | RETRY | SENT | FAILED
    attempt_count = Column(Integer, default=0)
    next_attempt_at = Column(DateTime(timezone=True), default=utcnow)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Event {self.dedupe_key} [{self.status}]>"


class PendingPaymentRecord(Base):
    """Transação de pedido aguardando comprovante."""
    __tablename__ = "pending_payments"

    id = Column(String(64), primary_key=True)
    reference = Column(String(64), nullable=False, index=True)
    expected_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, index=True)
    buyer_identity = Column(String(120), default="")
    payment_methods = Column(JSON, default=list)

    status = Column(String(30), nullable=False, default="pending_payment", index=True)
    version = Column(Integer, nullable=False, default=1)
    claimed_by_extraction = Column(String(36), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self):
        return f"<PendingPayment {self.id} {self.currency} {self.expected_amount} [{self.status}]>"
