"""
Verification Repository — jobs, extrações, decisões + read model.

Handles:
  - Registro de jobs (status, tentativas, imagem até terminar)
  - Extrações e decisões append-only
  - Estatísticas agregadas para dashboards
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from payproof.core.entities.decision import Decision, Outcome
from payproof.core.entities.extraction import PaymentCandidate, PaymentExtraction
from payproof.core.entities.job import (
    JobStatus,
    Priority,
    ProcessingJob,
    SourcePlatform,
    SubmissionContext,
)
from payproof.core.exceptions import StaleDecision
from payproof.core.interfaces.ocr_engine import OCRBlock, OCRResult, OCRWord
from payproof.core.interfaces.verification_store import IVerificationStore, JobRef
from payproof.core.interfaces.vision_extractor import VisionExtraction, VisionFields
from payproof.infrastructure.db.database import Database
from payproof.infrastructure.db.models import (
    DecisionRecord,
    PaymentExtractionRecord,
    ProcessingJobRecord,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (JobStatus.DONE.value, JobStatus.DEAD_LETTER.value)


# ─── Conversões record ↔ entidade ───────────────────────

def _ocr_from_dict(data: dict | None) -> OCRResult | None:
    if not data:
        return None

    def _bbox(value):
        return tuple(value) if value else None

    return OCRResult(
        text=data.get("text", ""),
        confidence=float(data.get("confidence", 0.0)),
        words=tuple(OCRWord(w["text"], float(w["confidence"]), _bbox(w.get("bbox"))) for w in data.get("words", [])),
        blocks=tuple(OCRBlock(b["text"], float(b["confidence"]), _bbox(b.get("bbox"))) for b in data.get("blocks", [])),
        language=data.get("language", ""),
        engine=data.get("engine", ""),
    )


def _vision_from_dict(data: dict | None) -> VisionExtraction | None:
    if not data:
        return None
    fields = dict(data.get("fields") or {})
    if fields.get("amount") is not None:
        fields["amount"] = Decimal(str(fields["amount"]))
    return VisionExtraction(
        description=data.get("description", ""),
        fields=VisionFields(**fields),
        confidence=float(data.get("confidence", 0.0)),
        rationale=data.get("rationale", ""),
        model_id=data.get("model_id", ""),
        latency_ms=float(data.get("latency_ms", 0.0)),
        error=data.get("error"),
    )


def _extraction_from_record(record: PaymentExtractionRecord) -> PaymentExtraction:
    return PaymentExtraction(
        id=record.id,
        job_id=record.job_id,
        ocr=_ocr_from_dict(record.ocr_result),
        vision=_vision_from_dict(record.vision_result),
        candidates=tuple(PaymentCandidate.from_dict(c) for c in record.candidates or []),
        overall_confidence=record.overall_confidence,
        requires_review=record.requires_review,
        flags=tuple(record.flags or []),
        legibility=record.legibility,
        ocr_status=record.ocr_status,
        vision_status=record.vision_status,
        processing_time_ms=record.processing_time_ms,
        created_at=as_utc(record.created_at),
    )


def _decision_from_record(record: DecisionRecord) -> Decision:
    return Decision(
        id=record.id,
        extraction_id=record.extraction_id,
        job_id=record.job_id,
        outcome=Outcome(record.outcome),
        confidence=record.confidence,
        reason_codes=tuple(record.reason_codes or []),
        matched_candidate_id=record.matched_candidate_id,
        match_score=record.match_score,
        decided_by=record.decided_by,
        automated=record.automated,
        supersedes_id=record.supersedes_id,
        corrections=record.corrections,
        notes=record.notes,
        scored_candidates=tuple(record.scored_candidates or []),
        decided_at=as_utc(record.decided_at),
    )


def _job_from_record(record: ProcessingJobRecord) -> ProcessingJob:
    return ProcessingJob(
        id=record.id,
        extraction_id=record.extraction_id,
        image_bytes=record.image_data or b"",
        fingerprint=record.fingerprint,
        source_platform=SourcePlatform(record.source_platform),
        submitted_by=record.submitted_by or "",
        priority=Priority(record.priority),
        submission_context=SubmissionContext.from_dict(record.submission_context),
        image_width=record.image_width or 0,
        image_height=record.image_height or 0,
        created_at=as_utc(record.created_at),
    )


def job_to_dict(record: ProcessingJobRecord) -> dict:
    return {
        "job_id": record.id,
        "extraction_id": record.extraction_id,
        "status": record.status,
        "attempts": record.attempts or 0,
        "last_error": record.last_error,
        "source_platform": record.source_platform,
        "submitted_by": record.submitted_by,
        "priority": record.priority,
        "fingerprint": record.fingerprint,
        "created_at": as_utc(record.created_at),
        "updated_at": as_utc(record.updated_at),
    }


class SqlVerificationStore(IVerificationStore):
    """Repository de verificação sobre SQLAlchemy."""

    def __init__(self, db: Database):
        self._db = db

    # ─── Jobs ───────────────────────────────────────────

    def find_job_by_fingerprint(self, fingerprint: str, since: datetime) -> JobRef | None:
        with self._db.session() as s:
            record = s.execute(
                select(ProcessingJobRecord)
                .where(ProcessingJobRecord.fingerprint == fingerprint, ProcessingJobRecord.created_at >= since)
                .order_by(ProcessingJobRecord.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if record is None:
                return None
            return JobRef(record.id, record.extraction_id, record.status, as_utc(record.created_at))

    def save_job(self, job: ProcessingJob) -> None:
        with self._db.session() as s:
            s.add(ProcessingJobRecord(
                id=job.id,
                extraction_id=job.extraction_id,
                fingerprint=job.fingerprint,
                source_platform=job.source_platform.value,
                submitted_by=job.submitted_by,
                priority=job.priority.value,
                submission_context=job.submission_context.to_dict() if job.submission_context else None,
                image_data=job.image_bytes,
                image_width=job.image_width,
                image_height=job.image_height,
                status=JobStatus.QUEUED.value,
                created_at=job.created_at,
            ))
        logger.debug(f"Saved job {job.id} (extraction {job.extraction_id})")

    def update_job_status(
        self, job_id: str, status: JobStatus, attempts: int | None = None, error: str | None = None
    ) -> None:
        values: dict = {"status": status.value, "updated_at": utcnow()}
        if attempts is not None:
            values["attempts"] = attempts
        if error is not None:
            values["last_error"] = error[:2000]
        if status == JobStatus.DONE:
            # dead letter guarda a imagem para reprocessamento
            values["image_data"] = None
        with self._db.session() as s:
            s.execute(update(ProcessingJobRecord).where(ProcessingJobRecord.id == job_id).values(**values))

    def get_job(self, job_id: str) -> dict | None:
        with self._db.session() as s:
            record = s.get(ProcessingJobRecord, job_id)
            return job_to_dict(record) if record else None

    def unfinished_jobs(self) -> list[ProcessingJob]:
        """Jobs aceitos que ainda não terminaram (re-enfileirados no startup)."""
        with self._db.session() as s:
            records = s.execute(
                select(ProcessingJobRecord)
                .where(ProcessingJobRecord.status.notin_(TERMINAL_STATUSES))
                .order_by(ProcessingJobRecord.created_at.asc())
            ).scalars().all()
            return [_job_from_record(r) for r in records if r.image_data]

    def dead_letter_jobs(self, limit: int = 10, submitted_by: str | None = None) -> list[ProcessingJob]:
        """Jobs em dead letter que ainda têm a imagem, mais antigos primeiro."""
        query = (
            select(ProcessingJobRecord)
            .where(
                ProcessingJobRecord.status == JobStatus.DEAD_LETTER.value,
                ProcessingJobRecord.image_data.isnot(None),
            )
            .order_by(ProcessingJobRecord.updated_at.asc())
            .limit(limit)
        )
        if submitted_by:
            query = query.where(ProcessingJobRecord.submitted_by == submitted_by)
        with self._db.session() as s:
            return [_job_from_record(r) for r in s.execute(query).scalars().all()]

    def requeue_job(self, job_id: str, extraction_id: str) -> bool:
        """
        Volta um job em dead letter para a fila, apontando para uma nova extração.

        Returns:
            False se o job não estava mais em dead letter.
        """
        with self._db.session() as s:
            result = s.execute(
                update(ProcessingJobRecord)
                .where(
                    ProcessingJobRecord.id == job_id,
                    ProcessingJobRecord.status == JobStatus.DEAD_LETTER.value,
                )
                .values(
                    status=JobStatus.QUEUED.value,
                    extraction_id=extraction_id,
                    attempts=0,
                    last_error=None,
                    updated_at=utcnow(),
                )
            )
            requeued = result.rowcount == 1
        if requeued:
            logger.info(f"Requeued dead-lettered job {job_id} as extraction {extraction_id}")
        return requeued

    # ─── Extrações ──────────────────────────────────────

    def save_extraction(self, extraction: PaymentExtraction, job: ProcessingJob) -> PaymentExtraction:
        with self._db.session() as s:
            existing = s.get(PaymentExtractionRecord, extraction.id)
            if existing is not None:
                logger.debug(f"Extraction {extraction.id} already exists, keeping stored version")
                return _extraction_from_record(existing)

            primary = extraction.primary
            s.add(PaymentExtractionRecord(
                id=extraction.id,
                job_id=job.id,
                overall_confidence=extraction.overall_confidence,
                requires_review=extraction.requires_review,
                flags=list(extraction.flags),
                legibility=extraction.legibility,
                candidates=[c.to_dict() for c in extraction.candidates],
                primary_amount=primary.amount if primary else None,
                primary_currency=primary.currency if primary else None,
                primary_method=primary.method if primary else None,
                ocr_status=extraction.ocr_status,
                vision_status=extraction.vision_status,
                ocr_result=extraction.ocr.to_dict() if extraction.ocr else None,
                vision_result=extraction.vision.to_dict() if extraction.vision else None,
                processing_time_ms=extraction.processing_time_ms,
                created_at=extraction.created_at,
            ))
        logger.info(f"Saved extraction {extraction.id} (job {job.id})")
        return extraction

    def get_extraction(self, extraction_id: str) -> PaymentExtraction | None:
        with self._db.session() as s:
            record = s.get(PaymentExtractionRecord, extraction_id)
            return _extraction_from_record(record) if record else None

    # ─── Decisões ───────────────────────────────────────

    def save_decision(self, decision: Decision) -> Decision:
        """
        Acrescenta uma decisão ao histórico da extração.

        A automatizada é única por extração (gravar de novo devolve a
        existente). Revisões precisam apontar para a decisão mais recente
        em `supersedes_id`; caso contrário levanta StaleDecision.
        """
        try:
            with self._db.session() as s:
                rows = s.execute(
                    select(DecisionRecord)
                    .where(DecisionRecord.extraction_id == decision.extraction_id)
                    .order_by(DecisionRecord.seq.asc())
                ).scalars().all()

                if decision.automated:
                    initial = next((r for r in rows if r.automated), None)
                    if initial is not None:
                        logger.debug(f"Extraction {decision.extraction_id} already has an automated decision")
                        return _decision_from_record(initial)
                else:
                    latest_id = rows[-1].id if rows else None
                    if latest_id is None or decision.supersedes_id != latest_id:
                        raise StaleDecision(decision.extraction_id, latest_id)

                s.add(DecisionRecord(
                    id=decision.id,
                    extraction_id=decision.extraction_id,
                    job_id=decision.job_id,
                    seq=(rows[-1].seq if rows else 0) + 1,
                    outcome=decision.outcome.value,
                    confidence=decision.confidence,
                    reason_codes=list(decision.reason_codes),
                    matched_candidate_id=decision.matched_candidate_id,
                    match_score=decision.match_score,
                    scored_candidates=list(decision.scored_candidates),
                    decided_by=decision.decided_by,
                    automated=decision.automated,
                    supersedes_id=decision.supersedes_id,
                    corrections=decision.corrections,
                    notes=decision.notes,
                    decided_at=decision.decided_at,
                ))
        except IntegrityError:
            # outra escrita concorrente ocupou o mesmo seq
            if decision.automated:
                existing = self.initial_decision(decision.extraction_id)
                if existing is not None:
                    return existing
                raise
            latest = self.latest_decision(decision.extraction_id)
            raise StaleDecision(decision.extraction_id, latest.id if latest else None)

        logger.info(
            f"Saved decision {decision.id} for extraction {decision.extraction_id}: "
            f"{decision.outcome.value} by {decision.decided_by}"
        )
        return decision

    def initial_decision(self, extraction_id: str) -> Decision | None:
        with self._db.session() as s:
            record = s.execute(
                select(DecisionRecord)
                .where(DecisionRecord.extraction_id == extraction_id, DecisionRecord.automated.is_(True))
                .order_by(DecisionRecord.seq.asc())
                .limit(1)
            ).scalar_one_or_none()
            return _decision_from_record(record) if record else None

    def latest_decision(self, extraction_id: str) -> Decision | None:
        with self._db.session() as s:
            record = s.execute(
                select(DecisionRecord)
                .where(DecisionRecord.extraction_id == extraction_id)
                .order_by(DecisionRecord.seq.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _decision_from_record(record) if record else None

    def list_decisions(self, extraction_id: str) -> list[Decision]:
        with self._db.session() as s:
            records = s.execute(
                select(DecisionRecord)
                .where(DecisionRecord.extraction_id == extraction_id)
                .order_by(DecisionRecord.seq.asc())
            ).scalars().all()
            return [_decision_from_record(r) for r in records]

    # ─── Read model ─────────────────────────────────────

    def get_stats(self) -> dict:
        """Estatísticas agregadas (decisões automatizadas + estado atual)."""
        with self._db.session() as s:
            by_outcome = dict(
                s.execute(
                    select(DecisionRecord.outcome, func.count())
                    .where(DecisionRecord.automated.is_(True))
                    .group_by(DecisionRecord.outcome)
                ).all()
            )
            processed = sum(by_outcome.values())
            matched = s.execute(
                select(func.count())
                .select_from(DecisionRecord)
                .where(DecisionRecord.automated.is_(True), DecisionRecord.matched_candidate_id.isnot(None))
            ).scalar() or 0

            latest_seq = (
                select(DecisionRecord.extraction_id, func.max(DecisionRecord.seq).label("seq"))
                .group_by(DecisionRecord.extraction_id)
                .subquery()
            )
            requires_review = s.execute(
                select(func.count())
                .select_from(DecisionRecord)
                .join(
                    latest_seq,
                    (DecisionRecord.extraction_id == latest_seq.c.extraction_id)
                    & (DecisionRecord.seq == latest_seq.c.seq),
                )
                .where(DecisionRecord.outcome == Outcome.MANUAL_REVIEW.value)
            ).scalar() or 0

            failed = s.execute(
                select(func.count())
                .select_from(ProcessingJobRecord)
                .where(ProcessingJobRecord.status == JobStatus.DEAD_LETTER.value)
            ).scalar() or 0

            avg_conf = s.execute(select(func.avg(PaymentExtractionRecord.overall_confidence))).scalar() or 0
            avg_latency = s.execute(select(func.avg(PaymentExtractionRecord.processing_time_ms))).scalar() or 0

            by_platform = dict(
                s.execute(
                    select(ProcessingJobRecord.source_platform, func.count())
                    .join(PaymentExtractionRecord, PaymentExtractionRecord.job_id == ProcessingJobRecord.id)
                    .group_by(ProcessingJobRecord.source_platform)
                ).all()
            )
            by_currency = dict(
                s.execute(
                    select(PaymentExtractionRecord.primary_currency, func.count())
                    .where(PaymentExtractionRecord.primary_currency.isnot(None))
                    .group_by(PaymentExtractionRecord.primary_currency)
                ).all()
            )
            by_method = dict(
                s.execute(
                    select(PaymentExtractionRecord.primary_method, func.count())
                    .where(PaymentExtractionRecord.primary_method.isnot(None))
                    .group_by(PaymentExtractionRecord.primary_method)
                ).all()
            )

        auto_approved = by_outcome.get(Outcome.AUTO_APPROVED.value, 0)
        return {
            "processed": processed,
            "matched": matched,
            "auto_approved": auto_approved,
            "conditional_approved": by_outcome.get(Outcome.CONDITIONAL_APPROVED.value, 0),
            "requires_review": requires_review,
            "rejected": by_outcome.get(Outcome.REJECTED.value, 0),
            "failed": failed,
            "average_confidence": round(float(avg_conf), 3),
            "average_latency_ms": round(float(avg_latency), 1),
            "auto_approval_rate": round(auto_approved / processed, 3) if processed else 0.0,
            "by_platform": by_platform,
            "by_currency": by_currency,
            "by_method": by_method,
        }
