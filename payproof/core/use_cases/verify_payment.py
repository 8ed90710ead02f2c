"""
Use Case: Verify Payment — Implementação COMPLETA.

Orquestra um job já aceito:
    Quality Gate → (OCR ‖ Vision) → Fusão → Matching → Decisão → Claim → Eventos

Estados: received → extracting → fused → matching → decided.
Falhas de port viram degradação de confiança; falhas inesperadas
sobem para o dispatcher (retry → dead letter via `record_failure`).
Mede latência de cada etapa.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone

from payproof.core.entities.decision import (
    Decision,
    DecisionFlag,
    Outcome,
    PipelineRun,
    PipelineState,
    ReasonCode,
)
from payproof.core.entities.event import OUTCOME_EVENT, EventType, PaymentEvent
from payproof.core.entities.extraction import PaymentExtraction
from payproof.core.entities.job import JobStatus, ProcessingJob
from payproof.core.entities.match import MatchCandidate, PaymentMatch
from payproof.core.exceptions import ConcurrentClaimConflict, ProcessingTimeout
from payproof.core.interfaces.event_publisher import IEventEmitter
from payproof.core.interfaces.guarded_port import IGuardedPort
from payproof.core.interfaces.order_store import IOrderStore
from payproof.core.interfaces.quality_gate import IQualityGate
from payproof.core.interfaces.scoring import IDecisionTable, IFusionEngine, IMatchingEngine
from payproof.core.interfaces.verification_store import IVerificationStore

logger = logging.getLogger(__name__)


def build_task_hint(job: ProcessingJob) -> str:
    """Contexto do caller para o prompt do vision model."""
    ctx = job.submission_context
    if ctx is None:
        return ""
    parts = []
    if ctx.expected_amount is not None:
        parts.append(f"expected amount {ctx.expected_amount}{' ' + ctx.currency if ctx.currency else ''}")
    elif ctx.currency:
        parts.append(f"expected currency {ctx.currency}")
    if ctx.reference:
        parts.append(f"expected reference {ctx.reference}")
    if not parts:
        return ""
    return "The sender says this is a payment with " + ", ".join(parts) + ". Report what the image shows, not these values."


class VerifyPaymentUseCase:
    """
    Use Case: job → extração → match → decisão.

    Dependency Injection: todas as dependências vêm pelo construtor.
    `process` é o handler do dispatcher; `record_failure` é o failure
    handler (dead letter).
    """

    def __init__(
        self,
        recognition: IGuardedPort,
        structured_extraction: IGuardedPort,
        quality_gate: IQualityGate,
        fusion: IFusionEngine,
        matching: IMatchingEngine,
        decisions: IDecisionTable,
        store: IVerificationStore,
        orders: IOrderStore,
        events: IEventEmitter,
        candidate_lookup_timeout: float = 5.0,
        claim_timeout: float = 5.0,
        persistence_timeout: float = 10.0,
        candidate_window_days: int = 30,
    ):
        self._recognition = recognition
        self._extraction = structured_extraction
        self._quality = quality_gate
        self._fusion = fusion
        self._matching = matching
        self._decisions = decisions
        self._store = store
        self._orders = orders
        self._events = events
        self.candidate_lookup_timeout = candidate_lookup_timeout
        self.claim_timeout = claim_timeout
        self.persistence_timeout = persistence_timeout
        self.candidate_window_days = candidate_window_days

    async def process(self, job: ProcessingJob, attempt: int = 1) -> Decision:
        """
        Executa o pipeline completo para um job.

        1. Quality gate + OCR e vision em paralelo
        2. Fusão → PaymentExtraction (persistida)
        3. Busca de candidatos + matching
        4. Decisão, claim do candidato, eventos

        Idempotente: se a extração já tem decisão automatizada, devolve-a.

        Raises:
            ProcessingTimeout: persistência ou claim estouraram o deadline.
        """
        existing = await self._persist("load", self._store.initial_decision, job.extraction_id)
        if existing is not None:
            logger.info(f"Job {job.id} already decided ({existing.outcome.value}); skipping")
            await self._persist("job_status", self._store.update_job_status, job.id, JobStatus.DONE, attempt)
            return existing

        await self._persist("job_status", self._store.update_job_status, job.id, JobStatus.PROCESSING, attempt)
        run = PipelineRun(job.id)
        stage_latencies: dict[str, float] = {}
        t_start = time.perf_counter()

        if attempt == 1:
            await self._emit(job, EventType.PROCESSING_STARTED)

        # ── 1. Extração ────────────────────────────────────
        run.advance(PipelineState.EXTRACTING)
        t0 = time.perf_counter()
        legibility = await self._legibility(job)
        stage_latencies["quality_ms"] = round((time.perf_counter() - t0) * 1000, 2)

        t0 = time.perf_counter()
        ocr_result, vision_result = await asyncio.gather(
            self._recognition.run(job.image_bytes),
            self._extraction.run(job.image_bytes, build_task_hint(job)),
        )
        stage_latencies["extraction_ms"] = round((time.perf_counter() - t0) * 1000, 2)

        # ── 2. Fusão ───────────────────────────────────────
        run.advance(PipelineState.FUSED)
        t0 = time.perf_counter()
        extraction = self._fusion.fuse(job, ocr_result, vision_result, legibility, started_at=t_start)
        extraction = await self._persist("persistence", self._store.save_extraction, extraction, job)
        stage_latencies["fusion_ms"] = round((time.perf_counter() - t0) * 1000, 2)

        primary = extraction.primary
        if primary is not None:
            await self._emit(job, EventType.PAYMENT_DETECTED, confidence=extraction.overall_confidence)

        # ── 3. Matching ────────────────────────────────────
        run.advance(PipelineState.MATCHING)
        t0 = time.perf_counter()
        flags = list(extraction.flags)
        match: PaymentMatch | None = None
        if primary is not None:
            candidates = await self._lookup_candidates(job, extraction)
            if candidates is None:
                flags.append(DecisionFlag.CANDIDATE_LOOKUP_FAILED.value)
            else:
                match = self._matching.match(extraction, candidates)
                if not match.scored_candidates:
                    flags.append(DecisionFlag.NO_CANDIDATES.value)
                if match.ambiguous:
                    flags.append(DecisionFlag.AMBIGUOUS_MATCH.value)
                if match.contradiction:
                    flags.append(DecisionFlag.CONFIDENT_CONTRADICTION.value)
                elif match.amount_mismatch:
                    flags.append(DecisionFlag.AMOUNT_MISMATCH.value)
        stage_latencies["matching_ms"] = round((time.perf_counter() - t0) * 1000, 2)

        # ── 4. Decisão ─────────────────────────────────────
        t0 = time.perf_counter()
        best = match.best_match if match else None
        outcome, reasons = self._decisions.decide(
            extraction.overall_confidence,
            match_score=best.score if best else None,
            flags=flags,
            auto_approve_eligible=best.auto_approve_eligible if best else False,
        )
        reasons = list(reasons)

        if outcome.approves and best is not None:
            try:
                await asyncio.wait_for(
                    asyncio.to_thread(self._orders.claim, best.candidate_id, extraction.id),
                    timeout=self.claim_timeout,
                )
            except ConcurrentClaimConflict as e:
                logger.warning(f"Job {job.id}: {e}; downgrading to manual review")
                outcome = Outcome.MANUAL_REVIEW
                reasons.append(ReasonCode.CLAIM_CONFLICT.value)
            except asyncio.TimeoutError:
                raise ProcessingTimeout("claim", self.claim_timeout)

        run.advance(PipelineState.DECIDED)
        decision = Decision(
            id=str(uuid.uuid4()),
            extraction_id=extraction.id,
            job_id=job.id,
            outcome=outcome,
            confidence=extraction.overall_confidence,
            reason_codes=tuple(reasons),
            matched_candidate_id=best.candidate_id if best else None,
            match_score=best.score if best else None,
            scored_candidates=tuple(s.to_dict() for s in match.scored_candidates) if match else (),
        )
        decision = await self._persist("persistence", self._store.save_decision, decision)
        await self._emit_decision(job, decision)
        await self._persist("job_status", self._store.update_job_status, job.id, JobStatus.DONE, attempt)
        stage_latencies["decision_ms"] = round((time.perf_counter() - t0) * 1000, 2)

        total_ms = round((time.perf_counter() - t_start) * 1000, 2)
        logger.info(
            f"Job {job.id} decided {decision.outcome.value} "
            f"(confidence={decision.confidence:.3f}, candidate={decision.matched_candidate_id}, "
            f"reasons={list(decision.reason_codes)}) in {total_ms}ms stages={stage_latencies}"
        )
        return decision

    async def record_failure(self, job: ProcessingJob, reason: str) -> Decision:
        """
        Failure handler do dispatcher: o job esgotou as tentativas.

        Garante uma extração (mínima, se preciso) e uma decisão
        `manual_review` com razão `processing_failed`.
        """
        extraction = await asyncio.to_thread(self._store.get_extraction, job.extraction_id)
        if extraction is None:
            extraction = PaymentExtraction(
                id=job.extraction_id,
                job_id=job.id,
                ocr=None,
                vision=None,
                candidates=(),
                overall_confidence=0.0,
                requires_review=True,
                flags=(DecisionFlag.PROCESSING_FAILED.value,),
                ocr_status="unavailable",
                vision_status="unavailable",
            )
            extraction = await asyncio.to_thread(self._store.save_extraction, extraction, job)

        flags = list(extraction.flags)
        if DecisionFlag.PROCESSING_FAILED.value not in flags:
            flags.append(DecisionFlag.PROCESSING_FAILED.value)
        outcome, reasons = self._decisions.decide(extraction.overall_confidence, flags=flags)

        decision = Decision(
            id=str(uuid.uuid4()),
            extraction_id=extraction.id,
            job_id=job.id,
            outcome=outcome,
            confidence=extraction.overall_confidence,
            reason_codes=tuple(reasons),
            notes=reason[:500],
        )
        decision = await asyncio.to_thread(self._store.save_decision, decision)
        await self._emit_decision(job, decision)
        await asyncio.to_thread(self._store.update_job_status, job.id, JobStatus.DEAD_LETTER, None, reason)
        logger.error(f"Job {job.id} dead-lettered: {reason}; decision {decision.id} ({decision.outcome.value})")
        return decision

    # ─── Etapas ─────────────────────────────────────────

    async def _legibility(self, job: ProcessingJob) -> float:
        try:
            quality = await asyncio.to_thread(self._quality.evaluate, job.image_bytes)
        except Exception as e:
            logger.warning(f"Job {job.id}: quality gate failed ({e}); legibility=0")
            return 0.0
        if not quality.quality_ok:
            logger.info(f"Job {job.id}: low legibility {quality.quality_score:.3f} {list(quality.reasons)}")
        return quality.quality_score

    async def _lookup_candidates(
        self, job: ProcessingJob, extraction: PaymentExtraction
    ) -> list[MatchCandidate] | None:
        """Candidatos do order store; None quando a busca falhou ou estourou o deadline."""
        primary = extraction.primary
        ctx = job.submission_context
        now = datetime.now(timezone.utc)
        try:
            if ctx is not None and ctx.candidate_id:
                candidate = await asyncio.wait_for(
                    asyncio.to_thread(self._orders.get, ctx.candidate_id),
                    timeout=self.candidate_lookup_timeout,
                )
                return [candidate] if candidate is not None else []
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self._orders.find_pending,
                    primary.currency,
                    now - timedelta(days=self.candidate_window_days),
                    now,
                    primary.reference,
                    primary.amount,
                ),
                timeout=self.candidate_lookup_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Job {job.id}: candidate lookup timed out after {self.candidate_lookup_timeout}s")
        except Exception as e:
            logger.warning(f"Job {job.id}: candidate lookup failed: {type(e).__name__}: {e}")
        return None

    async def _persist(self, stage: str, fn, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.persistence_timeout)
        except asyncio.TimeoutError:
            raise ProcessingTimeout(stage, self.persistence_timeout)

    # ─── Eventos ────────────────────────────────────────

    async def _emit(self, job: ProcessingJob, event_type: EventType, **kwargs) -> None:
        event = PaymentEvent(
            type=event_type,
            extraction_id=job.extraction_id,
            user_id=job.submitted_by,
            platforms=(job.source_platform.value,),
            priority=job.priority.value,
            **kwargs,
        )
        await asyncio.to_thread(self._events.emit, event)

    async def _emit_decision(self, job: ProcessingJob, decision: Decision) -> None:
        await self._emit(
            job,
            OUTCOME_EVENT[decision.outcome],
            candidate_id=decision.matched_candidate_id,
            outcome=decision.outcome.value,
            confidence=decision.confidence,
            decision_id=decision.id,
        )
