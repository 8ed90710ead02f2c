"""
Use Case: Review Decision

Registra a decisão de um revisor humano sobre uma extração já
decidida. Nunca altera a decisão automatizada nem a extração: cria
uma nova Decision que substitui (supersedes) a mais recente.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from enum import Enum

from payproof.core.entities.decision import Decision, Outcome, ReasonCode
from payproof.core.entities.event import OUTCOME_EVENT, PaymentEvent
from payproof.core.entities.extraction import PaymentExtraction
from payproof.core.entities.match import PENDING_STATUS
from payproof.core.exceptions import ConcurrentClaimConflict, InvalidReviewRequest
from payproof.core.interfaces.event_publisher import IEventEmitter
from payproof.core.interfaces.order_store import IOrderStore
from payproof.core.interfaces.verification_store import IVerificationStore

logger = logging.getLogger(__name__)

REVIEWER_DEFAULT = "reviewer"
CORRECTABLE_FIELDS = frozenset({"amount", "currency", "method", "reference", "sender", "timestamp"})


class ReviewAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    MODIFY = "modify"


@dataclass
class ReviewRequest:
    """Input da revisão."""
    extraction_id: str
    action: ReviewAction
    approved_candidate_id: str | None = None
    corrections: dict | None = None
    notes: str | None = None
    reviewer_id: str | None = None


def _clean_corrections(corrections: dict) -> dict:
    unknown = sorted(set(corrections) - CORRECTABLE_FIELDS)
    if unknown:
        raise InvalidReviewRequest(
            f"cannot correct fields {unknown}; allowed: {sorted(CORRECTABLE_FIELDS)}"
        )
    cleaned = {}
    for key, value in corrections.items():
        if value is None or str(value).strip() == "":
            raise InvalidReviewRequest(f"correction for '{key}' is empty")
        cleaned[key] = str(value).strip()

    if "amount" in cleaned:
        try:
            amount = Decimal(cleaned["amount"].replace(",", ""))
        except InvalidOperation:
            raise InvalidReviewRequest(f"corrected amount '{cleaned['amount']}' is not a number")
        if amount <= 0:
            raise InvalidReviewRequest("corrected amount must be positive")
        cleaned["amount"] = str(amount.quantize(Decimal("0.01")))
    if "currency" in cleaned:
        cleaned["currency"] = cleaned["currency"].upper()
    return cleaned


class ReviewDecisionUseCase:
    """
    Use Case: revisão humana → nova Decision ligada à mesma extração.

    approve → approved (reivindica o candidato)
    reject  → rejected
    modify  → approved com candidato; manual_review sem
    """

    def __init__(self, store: IVerificationStore, orders: IOrderStore, events: IEventEmitter):
        self._store = store
        self._orders = orders
        self._events = events

    def execute(self, request: ReviewRequest) -> Decision:
        """
        Valida e registra a revisão.

        Raises:
            InvalidReviewRequest: extração inexistente/sem decisão, ação inconsistente
                (not_found=True quando a extração ou o candidato não existem).
            StaleDecision: outra revisão foi registrada antes desta.
            ConcurrentClaimConflict: o candidato já foi pago por outra extração.
                Se o claim perder a corrida depois da decisão gravada, uma
                manual_review com `claim_conflict` substitui a aprovação.
        """
        extraction = self._store.get_extraction(request.extraction_id)
        if extraction is None:
            raise InvalidReviewRequest(f"extraction {request.extraction_id} not found", not_found=True)

        initial = self._store.initial_decision(extraction.id)
        latest = self._store.latest_decision(extraction.id)
        if initial is None or latest is None:
            raise InvalidReviewRequest(f"extraction {extraction.id} has no decision yet")

        corrections = None
        candidate_id = request.approved_candidate_id

        # --- 1. Validação por ação ---
        if request.action == ReviewAction.APPROVE:
            candidate_id = candidate_id or initial.matched_candidate_id
            if not candidate_id:
                raise InvalidReviewRequest("approve requires a candidate: none given and none was matched")
            outcome, reason = Outcome.APPROVED, ReasonCode.REVIEWER_APPROVED
        elif request.action == ReviewAction.REJECT:
            if candidate_id:
                raise InvalidReviewRequest("reject does not take an approved_candidate_id")
            outcome, reason = Outcome.REJECTED, ReasonCode.REVIEWER_REJECTED
        elif request.action == ReviewAction.MODIFY:
            if not request.corrections:
                raise InvalidReviewRequest("modify requires non-empty corrections")
            corrections = _clean_corrections(request.corrections)
            outcome = Outcome.APPROVED if candidate_id else Outcome.MANUAL_REVIEW
            reason = ReasonCode.REVIEWER_MODIFIED
        else:
            raise InvalidReviewRequest(f"unknown action {request.action}")

        # --- 2. Candidato ---
        if candidate_id:
            candidate = self._orders.get(candidate_id)
            if candidate is None:
                raise InvalidReviewRequest(f"candidate {candidate_id} not found", not_found=True)
            if candidate.status != PENDING_STATUS and candidate.claimed_by != extraction.id:
                raise ConcurrentClaimConflict(candidate_id, f"status is {candidate.status}")

        # --- 3. Nova decisão (StaleDecision antes de qualquer claim) ---
        decision = Decision(
            id=str(uuid.uuid4()),
            extraction_id=extraction.id,
            job_id=extraction.job_id,
            outcome=outcome,
            confidence=extraction.overall_confidence,
            reason_codes=(reason.value,),
            matched_candidate_id=candidate_id,
            decided_by=request.reviewer_id or REVIEWER_DEFAULT,
            automated=False,
            supersedes_id=latest.id,
            corrections=corrections,
            notes=request.notes,
        )
        decision = self._store.save_decision(decision)

        # --- 4. Claim ---
        if candidate_id:
            try:
                self._orders.claim(candidate_id, extraction.id)
            except ConcurrentClaimConflict as e:
                fallback = self._store.save_decision(replace(
                    decision,
                    id=str(uuid.uuid4()),
                    outcome=Outcome.MANUAL_REVIEW,
                    reason_codes=(reason.value, ReasonCode.CLAIM_CONFLICT.value),
                    matched_candidate_id=None,
                    supersedes_id=decision.id,
                    notes=str(e),
                ))
                logger.warning(f"Review of extraction {extraction.id} lost the claim: {e}; recorded {fallback.id}")
                self._emit(extraction, fallback)
                raise

        # --- 5. Evento ---
        self._emit(extraction, decision)

        logger.info(
            f"Review of extraction {extraction.id} by {decision.decided_by}: "
            f"{request.action.value} → {decision.outcome.value} (supersedes {latest.id})"
        )
        return decision

    def _emit(self, extraction: PaymentExtraction, decision: Decision) -> None:
        job = self._store.get_job(extraction.job_id) or {}
        self._events.emit(PaymentEvent(
            type=OUTCOME_EVENT[decision.outcome],
            extraction_id=extraction.id,
            user_id=job.get("submitted_by") or "",
            platforms=(job["source_platform"],) if job.get("source_platform") else (),
            priority=job.get("priority") or "normal",
            candidate_id=decision.matched_candidate_id,
            outcome=decision.outcome.value,
            confidence=decision.confidence,
            decision_id=decision.id,
        ))
