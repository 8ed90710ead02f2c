"""
Entity: Decision

Desfecho de uma extração. Terminal e append-only: uma revisão
humana cria uma nova Decision ligada à mesma extração, preservando
a trilha de auditoria.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Outcome(str, Enum):
    REJECTED = "rejected"
    MANUAL_REVIEW = "manual_review"
    CONDITIONAL_APPROVED = "conditional_approved"
    AUTO_APPROVED = "auto_approved"
    APPROVED = "approved"             # só decisões de revisor

    @property
    def rank(self) -> int:
        return _OUTCOME_RANK[self]

    @property
    def approves(self) -> bool:
        return self in (Outcome.AUTO_APPROVED, Outcome.CONDITIONAL_APPROVED, Outcome.APPROVED)


_OUTCOME_RANK = {
    Outcome.REJECTED: 0,
    Outcome.MANUAL_REVIEW: 1,
    Outcome.CONDITIONAL_APPROVED: 2,
    Outcome.AUTO_APPROVED: 3,
    Outcome.APPROVED: 3,
}


class ReasonCode(str, Enum):
    HIGH_CONFIDENCE_MATCH = "high_confidence_match"
    CONDITIONAL_MATCH = "conditional_match"
    LOW_CONFIDENCE = "low_confidence"
    BELOW_FLOOR = "below_confidence_floor"
    NO_CONFIDENT_MATCH = "no_confident_match"
    NOT_AUTO_APPROVE_ELIGIBLE = "not_auto_approve_eligible"
    NO_DATA_EXTRACTED = "no_data_extracted"
    DEGRADED_EXTRACTION = "degraded_extraction"
    EXTRACTION_CONTRADICTION = "extraction_contradiction"
    UNCORROBORATED_AMOUNT = "uncorroborated_amount"
    AMBIGUOUS_MATCH = "ambiguous_match"
    NO_CANDIDATES = "no_candidates"
    CANDIDATE_LOOKUP_FAILED = "candidate_lookup_failed"
    AMOUNT_MISMATCH = "amount_mismatch"
    CLAIM_CONFLICT = "claim_conflict"
    PROCESSING_FAILED = "processing_failed"
    REVIEWER_APPROVED = "reviewer_approved"
    REVIEWER_REJECTED = "reviewer_rejected"
    REVIEWER_MODIFIED = "reviewer_modified"


class DecisionFlag(str, Enum):
    """Flags levantadas depois da fusão (matching, lookup, falha do job)."""
    CONFIDENT_CONTRADICTION = "confident_contradiction"
    AMOUNT_MISMATCH = "amount_mismatch"
    AMBIGUOUS_MATCH = "ambiguous_match"
    NO_CANDIDATES = "no_candidates"
    CANDIDATE_LOOKUP_FAILED = "candidate_lookup_failed"
    PROCESSING_FAILED = "processing_failed"


SYSTEM_DECIDER = "system"


@dataclass(frozen=True)
class Decision:
    id: str
    extraction_id: str
    job_id: str
    outcome: Outcome
    confidence: float
    reason_codes: tuple[str, ...] = ()
    matched_candidate_id: str | None = None
    match_score: float | None = None
    decided_by: str = SYSTEM_DECIDER
    automated: bool = True
    supersedes_id: str | None = None
    corrections: dict | None = None
    notes: str | None = None
    scored_candidates: tuple[dict, ...] = ()
    decided_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PipelineState(str, Enum):
    RECEIVED = "received"
    EXTRACTING = "extracting"
    FUSED = "fused"
    MATCHING = "matching"
    DECIDED = "decided"


_STATE_ORDER = list(PipelineState)


class PipelineRun:
    """
    Máquina de estados de um job: received → extracting → fused → matching → decided.

    Só avança um passo por vez; qualquer salto ou regressão é bug
    (uma etapa rodando sobre dados parciais).
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        self.state = PipelineState.RECEIVED
        self.history: list[PipelineState] = [PipelineState.RECEIVED]

    def advance(self, to: PipelineState) -> None:
        current = _STATE_ORDER.index(self.state)
        target = _STATE_ORDER.index(to)
        if target != current + 1:
            raise RuntimeError(
                f"job {self.job_id}: illegal transition {self.state.value} -> {to.value}"
            )
        self.state = to
        self.history.append(to)

    @property
    def decided(self) -> bool:
        return self.state is PipelineState.DECIDED
