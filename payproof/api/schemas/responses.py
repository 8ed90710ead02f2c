"""
Pydantic schemas — Request/Response models para a API.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from payproof.core.entities.decision import Decision
from payproof.core.entities.extraction import PaymentExtraction


class SubmissionResponse(BaseModel):
    job_id: str
    extraction_id: str
    duplicate: bool
    status: str


class BatchItemResponse(BaseModel):
    index: int
    filename: str
    accepted: bool
    job_id: str | None = None
    extraction_id: str | None = None
    duplicate: bool = False
    status: str | None = None
    error: str | None = None
    detail: str | None = None


class BatchSummary(BaseModel):
    total: int
    accepted: int
    duplicates: int
    failed: int


class BatchSubmissionResponse(BaseModel):
    results: list[BatchItemResponse]
    summary: BatchSummary


class JobStatusResponse(BaseModel):
    job_id: str
    extraction_id: str
    status: str
    attempts: int = 0
    last_error: str | None = None
    source_platform: str
    submitted_by: str | None = None
    priority: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ReprocessBody(BaseModel):
    limit: int = Field(10, ge=1)
    submitted_by: str | None = None


class ReprocessedJob(BaseModel):
    job_id: str
    extraction_id: str
    previous_extraction_id: str


class ReprocessResponse(BaseModel):
    count: int
    jobs: list[ReprocessedJob]


class CandidateResponse(BaseModel):
    amount: str
    currency: str
    method: str
    sender: str | None = None
    recipient: str | None = None
    reference: str | None = None
    timestamp: str | None = None
    confidence: float
    provenance: str


class DecisionResponse(BaseModel):
    id: str
    outcome: str
    confidence: float
    reason_codes: list[str]
    matched_candidate_id: str | None = None
    match_score: float | None = None
    decided_by: str
    automated: bool
    supersedes_id: str | None = None
    corrections: dict | None = None
    notes: str | None = None
    scored_candidates: list[dict] = []
    decided_at: datetime


class ExtractionResponse(BaseModel):
    extraction_id: str
    job_id: str
    overall_confidence: float
    requires_review: bool
    flags: list[str]
    legibility: float
    ocr_status: str
    vision_status: str
    processing_time_ms: float
    candidates: list[CandidateResponse]
    ocr_text: str | None = None
    vision: dict | None = None
    created_at: datetime
    decision: DecisionResponse | None = None
    history: list[DecisionResponse] = []


class ReviewBody(BaseModel):
    action: str                                  # approve | reject | modify
    approved_candidate_id: str | None = None
    corrections: dict | None = None
    notes: str | None = None
    reviewer_id: str | None = None


class StatsResponse(BaseModel):
    processed: int
    matched: int
    auto_approved: int
    conditional_approved: int
    requires_review: int
    rejected: int
    failed: int
    average_confidence: float
    average_latency_ms: float
    auto_approval_rate: float
    by_platform: dict[str, int] = {}
    by_currency: dict[str, int] = {}
    by_method: dict[str, int] = {}


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    queue_depths: dict[str, int] = {}
    in_flight: int = 0
    accepting_jobs: bool = True
    adapters: dict[str, bool] = {}


# ── Conversões entidade → schema ──

def decision_response(decision: Decision) -> DecisionResponse:
    return DecisionResponse(
        id=decision.id,
        outcome=decision.outcome.value,
        confidence=decision.confidence,
        reason_codes=list(decision.reason_codes),
        matched_candidate_id=decision.matched_candidate_id,
        match_score=decision.match_score,
        decided_by=decision.decided_by,
        automated=decision.automated,
        supersedes_id=decision.supersedes_id,
        corrections=decision.corrections,
        notes=decision.notes,
        scored_candidates=list(decision.scored_candidates),
        decided_at=decision.decided_at,
    )


def extraction_response(extraction: PaymentExtraction, history: list[Decision]) -> ExtractionResponse:
    return ExtractionResponse(
        extraction_id=extraction.id,
        job_id=extraction.job_id,
        overall_confidence=extraction.overall_confidence,
        requires_review=extraction.requires_review,
        flags=list(extraction.flags),
        legibility=extraction.legibility,
        ocr_status=extraction.ocr_status,
        vision_status=extraction.vision_status,
        processing_time_ms=extraction.processing_time_ms,
        candidates=[CandidateResponse(**c.to_dict()) for c in extraction.candidates],
        ocr_text=extraction.ocr.text if extraction.ocr else None,
        vision=extraction.vision.to_dict() if extraction.vision else None,
        created_at=extraction.created_at,
        decision=decision_response(history[-1]) if history else None,
        history=[decision_response(d) for d in history],
    )
