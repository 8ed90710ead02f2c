"""
Tests for the Matching Engine.

Covers:
  - Match exato elegível para auto-aprovação
  - Empate no topo → ambíguo
  - Referência parcial penaliza
  - Método desconhecido / não aceito
  - Piso de score, filtro de moeda/status/janela
  - Valor divergente nunca é best match; contradição com valor corroborado
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from payproof.core.entities.extraction import PaymentCandidate, PaymentExtraction, Provenance
from payproof.core.entities.match import MatchCandidate
from payproof.infrastructure.rules.matching_engine import (
    AMOUNT_MISMATCH,
    MatchingConfig,
    MatchingEngine,
    reference_partially_matches,
)

NOW = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)


def _extraction(
    amount: str = "1200.00",
    currency: str = "PHP",
    method: str = "gcash",
    reference: str | None = "BP2024-001",
    timestamp: datetime | None = NOW - timedelta(hours=1),
    confidence: float = 0.95,
    provenance: Provenance = Provenance.COMBINED,
    legibility: float = 1.0,
) -> PaymentExtraction:
    primary = PaymentCandidate(
        amount=Decimal(amount),
        currency=currency,
        method=method,
        sender="Juan Dela Cruz",
        reference=reference,
        timestamp=timestamp,
        confidence=confidence,
        provenance=provenance,
    )
    return PaymentExtraction(
        id="ext-1",
        job_id="job-1",
        ocr=None,
        vision=None,
        candidates=(primary,),
        overall_confidence=confidence,
        requires_review=False,
        legibility=legibility,
    )


def _candidate(
    candidate_id: str = "order-1",
    reference: str = "BP2024-001",
    amount: str = "1200.00",
    currency: str = "PHP",
    methods: tuple[str, ...] = ("gcash",),
    hours_ago: float = 2,
    status: str = "pending_payment",
) -> MatchCandidate:
    return MatchCandidate(
        id=candidate_id,
        expected_reference=reference,
        expected_amount=Decimal(amount),
        currency=currency,
        buyer_identity="Juan Dela Cruz",
        status=status,
        created_at=NOW - timedelta(hours=hours_ago),
        payment_methods=methods,
    )


def _match(extraction, candidates, config: MatchingConfig | None = None):
    return MatchingEngine(config).match(extraction, candidates, now=NOW)


# ═══════════════════════════════════════════════════════════════
# Scoring
# ═══════════════════════════════════════════════════════════════


def test_exact_match_is_auto_approve_eligible():
    match = _match(_extraction(), [_candidate()])

    best = match.best_match
    assert best.candidate_id == "order-1"
    assert best.score == 1.0
    assert best.auto_approve_eligible
    assert best.amount_matches and best.reference_matches
    assert "sender_matches_buyer" in best.reasons
    assert not match.review_required
    assert not match.ambiguous
    assert match.contradiction is None


def test_reference_is_case_and_space_insensitive():
    match = _match(_extraction(reference="bp 2024-001"), [_candidate()])
    assert match.best_match.reference_matches


def test_amount_within_tolerance():
    match = _match(_extraction(amount="1200.01"), [_candidate()])
    assert match.best_match.amount_matches


def test_partial_reference_is_penalized():
    match = _match(_extraction(reference="BP2024-00"), [_candidate()])
    scored = match.scored_candidates[0]
    assert "reference_partial" in scored.reasons
    # 0.30 + 0.20 + 0.15 + 0.10 - 0.25
    assert scored.score == pytest.approx(0.50)
    assert match.best_match is None


def test_reference_partially_matches_rules():
    assert reference_partially_matches("BP2024-00", "BP2024-001")
    assert reference_partially_matches("BP2O24-001", "BP2024-001")
    assert not reference_partially_matches("ZZ", "BP2024-001")
    assert not reference_partially_matches("998877", "BP2024-001")


def test_unknown_method_gets_partial_credit():
    match = _match(_extraction(method="unknown"), [_candidate()])
    scored = match.scored_candidates[0]
    assert "method_unknown" in scored.reasons
    assert scored.score == pytest.approx(0.30 + 0.25 + 0.20 * 0.3 + 0.15 + 0.10)


def test_method_not_accepted_by_order():
    match = _match(_extraction(method="maya"), [_candidate(methods=("gcash",))])
    assert "method_not_accepted" in match.scored_candidates[0].reasons
    assert match.scored_candidates[0].score == pytest.approx(0.80)
    assert not match.best_match.auto_approve_eligible


def test_method_plausible_for_region_when_order_lists_none():
    match = _match(_extraction(), [_candidate(methods=())])
    assert "method_plausible_for_region" in match.scored_candidates[0].reasons


def test_timestamp_before_order_creation_out_of_range():
    extraction = _extraction(timestamp=NOW - timedelta(days=2))
    scored = _match(extraction, [_candidate()]).scored_candidates[0]
    assert "timestamp_out_of_range" in scored.reasons
    assert scored.score == pytest.approx(0.85)


def test_missing_timestamp_half_credit():
    scored = _match(_extraction(timestamp=None), [_candidate()]).scored_candidates[0]
    assert "timestamp_missing" in scored.reasons
    assert scored.score == pytest.approx(0.925)
    assert scored.auto_approve_eligible


def test_low_legibility_blocks_auto_approval():
    scored = _match(_extraction(legibility=0.0, timestamp=None), [_candidate()]).scored_candidates[0]
    assert scored.score == pytest.approx(0.825)
    assert not scored.auto_approve_eligible


# ═══════════════════════════════════════════════════════════════
# Ranking
# ═══════════════════════════════════════════════════════════════


def test_tie_at_top_is_ambiguous():
    candidates = [
        _candidate("order-a", reference="OTHER-111111"),
        _candidate("order-b", reference="OTHER-222222"),
    ]
    match = _match(_extraction(reference=None), candidates)
    assert match.ambiguous
    assert match.best_match is None
    assert match.review_required
    assert [s.candidate_id for s in match.scored_candidates] == ["order-a", "order-b"]


def test_best_candidate_ranked_first():
    candidates = [
        _candidate("order-wrong", reference="BP2024-999", amount="800.00"),
        _candidate("order-right"),
    ]
    match = _match(_extraction(), candidates)
    assert match.best_match.candidate_id == "order-right"
    assert match.scored_candidates[0].score > match.scored_candidates[1].score


def test_below_floor_no_best_match():
    match = _match(_extraction(), [_candidate(reference="XYZ-998877", amount="5.00", methods=("maya",))])
    assert match.scored_candidates[0].score < 0.60
    assert match.best_match is None
    assert match.unmatched


def test_ineligible_candidates_filtered():
    candidates = [
        _candidate("myr", currency="MYR"),
        _candidate("paid", status="paid"),
        _candidate("old", hours_ago=24 * 45),
    ]
    match = _match(_extraction(), candidates)
    assert match.scored_candidates == ()
    assert match.best_match is None


def test_extraction_without_primary():
    extraction = PaymentExtraction(
        id="ext-empty", job_id="job-1", ocr=None, vision=None, candidates=(),
        overall_confidence=0.0, requires_review=True,
    )
    match = _match(extraction, [_candidate()])
    assert match.scored_candidates == ()
    assert match.review_required


# ═══════════════════════════════════════════════════════════════
# Contradição
# ═══════════════════════════════════════════════════════════════


def test_confident_amount_contradiction():
    match = _match(_extraction(amount="750.00"), [_candidate(amount="800.00")])
    assert match.contradiction == AMOUNT_MISMATCH
    assert match.amount_mismatch
    assert match.best_match is None
    assert match.review_required
    assert "amount_mismatch" in match.scored_candidates[0].reasons


def test_mismatched_amount_never_becomes_best_match():
    match = _match(_extraction(amount="750.00", provenance=Provenance.VISION), [_candidate(amount="800.00")])

    # referência + método + timestamp + legibilidade passam do piso
    assert match.scored_candidates[0].score == pytest.approx(0.70)
    assert match.best_match is None
    assert match.amount_mismatch
    assert match.contradiction is None
    assert match.review_required


@pytest.mark.parametrize("confidence", [0.3, 0.6, 0.85, 1.0])
def test_corroborated_mismatch_is_a_contradiction_at_any_confidence(confidence):
    match = _match(_extraction(amount="750.00", confidence=confidence), [_candidate(amount="800.00")])
    assert match.contradiction == AMOUNT_MISMATCH


def test_reference_only_mismatch_does_not_block_exact_candidate():
    candidates = [
        _candidate("order-same-ref", amount="800.00"),
        _candidate("order-same-amount", reference="OTHER-777777"),
    ]
    match = _match(_extraction(provenance=Provenance.VISION), candidates)

    assert match.best_match.candidate_id == "order-same-amount"
    assert not match.best_match.auto_approve_eligible
    assert match.amount_mismatch
    assert match.review_required
