"""
Tests for ReviewDecisionUseCase — decisões de revisor humano.

Covers:
  - approve / reject / modify e o outcome de cada um
  - Claim do candidato aprovado (e conflito)
  - Validação das correções
  - Extração/candidato inexistentes → not_found
  - Decisão desatualizada → StaleDecision, sem claim
  - Claim perdido depois da aprovação → manual_review de volta
"""

from decimal import Decimal

import pytest

from conftest import make_job
from payproof.core.entities.decision import Decision, Outcome
from payproof.core.entities.extraction import PaymentCandidate, PaymentExtraction, Provenance
from payproof.core.exceptions import ConcurrentClaimConflict, InvalidReviewRequest, StaleDecision
from payproof.core.use_cases.review_decision import ReviewAction, ReviewRequest


def _decided(c, outcome: Outcome = Outcome.MANUAL_REVIEW, matched: str | None = None,
             extraction_id: str = "ext-1") -> Decision:
    job = make_job(f"job-{extraction_id}", extraction_id)
    c.store.save_job(job)
    c.store.save_extraction(PaymentExtraction(
        id=extraction_id,
        job_id=job.id,
        ocr=None,
        vision=None,
        candidates=(PaymentCandidate(
            amount=Decimal("1200.00"), currency="PHP", method="gcash",
            reference="BP2024-001", confidence=0.8, provenance=Provenance.COMBINED,
        ),),
        overall_confidence=0.8,
        requires_review=True,
    ), job)
    return c.store.save_decision(Decision(
        id=f"dec-{extraction_id}",
        extraction_id=extraction_id,
        job_id=job.id,
        outcome=outcome,
        confidence=0.8,
        matched_candidate_id=matched,
        match_score=0.8 if matched else None,
    ))


def _review(c, action: ReviewAction, extraction_id: str = "ext-1", **kwargs) -> Decision:
    return c.review.execute(ReviewRequest(extraction_id=extraction_id, action=action, **kwargs))


# ═══════════════════════════════════════════════════════════════
# Ações
# ═══════════════════════════════════════════════════════════════


def test_approve_uses_initial_matched_candidate(make_container, seed_order):
    seed_order("order-1")
    c = make_container()
    initial = _decided(c, matched="order-1")

    decision = _review(c, ReviewAction.APPROVE, reviewer_id="ops-1", notes="checked bank statement")

    assert decision.outcome == Outcome.APPROVED
    assert decision.matched_candidate_id == "order-1"
    assert decision.supersedes_id == initial.id
    assert decision.reason_codes == ("reviewer_approved",)
    assert decision.notes == "checked bank statement"
    assert c.orders.get("order-1").status == "paid"

    events = c.emitter.list_events("ext-1")
    assert events[-1]["event_type"] == "payment_matched"
    assert events[-1]["payload"]["decision_id"] == decision.id
    assert events[-1]["payload"]["platforms"] == ["whatsapp"]


def test_approve_explicit_candidate(make_container, seed_order):
    seed_order("order-2", reference="BP2024-002")
    c = make_container()
    _decided(c)

    decision = _review(c, ReviewAction.APPROVE, approved_candidate_id="order-2")
    assert decision.matched_candidate_id == "order-2"
    assert decision.decided_by == "reviewer"


def test_approve_without_any_candidate_rejected(make_container):
    c = make_container()
    _decided(c)
    with pytest.raises(InvalidReviewRequest) as exc:
        _review(c, ReviewAction.APPROVE)
    assert not exc.value.not_found


def test_approve_unknown_candidate_not_found(make_container):
    c = make_container()
    _decided(c)
    with pytest.raises(InvalidReviewRequest) as exc:
        _review(c, ReviewAction.APPROVE, approved_candidate_id="nope")
    assert exc.value.not_found
    assert len(c.store.list_decisions("ext-1")) == 1


def test_reject(make_container):
    c = make_container()
    initial = _decided(c, outcome=Outcome.CONDITIONAL_APPROVED)

    decision = _review(c, ReviewAction.REJECT, notes="fake screenshot")

    assert decision.outcome == Outcome.REJECTED
    assert decision.matched_candidate_id is None
    # a decisão automatizada continua intacta
    assert c.store.initial_decision("ext-1").outcome == initial.outcome
    assert c.store.latest_decision("ext-1").id == decision.id


def test_reject_with_candidate_invalid(make_container):
    c = make_container()
    _decided(c)
    with pytest.raises(InvalidReviewRequest):
        _review(c, ReviewAction.REJECT, approved_candidate_id="order-1")


def test_modify_without_candidate_stays_in_review(make_container):
    c = make_container()
    _decided(c)

    decision = _review(c, ReviewAction.MODIFY, corrections={"amount": "1,250.5", "currency": "php"})

    assert decision.outcome == Outcome.MANUAL_REVIEW
    assert decision.corrections == {"amount": "1250.50", "currency": "PHP"}
    assert decision.reason_codes == ("reviewer_modified",)
    # extração nunca é alterada
    assert c.store.get_extraction("ext-1").primary.amount == Decimal("1200.00")


def test_modify_with_candidate_approves(make_container, seed_order):
    seed_order("order-1")
    c = make_container()
    _decided(c)

    decision = _review(
        c, ReviewAction.MODIFY, approved_candidate_id="order-1", corrections={"reference": "BP2024-001"}
    )
    assert decision.outcome == Outcome.APPROVED
    assert c.orders.get("order-1").status == "paid"


@pytest.mark.parametrize("corrections", [
    None,
    {},
    {"balance": "10"},
    {"amount": ""},
    {"amount": "abc"},
    {"amount": "-5"},
])
def test_invalid_corrections(make_container, corrections):
    c = make_container()
    _decided(c)
    with pytest.raises(InvalidReviewRequest):
        _review(c, ReviewAction.MODIFY, corrections=corrections)
    assert len(c.store.list_decisions("ext-1")) == 1


# ═══════════════════════════════════════════════════════════════
# Erros
# ═══════════════════════════════════════════════════════════════


def test_unknown_extraction_not_found(make_container):
    c = make_container()
    with pytest.raises(InvalidReviewRequest) as exc:
        _review(c, ReviewAction.REJECT, extraction_id="missing")
    assert exc.value.not_found


def test_extraction_without_decision(make_container):
    c = make_container()
    job = make_job("job-x", "ext-x")
    c.store.save_job(job)
    c.store.save_extraction(PaymentExtraction(
        id="ext-x", job_id=job.id, ocr=None, vision=None, candidates=(),
        overall_confidence=0.0, requires_review=True,
    ), job)

    with pytest.raises(InvalidReviewRequest) as exc:
        _review(c, ReviewAction.REJECT, extraction_id="ext-x")
    assert not exc.value.not_found


def test_candidate_already_claimed_conflicts(make_container, seed_order):
    seed_order("order-1")
    c = make_container()
    _decided(c, matched="order-1", extraction_id="ext-a")
    _decided(c, matched="order-1", extraction_id="ext-b")

    _review(c, ReviewAction.APPROVE, extraction_id="ext-a")
    with pytest.raises(ConcurrentClaimConflict):
        _review(c, ReviewAction.APPROVE, extraction_id="ext-b")

    assert len(c.store.list_decisions("ext-b")) == 1


def test_stale_review_rejected(make_container, monkeypatch):
    c = make_container()
    initial = _decided(c)
    _review(c, ReviewAction.REJECT)

    # revisor trabalhando sobre a versão antiga do histórico
    monkeypatch.setattr(c.store, "latest_decision", lambda extraction_id: initial)
    with pytest.raises(StaleDecision):
        _review(c, ReviewAction.MODIFY, corrections={"method": "maya"})

    assert len(c.store.list_decisions("ext-1")) == 2


def test_stale_approval_leaves_candidate_pending(make_container, seed_order, monkeypatch):
    seed_order("order-1")
    c = make_container()
    initial = _decided(c, matched="order-1")
    rejected = _review(c, ReviewAction.REJECT, reviewer_id="ops-2")

    monkeypatch.setattr(c.store, "latest_decision", lambda extraction_id: initial)
    with pytest.raises(StaleDecision):
        _review(c, ReviewAction.APPROVE, reviewer_id="ops-1")

    assert c.orders.get("order-1").status == "pending_payment"
    history = c.store.list_decisions("ext-1")
    assert [d.id for d in history] == [initial.id, rejected.id]
    assert c.emitter.list_events("ext-1")[-1]["event_type"] == "payment_rejected"


def test_claim_lost_after_approval_recorded(make_container, seed_order, monkeypatch):
    seed_order("order-1")
    c = make_container()
    initial = _decided(c, matched="order-1")

    def lost_race(candidate_id, extraction_id):
        raise ConcurrentClaimConflict(candidate_id, "status is paid")

    monkeypatch.setattr(c.orders, "claim", lost_race)
    with pytest.raises(ConcurrentClaimConflict):
        _review(c, ReviewAction.APPROVE, reviewer_id="ops-1")

    history = c.store.list_decisions("ext-1")
    assert [d.outcome for d in history] == [Outcome.MANUAL_REVIEW, Outcome.APPROVED, Outcome.MANUAL_REVIEW]
    fallback = history[-1]
    assert fallback.supersedes_id == history[1].id
    assert history[1].supersedes_id == initial.id
    assert fallback.reason_codes == ("reviewer_approved", "claim_conflict")
    assert fallback.matched_candidate_id is None
    assert c.store.latest_decision("ext-1").id == fallback.id
    # nenhum evento de aprovação sem o claim
    assert [e["event_type"] for e in c.emitter.list_events("ext-1")] == ["review_required"]
