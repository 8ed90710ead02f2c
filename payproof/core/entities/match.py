"""
Entity: Match

Transações pendentes (lidas do order store externo) e o resultado
do ranqueamento contra uma extração. PaymentMatch é derivado —
recalculado se os candidatos mudarem, nunca fonte de verdade.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

PENDING_STATUS = "pending_payment"


@dataclass(frozen=True)
class MatchCandidate:
    """Transação pendente aguardando pagamento."""
    id: str
    expected_reference: str
    expected_amount: Decimal
    currency: str
    buyer_identity: str = ""
    status: str = PENDING_STATUS
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    payment_methods: tuple[str, ...] = ()
    claimed_by: str | None = None          # extração que pagou o pedido


@dataclass(frozen=True)
class ScoredCandidate:
    candidate_id: str
    score: float
    reasons: tuple[str, ...]
    auto_approve_eligible: bool
    amount_matches: bool = False
    reference_matches: bool = False

    def to_dict(self) -> dict:
        return {
            "candidate_id": self.candidate_id,
            "score": self.score,
            "reasons": list(self.reasons),
            "auto_approve_eligible": self.auto_approve_eligible,
            "amount_matches": self.amount_matches,
            "reference_matches": self.reference_matches,
        }


@dataclass(frozen=True)
class PaymentMatch:
    extraction_id: str
    scored_candidates: tuple[ScoredCandidate, ...]
    best_match: ScoredCandidate | None
    review_required: bool
    ambiguous: bool = False
    amount_mismatch: bool = False
    contradiction: str | None = None      # ex: "amount_mismatch", só com valor corroborado
    matched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def unmatched(self) -> bool:
        return self.best_match is None
