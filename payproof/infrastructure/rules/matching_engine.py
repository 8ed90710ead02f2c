"""
Matching Engine — Implementação COMPLETA.

Ranqueia as transações pendentes contra o candidato primário da
extração. Cada critério é uma função pequena e pura, somada com peso:

    1. Valor       (0.30) — igualdade dentro da tolerância, binário
    2. Referência  (0.25) — exata (case/espaço-insensível); parcial penaliza
    3. Método      (0.20) — aceito pelo pedido ou plausível para a região
    4. Timestamp   (0.15) — depois da criação do pedido, não no futuro
    5. Legibilidade (0.10) — fator de qualidade da imagem

Empate no topo → ambíguo, sem best match (revisão humana).
Valor divergente nunca vira best match: com referência exata ele é
contradição (confiante se o valor foi corroborado pelas duas fontes).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from difflib import SequenceMatcher

from payproof.core.entities.extraction import PaymentCandidate, PaymentExtraction, Provenance
from payproof.core.entities.match import (
    PENDING_STATUS,
    MatchCandidate,
    PaymentMatch,
    ScoredCandidate,
)
from payproof.core.interfaces.scoring import IMatchingEngine
from payproof.infrastructure.rules import payment_patterns as patterns

logger = logging.getLogger(__name__)

MATCH_WEIGHTS = {
    "amount": 0.30,
    "reference": 0.25,
    "method": 0.20,
    "timestamp": 0.15,
    "quality": 0.10,
}
UNKNOWN_METHOD_SCORE = 0.3
MISSING_TIMESTAMP_SCORE = 0.5
TIE_EPSILON = 1e-9
AMOUNT_MISMATCH = "amount_mismatch"


@dataclass(frozen=True)
class MatchingConfig:
    amount_tolerance: Decimal = Decimal("0.01")
    min_match_score: float = 0.60
    auto_approve_match_score: float = 0.85
    partial_reference_penalty: float = 0.25
    candidate_window_days: int = 30
    future_skew_minutes: int = 10


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def reference_partially_matches(extracted: str, expected: str) -> bool:
    """Um contém o outro, ou são quase iguais (erro de OCR de 1-2 caracteres)."""
    if len(extracted) < 4 or len(expected) < 4:
        return False
    if extracted in expected or expected in extracted:
        return True
    return SequenceMatcher(None, extracted, expected).ratio() >= 0.8


class MatchingEngine(IMatchingEngine):
    """Scoring de candidatos pendentes."""

    def __init__(self, config: MatchingConfig | None = None):
        self.config = config or MatchingConfig()

    def eligible_candidates(
        self, primary: PaymentCandidate, candidates: list[MatchCandidate], now: datetime
    ) -> list[MatchCandidate]:
        """Mesma moeda, ainda pendente, criado dentro da janela."""
        since = now - timedelta(days=self.config.candidate_window_days)
        return [
            c for c in candidates
            if c.currency == primary.currency
            and c.status == PENDING_STATUS
            and _aware(c.created_at) >= since
        ]

    def score(
        self, primary: PaymentCandidate, candidate: MatchCandidate, legibility: float, now: datetime
    ) -> ScoredCandidate:
        """Score de um candidato (0-1) com as razões de cada critério."""
        w = MATCH_WEIGHTS
        reasons: list[str] = []
        total = 0.0

        # --- 1. Valor ---
        amount_matches = abs(primary.amount - candidate.expected_amount) <= self.config.amount_tolerance
        if amount_matches:
            total += w["amount"]
            reasons.append("amount_exact")
        else:
            reasons.append("amount_mismatch")

        # --- 2. Referência ---
        extracted_ref = patterns.normalize_reference(primary.reference)
        expected_ref = patterns.normalize_reference(candidate.expected_reference)
        reference_matches = bool(extracted_ref) and extracted_ref == expected_ref
        if reference_matches:
            total += w["reference"]
            reasons.append("reference_exact")
        elif not extracted_ref or not expected_ref:
            reasons.append("reference_missing")
        elif reference_partially_matches(extracted_ref, expected_ref):
            total -= self.config.partial_reference_penalty
            reasons.append("reference_partial")
        else:
            reasons.append("reference_mismatch")

        # --- 3. Método ---
        method = primary.method or "unknown"
        accepted = {patterns.normalize_method(m) for m in candidate.payment_methods}
        if method == "unknown":
            total += w["method"] * UNKNOWN_METHOD_SCORE
            reasons.append("method_unknown")
        elif accepted:
            if method in accepted:
                total += w["method"]
                reasons.append("method_accepted")
            else:
                reasons.append("method_not_accepted")
        elif candidate.currency in patterns.method_currencies(method):
            total += w["method"]
            reasons.append("method_plausible_for_region")
        else:
            reasons.append("method_implausible_for_region")

        # --- 4. Timestamp ---
        if primary.timestamp is None:
            total += w["timestamp"] * MISSING_TIMESTAMP_SCORE
            reasons.append("timestamp_missing")
        else:
            skew = timedelta(minutes=self.config.future_skew_minutes)
            ts = _aware(primary.timestamp)
            if _aware(candidate.created_at) - skew <= ts <= now + skew:
                total += w["timestamp"]
                reasons.append("timestamp_valid")
            else:
                reasons.append("timestamp_out_of_range")

        # --- 5. Legibilidade ---
        total += w["quality"] * max(0.0, min(legibility, 1.0))

        # Informativo: remetente vs comprador
        if primary.sender and candidate.buyer_identity:
            if primary.sender.strip().lower() == candidate.buyer_identity.strip().lower():
                reasons.append("sender_matches_buyer")
            else:
                reasons.append("sender_differs_from_buyer")

        score = round(max(0.0, min(total, 1.0)), 4)
        eligible = (
            score >= self.config.auto_approve_match_score
            and amount_matches
            and reference_matches
        )
        return ScoredCandidate(
            candidate_id=candidate.id,
            score=score,
            reasons=tuple(reasons),
            auto_approve_eligible=eligible,
            amount_matches=amount_matches,
            reference_matches=reference_matches,
        )

    def match(
        self,
        extraction: PaymentExtraction,
        candidates: list[MatchCandidate],
        now: datetime | None = None,
    ) -> PaymentMatch:
        """
        Ranqueia os candidatos contra o primário da extração.

        Returns:
            PaymentMatch com todos os scores; `best_match` só quando
            há um vencedor único acima do piso.
        """
        now = now or datetime.now(timezone.utc)
        primary = extraction.primary
        if primary is None:
            return PaymentMatch(
                extraction_id=extraction.id,
                scored_candidates=(),
                best_match=None,
                review_required=True,
                matched_at=now,
            )

        pool = self.eligible_candidates(primary, candidates, now)
        scored = sorted(
            (self.score(primary, c, extraction.legibility, now) for c in pool),
            key=lambda s: (-s.score, s.candidate_id),
        )

        ambiguous = len(scored) >= 2 and abs(scored[0].score - scored[1].score) <= TIE_EPSILON
        best = None
        if (
            scored
            and not ambiguous
            and scored[0].amount_matches
            and scored[0].score >= self.config.min_match_score
        ):
            best = scored[0]

        # referência exata com valor divergente: o comprovante aponta para
        # o pedido, mas pagou outro valor
        amount_mismatch = any(s.reference_matches and not s.amount_matches for s in scored)
        contradiction = None
        if amount_mismatch and primary.provenance == Provenance.COMBINED:
            contradiction = AMOUNT_MISMATCH

        review_required = (
            best is None
            or not best.auto_approve_eligible
            or ambiguous
            or amount_mismatch
        )

        logger.info(
            f"Matched extraction {extraction.id}: {len(scored)}/{len(candidates)} candidates scored, "
            f"best={best.candidate_id if best else None} "
            f"score={best.score if best else None} ambiguous={ambiguous} contradiction={contradiction}"
        )

        return PaymentMatch(
            extraction_id=extraction.id,
            scored_candidates=tuple(scored),
            best_match=best,
            review_required=review_required,
            ambiguous=ambiguous,
            amount_mismatch=amount_mismatch,
            contradiction=contradiction,
            matched_at=now,
        )
