"""
Decision Table — a máquina de decisão como dado, não como if/else.

Tabela ordenada de regras (linha → limiar mínimo + exigência de
match → outcome). A primeira linha satisfeita decide; depois vêm
os overrides por flag:

    - `confident_contradiction` → rejected
    - flags de sinal faltando, ambíguo ou de valor divergente sem
      corroboração → no máximo manual_review (um rejected da
      tabela sobe para manual_review)

Para flags fixas, o outcome nunca piora quando a confiança sobe.
"""

from dataclasses import dataclass
from enum import Enum

from payproof.core.entities.decision import DecisionFlag, Outcome, ReasonCode
from payproof.core.entities.extraction import ExtractionFlag
from payproof.core.interfaces.scoring import IDecisionTable


class MatchRequirement(str, Enum):
    NONE = "none"
    MATCH = "match"
    ELIGIBLE_MATCH = "eligible_match"


CONFIDENT_CONTRADICTION = DecisionFlag.CONFIDENT_CONTRADICTION.value
AMOUNT_MISMATCH = DecisionFlag.AMOUNT_MISMATCH.value
AMBIGUOUS_MATCH = DecisionFlag.AMBIGUOUS_MATCH.value
NO_CANDIDATES = DecisionFlag.NO_CANDIDATES.value
CANDIDATE_LOOKUP_FAILED = DecisionFlag.CANDIDATE_LOOKUP_FAILED.value
PROCESSING_FAILED = DecisionFlag.PROCESSING_FAILED.value

# flag → razão registrada quando ela limita o outcome
CAPPING_FLAGS: dict[str, ReasonCode] = {
    ExtractionFlag.NO_DATA_EXTRACTED.value: ReasonCode.NO_DATA_EXTRACTED,
    ExtractionFlag.DEGRADED_OCR.value: ReasonCode.DEGRADED_EXTRACTION,
    ExtractionFlag.DEGRADED_VISION.value: ReasonCode.DEGRADED_EXTRACTION,
    ExtractionFlag.OCR_AMOUNT_CONTRADICTION.value: ReasonCode.EXTRACTION_CONTRADICTION,
    ExtractionFlag.OCR_REFERENCE_CONTRADICTION.value: ReasonCode.EXTRACTION_CONTRADICTION,
    ExtractionFlag.CURRENCY_CONTRADICTION.value: ReasonCode.EXTRACTION_CONTRADICTION,
    ExtractionFlag.AMOUNT_UNCORROBORATED.value: ReasonCode.UNCORROBORATED_AMOUNT,
    AMOUNT_MISMATCH: ReasonCode.AMOUNT_MISMATCH,
    AMBIGUOUS_MATCH: ReasonCode.AMBIGUOUS_MATCH,
    NO_CANDIDATES: ReasonCode.NO_CANDIDATES,
    CANDIDATE_LOOKUP_FAILED: ReasonCode.CANDIDATE_LOOKUP_FAILED,
    PROCESSING_FAILED: ReasonCode.PROCESSING_FAILED,
}


@dataclass(frozen=True)
class DecisionThresholds:
    """Limiares da tabela (vêm do Settings, nunca do call site)."""
    auto_approve: float = 0.90
    conditional: float = 0.75
    review_floor: float = 0.50

    def __post_init__(self):
        if not (0.0 <= self.review_floor <= self.conditional <= self.auto_approve <= 1.0):
            raise ValueError(
                "thresholds must satisfy 0 <= review_floor <= conditional <= auto_approve <= 1, "
                f"got {self.review_floor}/{self.conditional}/{self.auto_approve}"
            )


@dataclass(frozen=True)
class DecisionRule:
    min_confidence: float
    requires: MatchRequirement
    outcome: Outcome
    reason: ReasonCode


def default_rules(thresholds: DecisionThresholds) -> tuple[DecisionRule, ...]:
    return (
        DecisionRule(thresholds.auto_approve, MatchRequirement.ELIGIBLE_MATCH,
                     Outcome.AUTO_APPROVED, ReasonCode.HIGH_CONFIDENCE_MATCH),
        DecisionRule(thresholds.conditional, MatchRequirement.MATCH,
                     Outcome.CONDITIONAL_APPROVED, ReasonCode.CONDITIONAL_MATCH),
        DecisionRule(thresholds.review_floor, MatchRequirement.NONE,
                     Outcome.MANUAL_REVIEW, ReasonCode.LOW_CONFIDENCE),
        DecisionRule(0.0, MatchRequirement.NONE,
                     Outcome.REJECTED, ReasonCode.BELOW_FLOOR),
    )


class DecisionTable(IDecisionTable):
    """Função pura (confiança, match, flags) → (outcome, razões)."""

    def __init__(self, thresholds: DecisionThresholds | None = None, rules: tuple[DecisionRule, ...] | None = None):
        self.thresholds = thresholds or DecisionThresholds()
        self.rules = rules or default_rules(self.thresholds)
        self._validate()

    def _validate(self) -> None:
        mins = [r.min_confidence for r in self.rules]
        if mins != sorted(mins, reverse=True):
            raise ValueError("decision rules must be ordered by descending min_confidence")
        ranks = [r.outcome.rank for r in self.rules]
        if ranks != sorted(ranks, reverse=True):
            raise ValueError("decision rules must be ordered by descending outcome")
        if not self.rules or self.rules[-1].min_confidence != 0.0 or self.rules[-1].requires != MatchRequirement.NONE:
            raise ValueError("last decision rule must be an unconditional catch-all")

    def decide(
        self,
        confidence: float,
        match_score: float | None = None,
        flags: tuple[str, ...] | list[str] = (),
        auto_approve_eligible: bool = False,
    ) -> tuple[Outcome, tuple[str, ...]]:
        """
        Decide o outcome.

        Args:
            confidence: Confiança da extração (0-1).
            match_score: Score do best match, ou None se não houver match.
            flags: Flags da extração e do matching.
            auto_approve_eligible: Best match elegível para auto-aprovação.

        Returns:
            (Outcome, reason codes)
        """
        confidence = max(0.0, min(float(confidence), 1.0))
        has_match = match_score is not None
        reasons: list[str] = []

        outcome = Outcome.REJECTED
        for rule in self.rules:
            if confidence < rule.min_confidence:
                continue
            if rule.requires == MatchRequirement.ELIGIBLE_MATCH and not (has_match and auto_approve_eligible):
                _add(reasons, ReasonCode.NOT_AUTO_APPROVE_ELIGIBLE if has_match else ReasonCode.NO_CONFIDENT_MATCH)
                continue
            if rule.requires == MatchRequirement.MATCH and not has_match:
                _add(reasons, ReasonCode.NO_CONFIDENT_MATCH)
                continue
            outcome = rule.outcome
            _add(reasons, rule.reason)
            break

        flag_set = set(flags)
        if CONFIDENT_CONTRADICTION in flag_set:
            outcome = Outcome.REJECTED
            _add(reasons, ReasonCode.AMOUNT_MISMATCH)
        else:
            capping = [CAPPING_FLAGS[f] for f in flags if f in CAPPING_FLAGS]
            if capping:
                outcome = Outcome.MANUAL_REVIEW
                for reason in capping:
                    _add(reasons, reason)

        return outcome, tuple(reasons)


def _add(reasons: list[str], code: ReasonCode) -> None:
    if code.value not in reasons:
        reasons.append(code.value)
