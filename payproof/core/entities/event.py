"""
Entity: Payment Event

Evento publicado para os colaboradores externos (notificações,
atualização de pedidos). Entrega at-least-once; consumidores
devem ser idempotentes em `dedupe_key`.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from payproof.core.entities.decision import Outcome


class EventType(str, Enum):
    PROCESSING_STARTED = "processing_started"
    PAYMENT_DETECTED = "payment_detected"
    PAYMENT_MATCHED = "payment_matched"
    REVIEW_REQUIRED = "review_required"
    AUTO_APPROVED = "auto_approved"
    PAYMENT_REJECTED = "payment_rejected"


OUTCOME_EVENT = {
    Outcome.AUTO_APPROVED: EventType.AUTO_APPROVED,
    Outcome.CONDITIONAL_APPROVED: EventType.PAYMENT_MATCHED,
    Outcome.APPROVED: EventType.PAYMENT_MATCHED,
    Outcome.MANUAL_REVIEW: EventType.REVIEW_REQUIRED,
    Outcome.REJECTED: EventType.PAYMENT_REJECTED,
}


@dataclass(frozen=True)
class PaymentEvent:
    type: EventType
    extraction_id: str
    user_id: str = ""
    platforms: tuple[str, ...] = ()
    priority: str = "normal"
    candidate_id: str | None = None
    outcome: str | None = None
    confidence: float | None = None
    decision_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dedupe_key(self) -> str:
        # extraction + outcome; decision_id separa re-decisões do revisor
        return f"{self.extraction_id}:{self.type.value}:{self.outcome or '-'}:{self.decision_id or '-'}"

    def to_payload(self) -> dict:
        return {
            "type": self.type.value,
            "extraction_id": self.extraction_id,
            "candidate_id": self.candidate_id,
            "user_id": self.user_id,
            "platforms": list(self.platforms),
            "priority": self.priority,
            "outcome": self.outcome,
            "confidence": self.confidence,
            "decision_id": self.decision_id,
            "created_at": self.created_at.isoformat(),
        }
