"""
Entity: Processing Job

Unidade de trabalho criada na entrada do pipeline. Imutável;
consumida exatamente uma vez pelo dispatcher.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


class Priority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class SourcePlatform(str, Enum):
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    DISCORD = "discord"
    WEB = "web"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    DEAD_LETTER = "dead_letter"


@dataclass(frozen=True)
class SubmissionContext:
    """
    Contexto enviado pelo caller.

    Presente → "verify then confirm" (sabemos o que esperar).
    Ausente  → "identify then search".
    """
    expected_amount: Decimal | None = None
    currency: str | None = None
    reference: str | None = None
    buyer_identity: str | None = None
    candidate_id: str | None = None   # transação pendente específica, se conhecida

    def to_dict(self) -> dict:
        return {
            "expected_amount": str(self.expected_amount) if self.expected_amount is not None else None,
            "currency": self.currency,
            "reference": self.reference,
            "buyer_identity": self.buyer_identity,
            "candidate_id": self.candidate_id,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "SubmissionContext | None":
        if not data:
            return None
        amount = data.get("expected_amount")
        return cls(
            expected_amount=Decimal(str(amount)) if amount not in (None, "") else None,
            currency=data.get("currency"),
            reference=data.get("reference"),
            buyer_identity=data.get("buyer_identity"),
            candidate_id=data.get("candidate_id"),
        )


@dataclass(frozen=True)
class ProcessingJob:
    """Job de verificação de um comprovante."""
    id: str
    extraction_id: str                # pré-alocado na entrada (dedup idempotente)
    image_bytes: bytes = field(repr=False)
    fingerprint: str
    source_platform: SourcePlatform = SourcePlatform.WEB
    submitted_by: str = ""
    priority: Priority = Priority.NORMAL
    submission_context: SubmissionContext | None = None
    image_width: int = 0
    image_height: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
