"""
Entity: Payment Extraction

Registro canônico (fusão OCR + vision) dos fatos de pagamento
extraídos de uma imagem. Append-only: correções viram uma nova
Decision do revisor, nunca mutação deste registro.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from payproof.core.interfaces.ocr_engine import OCRResult
from payproof.core.interfaces.vision_extractor import VisionExtraction


class Provenance(str, Enum):
    OCR = "ocr"
    VISION = "vision"
    COMBINED = "combined"
    REVIEWER = "reviewer"


class ExtractionFlag(str, Enum):
    NO_DATA_EXTRACTED = "no_data_extracted"
    DEGRADED_OCR = "degraded_ocr"
    DEGRADED_VISION = "degraded_vision"
    OCR_AMOUNT_CONTRADICTION = "ocr_amount_contradiction"
    OCR_REFERENCE_CONTRADICTION = "ocr_reference_contradiction"
    CURRENCY_CONTRADICTION = "currency_contradiction"
    AMOUNT_UNCORROBORATED = "amount_uncorroborated"
    AMOUNT_CORROBORATED = "amount_corroborated"
    REFERENCE_CORROBORATED = "reference_corroborated"


@dataclass(frozen=True)
class PaymentCandidate:
    """Uma leitura possível do pagamento no comprovante."""
    amount: Decimal
    currency: str
    method: str = "unknown"
    sender: str | None = None
    recipient: str | None = None
    reference: str | None = None
    timestamp: datetime | None = None
    confidence: float = 0.0
    provenance: Provenance = Provenance.VISION

    def to_dict(self) -> dict:
        return {
            "amount": str(self.amount),
            "currency": self.currency,
            "method": self.method,
            "sender": self.sender,
            "recipient": self.recipient,
            "reference": self.reference,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "confidence": self.confidence,
            "provenance": self.provenance.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentCandidate":
        ts = data.get("timestamp")
        return cls(
            amount=Decimal(str(data["amount"])),
            currency=data["currency"],
            method=data.get("method") or "unknown",
            sender=data.get("sender"),
            recipient=data.get("recipient"),
            reference=data.get("reference"),
            timestamp=datetime.fromisoformat(ts) if ts else None,
            confidence=float(data.get("confidence", 0.0)),
            provenance=Provenance(data.get("provenance", "vision")),
        )


@dataclass(frozen=True)
class PaymentExtraction:
    """Registro de extração fundido."""
    id: str
    job_id: str
    ocr: OCRResult | None
    vision: VisionExtraction | None
    candidates: tuple[PaymentCandidate, ...]
    overall_confidence: float
    requires_review: bool
    flags: tuple[str, ...] = ()
    legibility: float = 0.0
    ocr_status: str = "ok"            # ok | degraded | unavailable
    vision_status: str = "ok"
    processing_time_ms: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def primary(self) -> PaymentCandidate | None:
        return self.candidates[0] if self.candidates else None

    @property
    def degraded(self) -> bool:
        return self.ocr_status != "ok" or self.vision_status != "ok"

    def has_flag(self, flag: ExtractionFlag) -> bool:
        return flag.value in self.flags
