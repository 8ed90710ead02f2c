"""
Contract: Vision Extractor (Structured-Extraction Port)

Usa um modelo visão-linguagem para ler o screenshot e devolver
os campos da transação já tipados, com justificativa e confiança.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from decimal import Decimal


@dataclass(frozen=True)
class VisionFields:
    """Campos da transação como o modelo os leu (todos opcionais)."""
    method: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    sender: str | None = None
    recipient: str | None = None
    reference: str | None = None
    timestamp: str | None = None
    bank_name: str | None = None

    def is_empty(self) -> bool:
        return all(v in (None, "") for v in asdict(self).values())


@dataclass(frozen=True)
class VisionExtraction:
    """Resultado da extração estruturada. Produzido uma vez por job, nunca mutado."""
    description: str
    fields: VisionFields
    confidence: float                 # confiança declarada pelo modelo (0.0 a 1.0)
    rationale: str = ""
    model_id: str = ""
    latency_ms: float = 0.0
    error: str | None = None          # preenchido quando a resposta não pôde ser usada
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.fields.amount is not None:
            data["fields"]["amount"] = str(self.fields.amount)
        return data


class IVisionExtractor(ABC):
    """
    Port: Vision Extractor

    Implementação pode ser Gemini, GPT-4o, Claude, etc.
    """

    @abstractmethod
    def extract_structured(self, image_bytes: bytes, task_hint: str = "") -> VisionExtraction:
        """
        Extrai campos estruturados de um comprovante.

        Args:
            image_bytes: Imagem em bytes (JPEG normalizado).
            task_hint: Contexto extra para o prompt (moeda/valor esperados).

        Returns:
            VisionExtraction com campos, confiança e justificativa.
        """
        ...
