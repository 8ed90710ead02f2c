"""
Contract: Quality Gate

Avalia a legibilidade da imagem do comprovante. O score resultante
é o "image-quality factor" usado na fusão e no matching.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class QualityResult:
    """Resultado da avaliação de qualidade."""
    quality_ok: bool
    quality_score: float          # 0.0 (ilegível) a 1.0 (perfeito)
    reasons: tuple[str, ...] = ()  # ex: ("BLUR_HIGH", "LOW_CONTRAST")
    details: dict | None = None   # métricas individuais (blur_score, brightness, etc.)


class IQualityGate(ABC):
    """
    Port: Quality Gate

    O resultado só alimenta o score de legibilidade; `quality_ok`
    falso não rejeita o job.
    """

    @abstractmethod
    def evaluate(self, image_bytes: bytes) -> QualityResult:
        """
        Avalia a qualidade da imagem.

        Args:
            image_bytes: Imagem em bytes (JPEG/PNG/WEBP).

        Returns:
            QualityResult com score e flags.
        """
        ...
