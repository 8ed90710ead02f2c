"""
Contract: OCR Engine (Recognition Port)

Extrai texto bruto de screenshots de pagamento.
Qualquer engine (EasyOCR, Tesseract, API externa)
deve implementar este contrato.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class OCRWord:
    """Palavra reconhecida pelo OCR."""
    text: str
    confidence: float                 # 0.0 a 1.0
    bbox: tuple[int, int, int, int] | None = None   # (x0, y0, x1, y1)


@dataclass(frozen=True)
class OCRBlock:
    """Bloco (linha/parágrafo) reconhecido pelo OCR."""
    text: str
    confidence: float
    bbox: tuple[int, int, int, int] | None = None


@dataclass(frozen=True)
class OCRResult:
    """Resultado completo da extração OCR. Produzido uma vez por job, nunca mutado."""
    text: str                         # texto bruto completo
    confidence: float                 # confiança média (0.0 a 1.0)
    words: tuple[OCRWord, ...] = ()
    blocks: tuple[OCRBlock, ...] = ()
    language: str = ""
    engine: str = ""
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "words": [
                {"text": w.text, "confidence": w.confidence, "bbox": list(w.bbox) if w.bbox else None}
                for w in self.words
            ],
            "blocks": [
                {"text": b.text, "confidence": b.confidence, "bbox": list(b.bbox) if b.bbox else None}
                for b in self.blocks
            ],
            "language": self.language,
            "engine": self.engine,
        }


class IOCREngine(ABC):
    """
    Port: OCR Engine

    Responsável por extrair texto de uma imagem já normalizada.
    Implementações são bloqueantes; o timeout e o retry ficam
    no wrapper (GuardedPort), não aqui.
    """

    @abstractmethod
    def extract_text(self, image_bytes: bytes) -> OCRResult:
        """
        Extrai texto da imagem.

        Args:
            image_bytes: Imagem em bytes (JPEG normalizado).

        Returns:
            OCRResult com texto, palavras e confiança.
        """
        ...
