"""
EasyOCR Engine — texto de screenshots de e-wallet / internet banking.

Screenshots de pagamento têm fonte variável (apps diferentes, temas
claro/escuro), então usamos só o reconhecedor genérico do EasyOCR,
sem recortes por região.
"""

import logging

import cv2
import numpy as np

from payproof.core.interfaces.ocr_engine import IOCREngine, OCRBlock, OCRResult, OCRWord

logger = logging.getLogger(__name__)


def _to_bbox(points) -> tuple[int, int, int, int] | None:
    """Converte os 4 pontos do EasyOCR em (x0, y0, x1, y1)."""
    try:
        xs = [int(p[0]) for p in points]
        ys = [int(p[1]) for p in points]
    except (TypeError, IndexError, ValueError):
        return None
    return min(xs), min(ys), max(xs), max(ys)


def group_lines(words: list[OCRWord], y_tolerance: float = 0.6) -> list[OCRBlock]:
    """
    Agrupa palavras em linhas pelo centro vertical do bbox.

    Duas palavras ficam na mesma linha quando a distância entre os
    centros é menor que `y_tolerance` × altura da palavra.
    """
    positioned = [w for w in words if w.bbox is not None]
    positioned.sort(key=lambda w: ((w.bbox[1] + w.bbox[3]) / 2, w.bbox[0]))

    lines: list[list[OCRWord]] = []
    for word in positioned:
        cy = (word.bbox[1] + word.bbox[3]) / 2
        height = max(word.bbox[3] - word.bbox[1], 1)
        if lines:
            last = lines[-1][-1]
            last_cy = (last.bbox[1] + last.bbox[3]) / 2
            if abs(cy - last_cy) < y_tolerance * height:
                lines[-1].append(word)
                continue
        lines.append([word])

    blocks = []
    for line in lines:
        line.sort(key=lambda w: w.bbox[0])
        blocks.append(OCRBlock(
            text=" ".join(w.text for w in line),
            confidence=round(sum(w.confidence for w in line) / len(line), 3),
            bbox=(
                min(w.bbox[0] for w in line),
                min(w.bbox[1] for w in line),
                max(w.bbox[2] for w in line),
                max(w.bbox[3] for w in line),
            ),
        ))
    return blocks


class EasyOCREngine(IOCREngine):
    """
    OCR via EasyOCR. O Reader é carregado sob demanda (modelos pesados).
    """

    def __init__(self, langs: list[str] | None = None, use_gpu: bool = False, min_confidence: float = 0.3):
        self.langs = langs or ["en"]
        self.use_gpu = use_gpu
        self.min_confidence = min_confidence
        self._reader = None

    def _get_reader(self):
        if self._reader is None:
            import easyocr
            logger.info(f"Loading EasyOCR reader (langs={self.langs}, gpu={self.use_gpu})")
            self._reader = easyocr.Reader(self.langs, gpu=self.use_gpu, verbose=False)
        return self._reader

    @property
    def ready(self) -> bool:
        return self._reader is not None

    def extract_text(self, image_bytes: bytes) -> OCRResult:
        """Extrai texto, palavras e linhas do screenshot."""
        nparr = np.frombuffer(image_bytes, np.uint8)
        image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
        if image is None:
            return OCRResult(text="", confidence=0.0, language="+".join(self.langs), engine="EasyOCR")

        # Erros do reader sobem: retry/timeout ficam no GuardedPort
        results = self._get_reader().readtext(image, paragraph=False)

        words = []
        dropped = 0
        for points, text, conf in results:
            text = str(text).strip()
            if not text:
                continue
            if float(conf) < self.min_confidence:
                dropped += 1
                continue
            words.append(OCRWord(text=text, confidence=round(float(conf), 3), bbox=_to_bbox(points)))

        blocks = group_lines(words)
        full_text = "\n".join(b.text for b in blocks) if blocks else " ".join(w.text for w in words)
        avg_conf = sum(w.confidence for w in words) / len(words) if words else 0.0

        logger.debug(f"EasyOCR: {len(words)} words kept, {dropped} below {self.min_confidence}")

        return OCRResult(
            text=full_text,
            confidence=round(avg_conf, 3),
            words=tuple(words),
            blocks=tuple(blocks),
            language="+".join(self.langs),
            engine="EasyOCR",
            details={"raw_detections": len(results), "dropped_low_confidence": dropped},
        )
