"""
Adapter: OpenCV Quality Gate — legibilidade do comprovante.

Cada métrica vira um fator normalizado em [0,1] e, abaixo do limite,
uma flag:
  1. Nitidez      → variância do Laplaciano         (BLUR_HIGH)
  2. Iluminação   → média do canal V em HSV         (TOO_DARK / TOO_BRIGHT)
  3. Contraste    → desvio padrão do canal V        (LOW_CONTRAST)
  4. Resolução    → menor lado em pixels            (LOW_RESOLUTION)
  5. Texto        → proporção de bordas Canny       (NO_TEXT_DETECTED)

Screenshots de e-wallet são quase sempre nítidos, claros e bem
enquadrados; o que separa um comprovante de uma imagem vazia é a
densidade de texto, por isso sem texto o score é zero.
"""

import cv2
import numpy as np

from payproof.core.interfaces.quality_gate import IQualityGate, QualityResult

FACTOR_WEIGHTS = {
    "sharpness": 0.30,
    "lighting": 0.15,
    "contrast": 0.20,
    "resolution": 0.15,
    "text": 0.20,
}

MIN_CONTRAST_STD = 30.0


class OpenCVQualityGate(IQualityGate):
    """Gate determinístico (~5ms por imagem), sem modelo."""

    def __init__(
        self,
        blur_threshold: float = 100.0,
        brightness_min: int = 50,
        brightness_max: int = 250,
        min_resolution: int = 480,
        min_edge_density: float = 0.005,
    ):
        self.blur_threshold = blur_threshold
        self.brightness_range = (brightness_min, brightness_max)
        self.min_resolution = min_resolution
        self.min_edge_density = min_edge_density

    def evaluate(self, image_bytes: bytes) -> QualityResult:
        """Avalia a legibilidade da imagem e retorna score + flags."""
        decoded = cv2.imdecode(np.frombuffer(image_bytes, dtype=np.uint8), cv2.IMREAD_COLOR)
        if decoded is None:
            return QualityResult(
                quality_ok=False,
                quality_score=0.0,
                reasons=("INVALID_IMAGE",),
                details={"error": "could not decode image"},
            )

        gray = cv2.cvtColor(decoded, cv2.COLOR_BGR2GRAY)
        value = cv2.cvtColor(decoded, cv2.COLOR_BGR2HSV)[:, :, 2]
        height, width = gray.shape
        metrics = {
            "laplacian_var": float(cv2.Laplacian(gray, cv2.CV_64F).var()),
            "v_mean": float(value.mean()),
            "v_std": float(value.std()),
            "min_side": float(min(height, width)),
            "edge_density": float(np.count_nonzero(cv2.Canny(gray, 50, 150))) / float(height * width),
        }

        flags = self._flags(metrics)
        factors = self._factors(metrics)
        if "NO_TEXT_DETECTED" in flags:
            score = 0.0
        else:
            score = sum(FACTOR_WEIGHTS[name] * factors[name] for name in FACTOR_WEIGHTS)

        details: dict[str, float | str] = {k: round(v, 4) for k, v in metrics.items()}
        details["resolution"] = f"{width}x{height}"
        return QualityResult(
            quality_ok=not flags,
            quality_score=round(max(0.0, min(score, 1.0)), 3),
            reasons=tuple(flags),
            details=details,
        )

    # ─── Flags / fatores ────────────────────────────────

    def _flags(self, m: dict[str, float]) -> list[str]:
        low, high = self.brightness_range
        flags = []
        if m["laplacian_var"] < self.blur_threshold:
            flags.append("BLUR_HIGH")
        if m["v_mean"] < low:
            flags.append("TOO_DARK")
        elif m["v_mean"] > high:
            flags.append("TOO_BRIGHT")
        if m["v_std"] < MIN_CONTRAST_STD:
            flags.append("LOW_CONTRAST")
        if m["min_side"] < self.min_resolution:
            flags.append("LOW_RESOLUTION")
        if m["edge_density"] < self.min_edge_density:
            flags.append("NO_TEXT_DETECTED")
        return flags

    def _factors(self, m: dict[str, float]) -> dict[str, float]:
        low, high = self.brightness_range
        if m["v_mean"] < low:
            lighting = m["v_mean"] / max(low, 1)
        elif m["v_mean"] > high:
            lighting = max(0.0, (255.0 - m["v_mean"]) / max(255.0 - high, 1.0))
        else:
            lighting = 1.0
        return {
            "sharpness": min(m["laplacian_var"] / 500.0, 1.0),
            "lighting": lighting,
            "contrast": min(m["v_std"] / 60.0, 1.0),
            "resolution": min(m["min_side"] / 720.0, 1.0),
            "text": min(m["edge_density"] / 0.05, 1.0),
        }
