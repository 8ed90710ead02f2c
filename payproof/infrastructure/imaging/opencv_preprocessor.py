"""
Adapter: OpenCV Image Preprocessor — Implementação COMPLETA.

Validação + normalização dos comprovantes recebidos:
  1. Tamanho   → teto configurável em bytes
  2. Formato   → sniff dos magic bytes (não confia no content-type)
  3. Dimensões → mínimo utilizável
  4. Normaliza → resize "inside" sem ampliar + JPEG re-encodado
  5. Fingerprint → sha256 dos pixels em escala de cinza normalizados
"""

import hashlib
import logging

import cv2
import numpy as np

from payproof.core.exceptions import InvalidImage
from payproof.core.interfaces.image_preprocessor import IImagePreprocessor, NormalizedImage

logger = logging.getLogger(__name__)


def sniff_format(data: bytes) -> str:
    """Identifica o formato pelos magic bytes."""
    if data[:3] == b"\xff\xd8\xff":
        return "jpeg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    if data[:4] in (b"GIF8",):
        return "gif"
    if data[:2] == b"BM":
        return "bmp"
    return "unknown"


class OpenCVImagePreprocessor(IImagePreprocessor):
    """
    Preprocessor usando OpenCV — determinístico, sem estado.
    """

    def __init__(
        self,
        max_bytes: int = 10 * 1024 * 1024,
        allowed_formats: list[str] | None = None,
        min_width: int = 200,
        min_height: int = 200,
        max_width: int = 2048,
        max_height: int = 2048,
        jpeg_quality: int = 85,
    ):
        self._max_bytes = max_bytes
        self._allowed_formats = set(allowed_formats or ["jpeg", "png", "webp"])
        self._min_width = min_width
        self._min_height = min_height
        self._max_width = max_width
        self._max_height = max_height
        self._jpeg_quality = jpeg_quality

    def normalize(self, image_bytes: bytes) -> NormalizedImage:
        """Valida e normaliza; levanta InvalidImage se não for utilizável."""
        if not image_bytes:
            raise InvalidImage("EMPTY_FILE")

        # --- 1. Tamanho ---
        if len(image_bytes) > self._max_bytes:
            raise InvalidImage(
                "TOO_LARGE",
                f"{len(image_bytes)} bytes exceeds limit of {self._max_bytes}",
            )

        # --- 2. Formato ---
        fmt = sniff_format(image_bytes)
        if fmt not in self._allowed_formats:
            raise InvalidImage(
                "UNSUPPORTED_FORMAT",
                f"got '{fmt}', allowed: {', '.join(sorted(self._allowed_formats))}",
            )

        img = cv2.imdecode(np.frombuffer(image_bytes, dtype=np.uint8), cv2.IMREAD_COLOR)
        if img is None:
            raise InvalidImage("UNDECODABLE", "could not decode image data")

        # --- 3. Dimensões ---
        h, w = img.shape[:2]
        if w < self._min_width or h < self._min_height:
            raise InvalidImage(
                "TOO_SMALL",
                f"{w}x{h} below minimum {self._min_width}x{self._min_height}",
            )

        # --- 4. Resize "inside" (nunca amplia) ---
        scale = min(1.0, self._max_width / w, self._max_height / h)
        if scale < 1.0:
            img = cv2.resize(
                img, (max(1, int(w * scale)), max(1, int(h * scale))), interpolation=cv2.INTER_AREA
            )
        nh, nw = img.shape[:2]

        # --- 5. Fingerprint dos pixels normalizados ---
        fingerprint = self._fingerprint(img)

        ok, encoded = cv2.imencode(".jpg", img, [cv2.IMWRITE_JPEG_QUALITY, self._jpeg_quality])
        if not ok:
            raise InvalidImage("UNDECODABLE", "could not re-encode image")

        logger.debug(
            f"Normalized image {fingerprint[:8]}: {fmt} {w}x{h} -> {nw}x{nh}, "
            f"{len(image_bytes)} -> {len(encoded)} bytes"
        )

        return NormalizedImage(
            data=encoded.tobytes(),
            fingerprint=fingerprint,
            source_format=fmt,
            width=nw,
            height=nh,
            original_size=len(image_bytes),
        )

    @staticmethod
    def _fingerprint(img: np.ndarray) -> str:
        """sha256 sobre shape + pixels em escala de cinza."""
        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        digest = hashlib.sha256()
        digest.update(f"{gray.shape[0]}x{gray.shape[1]}".encode("ascii"))
        digest.update(np.ascontiguousarray(gray).tobytes())
        return digest.hexdigest()
