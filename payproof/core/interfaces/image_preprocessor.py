"""
Contract: Image Preprocessor

Valida, normaliza e gera o fingerprint de conteúdo de uma imagem
recebida na entrada do pipeline.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class NormalizedImage:
    """Imagem pronta para os ports de reconhecimento."""
    data: bytes                   # JPEG re-encodado
    fingerprint: str              # sha256 dos pixels normalizados
    source_format: str            # "jpeg", "png", "webp"
    width: int
    height: int
    original_size: int


class IImagePreprocessor(ABC):
    """
    Port: Image Preprocessor

    Deve levantar InvalidImage quando a imagem não é utilizável.
    """

    @abstractmethod
    def normalize(self, image_bytes: bytes) -> NormalizedImage:
        """
        Valida e normaliza a imagem.

        Args:
            image_bytes: Bytes crus enviados pelo caller.

        Returns:
            NormalizedImage com bytes normalizados e fingerprint.

        Raises:
            InvalidImage: tamanho, formato ou dimensões inválidos.
        """
        ...
