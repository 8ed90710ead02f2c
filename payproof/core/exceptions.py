"""
Domain exceptions.

Só `InvalidImage`, `InvalidBatch` e `InvalidReviewRequest` chegam ao
caller de forma síncrona; o resto é absorvido pelo pipeline e vira degradação de
confiança, flag de revisão ou dead-letter.
"""


class PaymentProofError(Exception):
    """Base de todas as exceções do pipeline."""


class InvalidImage(PaymentProofError):
    """Imagem rejeitada na entrada (tamanho, formato ou dimensões)."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class InvalidBatch(PaymentProofError):
    """Lote de submissão vazio ou grande demais."""


class PortUnavailableError(PaymentProofError):
    """Um port externo esgotou as tentativas."""

    def __init__(self, reason: str, attempts: int = 0):
        self.reason = reason
        self.attempts = attempts
        super().__init__(f"{reason} (after {attempts} attempts)")


class RecognitionUnavailable(PortUnavailableError):
    """OCR indisponível."""


class ExtractionUnavailable(PortUnavailableError):
    """Extração estruturada (vision model) indisponível."""


class ProcessingTimeout(PaymentProofError):
    """Uma etapa estourou o deadline."""

    def __init__(self, stage: str, timeout_seconds: float):
        self.stage = stage
        self.timeout_seconds = timeout_seconds
        super().__init__(f"stage '{stage}' exceeded {timeout_seconds}s")


class ConcurrentClaimConflict(PaymentProofError):
    """Outra decisão já reivindicou o mesmo candidato."""

    def __init__(self, candidate_id: str, detail: str = ""):
        self.candidate_id = candidate_id
        super().__init__(f"candidate {candidate_id} already claimed{': ' + detail if detail else ''}")


class InvalidReviewRequest(PaymentProofError):
    """Requisição de revisão malformada ou inconsistente."""

    def __init__(self, message: str, not_found: bool = False):
        self.not_found = not_found
        super().__init__(message)


class StaleDecision(InvalidReviewRequest):
    """A revisão foi baseada numa decisão que já não é a mais recente."""

    def __init__(self, extraction_id: str, expected_latest: str | None):
        self.extraction_id = extraction_id
        self.expected_latest = expected_latest
        super().__init__(
            f"decision history of extraction {extraction_id} changed "
            f"(expected latest {expected_latest}); reload and retry"
        )


class DispatcherClosed(PaymentProofError):
    """O dispatcher está em shutdown e não aceita novos jobs."""
