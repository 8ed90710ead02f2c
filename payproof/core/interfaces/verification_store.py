"""
Contract: Verification Store

Persistência do log de jobs, extrações e decisões. Extrações e
decisões são append-only: não existe operação de update para elas.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from payproof.core.entities.decision import Decision
from payproof.core.entities.extraction import PaymentExtraction
from payproof.core.entities.job import JobStatus, ProcessingJob


@dataclass(frozen=True)
class JobRef:
    """Referência leve a um job já registrado."""
    job_id: str
    extraction_id: str
    status: str
    created_at: datetime


class IVerificationStore(ABC):
    """
    Port: Verification Store
    """

    @abstractmethod
    def find_job_by_fingerprint(self, fingerprint: str, since: datetime) -> JobRef | None:
        """Job mais recente com o mesmo fingerprint criado após `since`."""
        ...

    @abstractmethod
    def save_job(self, job: ProcessingJob) -> None:
        ...

    @abstractmethod
    def update_job_status(
        self, job_id: str, status: JobStatus, attempts: int | None = None, error: str | None = None
    ) -> None:
        ...

    @abstractmethod
    def get_job(self, job_id: str) -> dict | None:
        ...

    @abstractmethod
    def unfinished_jobs(self) -> list[ProcessingJob]:
        """Jobs aceitos que não chegaram a um status terminal."""
        ...

    @abstractmethod
    def dead_letter_jobs(self, limit: int = 10, submitted_by: str | None = None) -> list[ProcessingJob]:
        """Jobs em dead letter que ainda podem ser reprocessados."""
        ...

    @abstractmethod
    def requeue_job(self, job_id: str, extraction_id: str) -> bool:
        """Dead letter → queued com uma extração nova; False se o job já saiu do dead letter."""
        ...

    @abstractmethod
    def save_extraction(self, extraction: PaymentExtraction, job: ProcessingJob) -> PaymentExtraction:
        """Grava a extração; se o id já existe, devolve a existente sem alterar nada."""
        ...

    @abstractmethod
    def get_extraction(self, extraction_id: str) -> PaymentExtraction | None:
        ...

    @abstractmethod
    def save_decision(self, decision: Decision) -> Decision:
        ...

    @abstractmethod
    def initial_decision(self, extraction_id: str) -> Decision | None:
        """Decisão automatizada (a primeira) da extração."""
        ...

    @abstractmethod
    def latest_decision(self, extraction_id: str) -> Decision | None:
        ...

    @abstractmethod
    def list_decisions(self, extraction_id: str) -> list[Decision]:
        """Histórico completo, do mais antigo ao mais recente."""
        ...

    @abstractmethod
    def get_stats(self) -> dict:
        """Read model agregado para dashboards operacionais."""
        ...
