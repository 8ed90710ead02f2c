"""
Use Case: Reprocess Failed

Devolve à fila os jobs que esgotaram as tentativas (dead letter).
Cada job reprocessado ganha uma extração nova; a extração que falhou
fica no histórico com a sua decisão `processing_failed`.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace

from payproof.core.interfaces.job_queue import IJobQueue
from payproof.core.interfaces.verification_store import IVerificationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReprocessReceipt:
    job_id: str
    extraction_id: str
    previous_extraction_id: str


class ReprocessFailedUseCase:
    """
    Use Case: dead letter → queued, tentativa 1 de novo.

    Dependency Injection: store e fila vêm pelo construtor.
    """

    def __init__(self, store: IVerificationStore, queue: IJobQueue, max_limit: int = 100):
        self._store = store
        self._queue = queue
        self.max_limit = max_limit

    async def execute(self, limit: int = 10, submitted_by: str | None = None) -> list[ReprocessReceipt]:
        """
        Reenfileira até `limit` jobs em dead letter, mais antigos primeiro.

        Args:
            limit: Máximo de jobs nesta chamada (cortado em `max_limit`).
            submitted_by: Só os jobs desse remetente, se informado.

        Returns:
            Um ReprocessReceipt por job reenfileirado.

        Raises:
            DispatcherClosed: o pipeline está em shutdown. Jobs já
                marcados como queued são retomados no próximo startup.
        """
        limit = max(1, min(limit, self.max_limit))
        jobs = await asyncio.to_thread(self._store.dead_letter_jobs, limit, submitted_by)

        receipts: list[ReprocessReceipt] = []
        for job in jobs:
            fresh = replace(job, extraction_id=str(uuid.uuid4()))
            if not await asyncio.to_thread(self._store.requeue_job, job.id, fresh.extraction_id):
                # outro caller já reenfileirou
                continue
            await self._queue.submit(fresh)
            receipts.append(ReprocessReceipt(job.id, fresh.extraction_id, job.extraction_id))

        logger.info(f"Reprocessing {len(receipts)}/{len(jobs)} dead-lettered jobs")
        return receipts
