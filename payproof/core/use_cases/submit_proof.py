"""
Use Case: Submit Proof — entrada do pipeline.

Valida + normaliza a imagem, calcula o fingerprint, deduplica e
enfileira o job. Retorna imediatamente (acknowledgement); o
processamento acontece nos workers do dispatcher.

Lotes passam pelo mesmo caminho, item a item, em grupos de
`batch_concurrency`; erro de um item não derruba os outros.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from payproof.core.entities.extraction import PaymentExtraction
from payproof.core.entities.job import (
    JobStatus,
    Priority,
    ProcessingJob,
    SourcePlatform,
    SubmissionContext,
)
from payproof.core.exceptions import InvalidBatch, InvalidImage
from payproof.core.interfaces.image_preprocessor import IImagePreprocessor
from payproof.core.interfaces.job_queue import IJobQueue
from payproof.core.interfaces.verification_store import IVerificationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionReceipt:
    """Confirmação devolvida ao caller."""
    job_id: str
    extraction_id: str
    duplicate: bool
    status: str
    extraction: PaymentExtraction | None = None


@dataclass(frozen=True)
class BatchItem:
    image_bytes: bytes
    filename: str = ""
    submission_context: SubmissionContext | None = None


@dataclass(frozen=True)
class BatchItemResult:
    """Resultado de um item do lote: receipt ou o motivo da recusa."""
    index: int
    filename: str
    receipt: SubmissionReceipt | None = None
    error: str | None = None
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return self.receipt is not None


def summarize_batch(results: list[BatchItemResult]) -> dict[str, int]:
    accepted = [r for r in results if r.accepted]
    return {
        "total": len(results),
        "accepted": len(accepted),
        "duplicates": sum(1 for r in accepted if r.receipt.duplicate),
        "failed": len(results) - len(accepted),
    }


class SubmitProofUseCase:
    """
    Use Case: imagem → job enfileirado (ou o job anterior, se duplicada).

    Dependency Injection: preprocessor, store e fila vêm pelo construtor.
    """

    def __init__(
        self,
        preprocessor: IImagePreprocessor,
        store: IVerificationStore,
        queue: IJobQueue,
        dedup_window_seconds: int = 86400,
        max_batch_size: int = 20,
        batch_concurrency: int = 3,
    ):
        self._preprocessor = preprocessor
        self._store = store
        self._queue = queue
        self.dedup_window_seconds = dedup_window_seconds
        self.max_batch_size = max_batch_size
        self.batch_concurrency = max(1, batch_concurrency)
        # fingerprint check + save precisam ser atômicos dentro do processo
        self._lock = asyncio.Lock()

    async def execute(
        self,
        image_bytes: bytes,
        source_platform: SourcePlatform = SourcePlatform.WEB,
        submitted_by: str = "",
        priority: Priority = Priority.NORMAL,
        submission_context: SubmissionContext | None = None,
    ) -> SubmissionReceipt:
        """
        Aceita um comprovante.

        Args:
            image_bytes: Bytes crus da imagem.
            source_platform: Canal de origem (whatsapp, telegram, discord, web).
            submitted_by: Identidade de quem enviou.
            priority: Partição da fila.
            submission_context: Dados esperados, quando o caller os conhece.

        Returns:
            SubmissionReceipt com job_id, extraction_id e flag de duplicata.

        Raises:
            InvalidImage: imagem vazia, grande demais, formato ou dimensões inválidos.
            DispatcherClosed: o pipeline está em shutdown.
        """
        image = await asyncio.to_thread(self._preprocessor.normalize, image_bytes)

        async with self._lock:
            since = datetime.now(timezone.utc) - timedelta(seconds=self.dedup_window_seconds)
            prior = await asyncio.to_thread(self._store.find_job_by_fingerprint, image.fingerprint, since)
            if prior is not None:
                logger.info(
                    f"Duplicate submission (fingerprint {image.fingerprint[:12]}): "
                    f"returning job {prior.job_id} / extraction {prior.extraction_id}"
                )
                return SubmissionReceipt(
                    job_id=prior.job_id,
                    extraction_id=prior.extraction_id,
                    duplicate=True,
                    status=prior.status,
                    extraction=await asyncio.to_thread(self._store.get_extraction, prior.extraction_id),
                )

            job = ProcessingJob(
                id=str(uuid.uuid4()),
                extraction_id=str(uuid.uuid4()),
                image_bytes=image.data,
                fingerprint=image.fingerprint,
                source_platform=source_platform,
                submitted_by=submitted_by,
                priority=priority,
                submission_context=submission_context,
                image_width=image.width,
                image_height=image.height,
            )
            await asyncio.to_thread(self._store.save_job, job)

        await self._queue.submit(job)
        logger.info(
            f"Accepted job {job.id} from {source_platform.value} "
            f"({image.source_format} {image.width}x{image.height}, priority={priority.value})"
        )
        return SubmissionReceipt(
            job_id=job.id,
            extraction_id=job.extraction_id,
            duplicate=False,
            status=JobStatus.QUEUED.value,
        )

    async def execute_batch(
        self,
        items: list[BatchItem],
        source_platform: SourcePlatform = SourcePlatform.WEB,
        submitted_by: str = "",
        priority: Priority = Priority.NORMAL,
    ) -> list[BatchItemResult]:
        """
        Aceita vários comprovantes de uma vez.

        Cada item passa por `execute`; imagem inválida vira um resultado
        com `error` em vez de exceção. Duplicatas dentro do próprio lote
        são resolvidas pelo mesmo lock do caminho unitário.

        Returns:
            Um BatchItemResult por item, na ordem de entrada.

        Raises:
            InvalidBatch: lote vazio ou maior que `max_batch_size`.
            DispatcherClosed: o pipeline está em shutdown.
        """
        if not items:
            raise InvalidBatch("batch is empty")
        if len(items) > self.max_batch_size:
            raise InvalidBatch(f"batch has {len(items)} items (max {self.max_batch_size})")

        async def _one(index: int, item: BatchItem) -> BatchItemResult:
            try:
                receipt = await self.execute(
                    item.image_bytes,
                    source_platform=source_platform,
                    submitted_by=submitted_by,
                    priority=priority,
                    submission_context=item.submission_context,
                )
            except InvalidImage as e:
                logger.info(f"Batch item {index} ({item.filename!r}) rejected: {e}")
                return BatchItemResult(index, item.filename, error=e.reason, detail=e.detail)
            return BatchItemResult(index, item.filename, receipt=receipt)

        results: list[BatchItemResult] = []
        for start in range(0, len(items), self.batch_concurrency):
            chunk = items[start:start + self.batch_concurrency]
            results.extend(await asyncio.gather(*(_one(start + i, item) for i, item in enumerate(chunk))))

        summary = summarize_batch(results)
        logger.info(
            f"Batch from {source_platform.value}: {summary['accepted']}/{summary['total']} accepted "
            f"({summary['duplicates']} duplicates, {summary['failed']} failed)"
        )
        return results
