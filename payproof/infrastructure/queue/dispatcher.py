"""
Job Dispatcher — worker pool asyncio com filas por prioridade.

    - 3 partições FIFO (high / normal / low)
    - `reserved_high` workers só consomem high; os demais consomem
      high → normal → low
    - cada job tem até `max_attempts` tentativas com backoff
      exponencial; depois vai para o failure handler (dead letter),
      que registra uma decisão de revisão manual. Nenhum job some.
    - shutdown para de aceitar, drena filas e jobs em andamento
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

from payproof.core.entities.job import Priority, ProcessingJob
from payproof.core.exceptions import DispatcherClosed
from payproof.core.interfaces.job_queue import IJobQueue

logger = logging.getLogger(__name__)

JobHandler = Callable[[ProcessingJob, int], Awaitable[None]]
FailureHandler = Callable[[ProcessingJob, str], Awaitable[None]]

PRIORITY_ORDER = (Priority.HIGH, Priority.NORMAL, Priority.LOW)


class JobDispatcher(IJobQueue):
    """Pool de workers consumindo jobs por prioridade."""

    def __init__(
        self,
        handler: JobHandler,
        failure_handler: FailureHandler,
        concurrency: int = 4,
        reserved_high: int = 1,
        max_attempts: int = 3,
        retry_backoff: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if not 0 <= reserved_high < concurrency:
            raise ValueError("reserved_high must leave at least one general worker")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self._handler = handler
        self._failure_handler = failure_handler
        self.concurrency = concurrency
        self.reserved_high = reserved_high
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self._sleep = sleep

        self._queues: dict[Priority, deque[ProcessingJob]] = {p: deque() for p in PRIORITY_ORDER}
        self._cond: asyncio.Condition | None = None
        self._idle: asyncio.Event | None = None
        self._workers: list[asyncio.Task] = []
        self._unfinished = 0
        self._in_flight = 0
        self._closing = False

        self.processed = 0
        self.retried = 0
        self.dead_lettered = 0

    # ─── Estado ─────────────────────────────────────────

    @property
    def started(self) -> bool:
        return bool(self._workers)

    @property
    def closing(self) -> bool:
        return self._closing

    def depths(self) -> dict[str, int]:
        return {p.value: len(q) for p, q in self._queues.items()}

    @property
    def in_flight(self) -> int:
        return self._in_flight

    # ─── Ciclo de vida ──────────────────────────────────

    def start(self) -> None:
        """Cria os workers no event loop corrente."""
        if self._workers:
            return
        self._cond = asyncio.Condition()
        self._idle = asyncio.Event()
        if self._unfinished == 0:
            self._idle.set()
        for i in range(self.reserved_high):
            self._workers.append(asyncio.create_task(self._worker(f"high-{i}", high_only=True)))
        for i in range(self.concurrency - self.reserved_high):
            self._workers.append(asyncio.create_task(self._worker(f"general-{i}", high_only=False)))
        logger.info(
            f"Dispatcher started: {self.concurrency} workers ({self.reserved_high} reserved for high priority)"
        )

    async def submit(self, job: ProcessingJob) -> None:
        """
        Enfileira um job.

        Raises:
            DispatcherClosed: shutdown já começou.
        """
        if self._closing:
            raise DispatcherClosed(f"dispatcher is shutting down; job {job.id} not accepted")
        if not self._workers:
            self.start()
        async with self._cond:
            self._queues[job.priority].append(job)
            self._unfinished += 1
            self._idle.clear()
            self._cond.notify_all()
        logger.debug(f"Job {job.id} queued ({job.priority.value}); depths={self.depths()}")

    async def join(self) -> None:
        """Espera as filas e os jobs em andamento esvaziarem."""
        if self._idle is None:
            return
        await self._idle.wait()

    async def shutdown(self, timeout: float | None = None) -> None:
        """Para de aceitar jobs, drena o que já foi aceito e encerra os workers."""
        self._closing = True
        if not self._workers:
            return
        async with self._cond:
            self._cond.notify_all()
        try:
            await asyncio.wait_for(asyncio.gather(*self._workers), timeout=timeout)
        except asyncio.TimeoutError:
            remaining = sum(len(q) for q in self._queues.values()) + self._in_flight
            logger.error(f"Dispatcher shutdown timed out after {timeout}s with {remaining} jobs unfinished")
            for task in self._workers:
                task.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info(
            f"Dispatcher stopped: processed={self.processed} retried={self.retried} "
            f"dead_lettered={self.dead_lettered}"
        )

    # ─── Workers ────────────────────────────────────────

    def _next_job(self, high_only: bool) -> ProcessingJob | None:
        partitions = (Priority.HIGH,) if high_only else PRIORITY_ORDER
        for priority in partitions:
            if self._queues[priority]:
                return self._queues[priority].popleft()
        return None

    def _has_work(self, high_only: bool) -> bool:
        if high_only:
            return bool(self._queues[Priority.HIGH])
        return any(self._queues.values())

    async def _worker(self, name: str, high_only: bool) -> None:
        while True:
            async with self._cond:
                await self._cond.wait_for(lambda: self._has_work(high_only) or self._closing)
                job = self._next_job(high_only)
                if job is None:
                    return
                self._in_flight += 1
            try:
                await self._run(job, name)
            finally:
                self._in_flight -= 1
                self._unfinished -= 1
                if self._unfinished == 0:
                    self._idle.set()

    async def _run(self, job: ProcessingJob, worker: str) -> None:
        last_error = ""
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._handler(job, attempt)
                self.processed += 1
                return
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                if attempt < self.max_attempts:
                    self.retried += 1
                    delay = self.retry_backoff * (2 ** (attempt - 1))
                    logger.warning(
                        f"[{worker}] job {job.id} attempt {attempt}/{self.max_attempts} failed "
                        f"({last_error}); retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)

        self.dead_lettered += 1
        logger.error(f"[{worker}] job {job.id} dead-lettered after {self.max_attempts} attempts: {last_error}")
        try:
            await self._failure_handler(job, last_error)
        except Exception:
            # job continua não-terminal no store e é recuperado no próximo startup
            logger.exception(f"[{worker}] failure handler crashed for job {job.id}")
