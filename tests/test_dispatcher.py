"""
Tests for the JobDispatcher — worker pool com filas por prioridade.

Covers:
  - Ordem high → normal → low
  - Worker reservado para high priority
  - Retry com backoff exponencial
  - Dead letter via failure handler (e failure handler quebrado)
  - Shutdown drena e recusa novos jobs
"""

import asyncio

import pytest

from conftest import make_job
from payproof.core.entities.job import Priority
from payproof.core.exceptions import DispatcherClosed
from payproof.infrastructure.queue.dispatcher import JobDispatcher


class Recorder:
    """Handler/failure handler que registram as chamadas."""

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.calls: list[tuple[str, int]] = []
        self.done: list[str] = []
        self.failures: list[tuple[str, str]] = []
        self.delays: list[float] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.started: dict[str, asyncio.Event] = {}

    def gate(self, job_id: str) -> asyncio.Event:
        self.gates[job_id] = asyncio.Event()
        self.started[job_id] = asyncio.Event()
        return self.gates[job_id]

    async def handler(self, job, attempt: int) -> None:
        self.calls.append((job.id, attempt))
        if job.id in self.gates:
            self.started[job.id].set()
            await self.gates[job.id].wait()
        if attempt <= self.fail_times:
            raise RuntimeError(f"boom {attempt}")
        self.done.append(job.id)

    async def failure_handler(self, job, reason: str) -> None:
        self.failures.append((job.id, reason))

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)


def _dispatcher(rec: Recorder, **kwargs) -> JobDispatcher:
    return JobDispatcher(rec.handler, rec.failure_handler, sleep=rec.sleep, **kwargs)


# ═══════════════════════════════════════════════════════════════
# Prioridade
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_jobs_consumed_by_priority():
    rec = Recorder()
    gate = rec.gate("gate")
    dispatcher = _dispatcher(rec, concurrency=1, reserved_high=0)

    await dispatcher.submit(make_job("gate", "e-gate"))
    await rec.started["gate"].wait()
    await dispatcher.submit(make_job("low", "e-low", Priority.LOW))
    await dispatcher.submit(make_job("normal", "e-normal", Priority.NORMAL))
    await dispatcher.submit(make_job("high", "e-high", Priority.HIGH))
    assert dispatcher.depths() == {"high": 1, "normal": 1, "low": 1}

    gate.set()
    await dispatcher.join()

    assert rec.done == ["gate", "high", "normal", "low"]
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_reserved_worker_serves_high_while_general_busy():
    rec = Recorder()
    gate = rec.gate("slow-normal")
    dispatcher = _dispatcher(rec, concurrency=2, reserved_high=1)

    await dispatcher.submit(make_job("slow-normal", "e-1", Priority.NORMAL))
    await rec.started["slow-normal"].wait()
    await dispatcher.submit(make_job("urgent", "e-2", Priority.HIGH))

    for _ in range(50):
        if "urgent" in rec.done:
            break
        await asyncio.sleep(0.01)

    assert rec.done == ["urgent"]
    assert dispatcher.in_flight == 1

    gate.set()
    await dispatcher.join()
    assert rec.done == ["urgent", "slow-normal"]
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_reserved_worker_ignores_lower_priorities():
    rec = Recorder()
    gate = rec.gate("blocker")
    dispatcher = _dispatcher(rec, concurrency=2, reserved_high=1)

    await dispatcher.submit(make_job("blocker", "e-1", Priority.LOW))
    await rec.started["blocker"].wait()
    await dispatcher.submit(make_job("waiting", "e-2", Priority.NORMAL))
    await asyncio.sleep(0.05)

    # só o worker geral pode pegar "waiting", e ele está ocupado
    assert dispatcher.depths()["normal"] == 1

    gate.set()
    await dispatcher.join()
    assert rec.done == ["blocker", "waiting"]
    await dispatcher.shutdown()


# ═══════════════════════════════════════════════════════════════
# Retry / dead letter
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_retry_with_exponential_backoff():
    rec = Recorder(fail_times=2)
    dispatcher = _dispatcher(rec, concurrency=1, reserved_high=0, max_attempts=3, retry_backoff=2.0)

    await dispatcher.submit(make_job("j"))
    await dispatcher.join()

    assert rec.calls == [("j", 1), ("j", 2), ("j", 3)]
    assert rec.delays == [2.0, 4.0]
    assert rec.done == ["j"]
    assert rec.failures == []
    assert dispatcher.retried == 2
    assert dispatcher.processed == 1
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_exhausted_job_goes_to_failure_handler():
    rec = Recorder(fail_times=99)
    dispatcher = _dispatcher(rec, concurrency=1, reserved_high=0, max_attempts=2, retry_backoff=0.0)

    await dispatcher.submit(make_job("doomed"))
    await dispatcher.join()

    assert len(rec.calls) == 2
    assert rec.failures == [("doomed", "RuntimeError: boom 2")]
    assert dispatcher.dead_lettered == 1
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_crashing_failure_handler_does_not_kill_worker():
    rec = Recorder(fail_times=1)

    async def broken_failure_handler(job, reason):
        raise RuntimeError("store down")

    dispatcher = JobDispatcher(
        rec.handler, broken_failure_handler, concurrency=1, reserved_high=0, max_attempts=1, sleep=rec.sleep
    )
    await dispatcher.submit(make_job("a", "e-a"))
    await dispatcher.join()

    rec.fail_times = 0
    await dispatcher.submit(make_job("b", "e-b"))
    await dispatcher.join()

    assert rec.done == ["b"]
    assert dispatcher.dead_lettered == 1
    await dispatcher.shutdown()


# ═══════════════════════════════════════════════════════════════
# Ciclo de vida
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_shutdown_drains_then_refuses():
    rec = Recorder()
    dispatcher = _dispatcher(rec, concurrency=2, reserved_high=1)
    for i in range(5):
        await dispatcher.submit(make_job(f"j{i}", f"e{i}"))

    await dispatcher.shutdown(timeout=5)

    assert sorted(rec.done) == [f"j{i}" for i in range(5)]
    assert dispatcher.closing
    assert not dispatcher.started
    with pytest.raises(DispatcherClosed):
        await dispatcher.submit(make_job("late", "e-late"))


@pytest.mark.asyncio
async def test_join_without_jobs_returns():
    dispatcher = _dispatcher(Recorder())
    await dispatcher.join()
    dispatcher.start()
    await dispatcher.join()
    await dispatcher.shutdown()


@pytest.mark.parametrize("kwargs", [
    {"concurrency": 0},
    {"concurrency": 2, "reserved_high": 2},
    {"max_attempts": 0},
])
def test_invalid_configuration(kwargs):
    with pytest.raises(ValueError):
        _dispatcher(Recorder(), **kwargs)
