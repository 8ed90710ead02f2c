"""
Tests for guarded ports — timeout + retry em volta dos adapters externos.

Covers:
  - Retry com backoff até dar certo
  - Tentativas esgotadas → Unavailable (nunca exceção)
  - Timeout por tentativa
  - Saídas degradadas (texto vazio, JSON inválido, sem campos)
  - Port desligado
"""

import pytest

from conftest import FakeOCR, FakeVision, gcash_fields
from payproof.core.entities.port_result import Degraded, Ok, Unavailable
from payproof.core.exceptions import RecognitionUnavailable
from payproof.infrastructure.ports.guarded import (
    DisabledPort,
    RecognitionPort,
    RetryPolicy,
    StructuredExtractionPort,
)


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def test_retry_policy_delays():
    policy = RetryPolicy(max_attempts=5, base_delay_seconds=0.5, max_delay_seconds=1.5)
    assert [policy.delay_for(a) for a in (1, 2, 3, 4)] == [0.5, 1.0, 1.5, 1.5]


@pytest.mark.asyncio
async def test_retry_then_ok():
    sleep = SleepRecorder()
    engine = FakeOCR("GCash ₱100.00", failures=1)
    port = RecognitionPort(engine, RetryPolicy(max_attempts=3, base_delay_seconds=0.5), 5.0, sleep)

    result = await port.run(b"img")

    assert isinstance(result, Ok)
    assert result.attempts == 2
    assert result.value.text == "GCash ₱100.00"
    assert sleep.delays == [0.5]
    assert engine.calls == 2


@pytest.mark.asyncio
async def test_exhausted_attempts_unavailable():
    sleep = SleepRecorder()
    port = RecognitionPort(FakeOCR("x", failures=10), RetryPolicy(max_attempts=3, base_delay_seconds=1.0), 5.0, sleep)

    result = await port.run(b"img")

    assert isinstance(result, Unavailable)
    assert result.attempts == 3
    assert "RuntimeError" in result.reason
    assert not result.usable
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_call_raises_port_specific_error():
    port = RecognitionPort(FakeOCR("x", failures=10), RetryPolicy(max_attempts=2, base_delay_seconds=0.0), 5.0, SleepRecorder())
    with pytest.raises(RecognitionUnavailable) as exc:
        await port.call(b"img")
    assert exc.value.attempts == 2


@pytest.mark.asyncio
async def test_timeout_counts_as_failed_attempt():
    port = RecognitionPort(
        FakeOCR("slow", delay=0.3),
        RetryPolicy(max_attempts=2, base_delay_seconds=0.0),
        timeout_seconds=0.05,
        sleep=SleepRecorder(),
    )
    result = await port.run(b"img")
    assert isinstance(result, Unavailable)
    assert result.reason.startswith("timeout")


@pytest.mark.asyncio
async def test_empty_ocr_text_is_degraded():
    port = RecognitionPort(FakeOCR("   "), RetryPolicy(max_attempts=1), 5.0, SleepRecorder())
    result = await port.run(b"img")
    assert isinstance(result, Degraded)
    assert result.reason == "empty_text"
    assert result.value is not None
    assert result.status == "degraded"


@pytest.mark.asyncio
async def test_unparseable_vision_output_is_degraded():
    vision = FakeVision(error="JSON parse error")
    port = StructuredExtractionPort(vision, RetryPolicy(max_attempts=3), 5.0, SleepRecorder())
    result = await port.run(b"img", "")
    assert isinstance(result, Degraded)
    assert result.reason == "unparseable_output"
    # saída degradada não é re-tentada
    assert vision.calls == 1


@pytest.mark.asyncio
async def test_vision_without_fields_is_degraded():
    port = StructuredExtractionPort(FakeVision(), RetryPolicy(max_attempts=1), 5.0, SleepRecorder())
    result = await port.run(b"img", "")
    assert isinstance(result, Degraded)
    assert result.reason == "no_fields"


@pytest.mark.asyncio
async def test_vision_ok_passes_task_hint():
    vision = FakeVision(gcash_fields())
    port = StructuredExtractionPort(vision, RetryPolicy(max_attempts=1), 5.0, SleepRecorder())
    result = await port.run(b"img", "expected amount 1200 PHP")
    assert isinstance(result, Ok)
    assert vision.hints == ["expected amount 1200 PHP"]


@pytest.mark.asyncio
async def test_disabled_port_never_calls_anything():
    result = await DisabledPort("structured_extraction", "vision_disabled").run(b"img", "")
    assert isinstance(result, Unavailable)
    assert result.reason == "vision_disabled"
    assert result.attempts == 0
