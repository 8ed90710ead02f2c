"""
Guarded ports — timeout + retry em volta dos adapters externos.

Os adapters (EasyOCR, Gemini) são bloqueantes e podem travar ou
falhar de forma transitória. Cada chamada roda numa thread sob
`asyncio.wait_for`; falhas são re-tentadas com backoff exponencial
e o resultado final é sempre um PortResult etiquetado:

    Ok(value)            → saída utilizável
    Degraded(reason)     → chamada voltou, mas a saída não serve
    Unavailable(reason)  → tentativas esgotadas
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from payproof.core.entities.port_result import Degraded, Ok, PortResult, Unavailable
from payproof.core.exceptions import (
    ExtractionUnavailable,
    PortUnavailableError,
    RecognitionUnavailable,
)
from payproof.core.interfaces.guarded_port import IGuardedPort
from payproof.core.interfaces.ocr_engine import IOCREngine, OCRResult
from payproof.core.interfaces.vision_extractor import IVisionExtractor, VisionExtraction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Política de retry explícita por adapter."""
    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Backoff antes da tentativa `attempt + 1`: base, 2·base, 4·base... com teto."""
        return min(self.max_delay_seconds, self.base_delay_seconds * (2 ** max(0, attempt - 1)))


class GuardedPort(IGuardedPort):
    """
    Wrapper genérico: timeout por tentativa + retry com backoff.

    Subclasses definem `_degraded_reason` para classificar uma saída
    que voltou sem erro mas não é utilizável.
    """

    name = "port"
    unavailable_error: type[PortUnavailableError] = PortUnavailableError

    def __init__(
        self,
        call: Callable,
        policy: RetryPolicy | None = None,
        timeout_seconds: float = 30.0,
        sleep: Callable = asyncio.sleep,
    ):
        self._call = call
        self.policy = policy or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep

    def _degraded_reason(self, value) -> str | None:
        return None

    async def call(self, *args):
        """
        Executa com retry e devolve o valor cru.

        Raises:
            PortUnavailableError (subclasse do port) quando as tentativas acabam.
        """
        last_error = "no attempts made"
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(self._call, *args), timeout=self.timeout_seconds
                ), attempt
            except asyncio.TimeoutError:
                last_error = f"timeout after {self.timeout_seconds}s"
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"

            if attempt < self.policy.max_attempts:
                delay = self.policy.delay_for(attempt)
                logger.warning(
                    f"{self.name} attempt {attempt}/{self.policy.max_attempts} failed "
                    f"({last_error}); retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        raise self.unavailable_error(last_error, attempts=self.policy.max_attempts)

    async def run(self, *args) -> PortResult:
        """Executa e devolve o resultado etiquetado (nunca levanta)."""
        t0 = time.perf_counter()
        try:
            value, attempts = await self.call(*args)
        except PortUnavailableError as e:
            latency = round((time.perf_counter() - t0) * 1000, 1)
            logger.warning(f"{self.name} unavailable: {e}")
            return Unavailable(reason=e.reason, attempts=e.attempts, latency_ms=latency)

        latency = round((time.perf_counter() - t0) * 1000, 1)
        reason = self._degraded_reason(value)
        if reason:
            logger.warning(f"{self.name} degraded: {reason}")
            return Degraded(reason=reason, value=value, attempts=attempts, latency_ms=latency)
        return Ok(value=value, attempts=attempts, latency_ms=latency)


class RecognitionPort(GuardedPort):
    """OCR com timeout/retry."""

    name = "recognition"
    unavailable_error = RecognitionUnavailable

    def __init__(self, engine: IOCREngine, policy: RetryPolicy | None = None,
                 timeout_seconds: float = 30.0, sleep: Callable = asyncio.sleep):
        super().__init__(engine.extract_text, policy, timeout_seconds, sleep)
        self.engine = engine

    def _degraded_reason(self, value: OCRResult) -> str | None:
        if not value.text.strip():
            return "empty_text"
        return None


class StructuredExtractionPort(GuardedPort):
    """Vision model com timeout/retry."""

    name = "structured_extraction"
    unavailable_error = ExtractionUnavailable

    def __init__(self, extractor: IVisionExtractor, policy: RetryPolicy | None = None,
                 timeout_seconds: float = 45.0, sleep: Callable = asyncio.sleep):
        super().__init__(extractor.extract_structured, policy, timeout_seconds, sleep)
        self.extractor = extractor

    def _degraded_reason(self, value: VisionExtraction) -> str | None:
        if value.error:
            return "unparseable_output"
        if value.fields.is_empty():
            return "no_fields"
        return None


class DisabledPort(IGuardedPort):
    """Port desligado por configuração: sempre Unavailable, sem chamar nada."""

    def __init__(self, name: str, reason: str = "disabled"):
        self.name = name
        self.reason = reason

    async def run(self, *args) -> PortResult:
        return Unavailable(reason=self.reason, attempts=0)
