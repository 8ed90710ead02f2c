import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import cv2
import numpy as np
import pytest

from payproof.api.container import build_container
from payproof.config.settings import Settings
from payproof.core.entities.job import Priority, ProcessingJob, SourcePlatform, SubmissionContext
from payproof.core.interfaces.event_publisher import IEventPublisher
from payproof.core.interfaces.ocr_engine import IOCREngine, OCRResult
from payproof.core.interfaces.quality_gate import IQualityGate, QualityResult
from payproof.core.interfaces.vision_extractor import IVisionExtractor, VisionExtraction, VisionFields
from payproof.infrastructure.db.database import Database

GCASH_OCR_TEXT = (
    "GCash\n"
    "Sent via GCash\n"
    "Amount\n"
    "₱1,200.00\n"
    "Ref No. BP2024-001\n"
    "To: Juan Dela Cruz"
)


# ─── Fakes dos ports externos ───────────────────────────

class FakeOCR(IOCREngine):
    def __init__(self, text: str = "", confidence: float = 0.95, failures: int = 0, delay: float = 0.0):
        self.text = text
        self.confidence = confidence
        self.failures = failures
        self.delay = delay
        self.calls = 0

    def extract_text(self, image_bytes: bytes) -> OCRResult:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.calls <= self.failures:
            raise RuntimeError("ocr backend down")
        return OCRResult(text=self.text, confidence=self.confidence, language="en", engine="fake")


class FakeVision(IVisionExtractor):
    def __init__(
        self,
        fields: VisionFields | None = None,
        confidence: float = 0.95,
        failures: int = 0,
        error: str | None = None,
    ):
        self.fields = fields or VisionFields()
        self.confidence = confidence
        self.failures = failures
        self.error = error
        self.calls = 0
        self.hints: list[str] = []

    def extract_structured(self, image_bytes: bytes, task_hint: str = "") -> VisionExtraction:
        self.calls += 1
        self.hints.append(task_hint)
        if self.calls <= self.failures:
            raise RuntimeError("vision backend down")
        return VisionExtraction(
            description="payment confirmation",
            fields=self.fields,
            confidence=self.confidence,
            model_id="fake-vision",
            error=self.error,
        )


class FakeQualityGate(IQualityGate):
    def __init__(self, score: float = 1.0):
        self.score = score

    def evaluate(self, image_bytes: bytes) -> QualityResult:
        return QualityResult(quality_ok=self.score >= 0.5, quality_score=self.score)


class RecordingPublisher(IEventPublisher):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published: list[tuple[str, dict]] = []

    def publish(self, dedupe_key: str, payload: dict) -> None:
        if self.fail:
            raise ConnectionError("consumer unreachable")
        self.published.append((dedupe_key, payload))


async def no_sleep(_seconds: float) -> None:
    return None


# ─── Dados sintéticos ───────────────────────────────────

def make_image(seed: int = 0, width: int = 480, height: int = 640, ext: str = ".png") -> bytes:
    """Screenshot sintético com linhas de texto (conteúdo varia com o seed)."""
    rng = np.random.default_rng(seed)
    img = np.full((height, width, 3), 235, dtype=np.uint8)
    for i in range(max(1, (height - 40) // 45)):
        line = f"LINE {seed}-{i} {int(rng.integers(0, 10**6))}"
        cv2.putText(img, line, (20, 40 + i * 45), cv2.FONT_HERSHEY_SIMPLEX, 0.8, (20, 20, 20), 2)
    ok, buf = cv2.imencode(ext, img)
    assert ok
    return buf.tobytes()


def gcash_fields(
    amount: str = "1200.00",
    reference: str | None = "BP2024-001",
    currency: str | None = "PHP",
    timestamp: datetime | None = None,
) -> VisionFields:
    ts = timestamp or datetime.now(timezone.utc) - timedelta(hours=1)
    return VisionFields(
        method="GCash",
        amount=Decimal(amount),
        currency=currency,
        sender="Juan Dela Cruz",
        recipient="BP Store",
        reference=reference,
        timestamp=ts.isoformat(),
    )


def make_job(
    job_id: str = "job-1",
    extraction_id: str = "ext-1",
    priority: Priority = Priority.NORMAL,
    image_bytes: bytes = b"",
    context: SubmissionContext | None = None,
) -> ProcessingJob:
    return ProcessingJob(
        id=job_id,
        extraction_id=extraction_id,
        image_bytes=image_bytes,
        fingerprint=f"fp-{job_id}",
        source_platform=SourcePlatform.WHATSAPP,
        submitted_by="buyer-1",
        priority=priority,
        submission_context=context,
    )


# ─── Fixtures ───────────────────────────────────────────

@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'payproof-test.db'}",
        gemini_api_key="",
        port_base_delay_seconds=0.0,
        port_max_attempts=3,
        job_backoff_seconds=0.0,
        job_max_attempts=3,
        worker_concurrency=2,
        reserved_high_priority_workers=1,
        event_poll_interval_seconds=0.05,
    )


@pytest.fixture
def db(settings):
    database = Database(settings.database_url)
    database.init_db()
    yield database
    database.dispose()


@pytest.fixture
def make_container(settings, db):
    """Factory: container com fakes nos ports externos."""

    def _make(ocr=None, vision=None, quality=None, publisher=None, **overrides):
        cfg = settings.model_copy(update=overrides) if overrides else settings
        return build_container(
            cfg,
            db=db,
            ocr_engine=ocr or FakeOCR(GCASH_OCR_TEXT),
            vision_extractor=vision,
            quality_gate=quality or FakeQualityGate(1.0),
            publisher=publisher or RecordingPublisher(),
            sleep=no_sleep,
        )

    return _make


@pytest.fixture
def seed_order(db):
    """Insere uma transação pendente."""
    from payproof.infrastructure.orders.sql_order_store import SqlOrderStore

    orders = SqlOrderStore(db)

    def _seed(
        candidate_id: str = "order-1",
        reference: str = "BP2024-001",
        amount: str = "1200.00",
        currency: str = "PHP",
        methods: tuple[str, ...] = ("gcash",),
        hours_ago: float = 2,
    ):
        return orders.add_pending(
            candidate_id,
            reference=reference,
            expected_amount=Decimal(amount),
            currency=currency,
            buyer_identity="Juan Dela Cruz",
            payment_methods=list(methods),
            created_at=datetime.now(timezone.utc) - timedelta(hours=hours_ago),
        )

    return _seed


@pytest.fixture
def run_pipeline():
    """Submete uma imagem e espera o dispatcher terminar."""

    async def _run(container, image_bytes: bytes, **kwargs):
        receipt = await container.submit.execute(image_bytes, **kwargs)
        await container.dispatcher.join()
        return receipt

    return _run
