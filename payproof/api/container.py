"""
Composition root — monta os adapters concretos a partir do Settings.

Tudo que o app e os scripts precisam sai daqui; testes passam
fakes para os ports externos (OCR, vision, quality gate, publisher).
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

from payproof.config.settings import Settings, get_settings
from payproof.core.interfaces.event_publisher import IEventPublisher
from payproof.core.interfaces.guarded_port import IGuardedPort
from payproof.core.interfaces.ocr_engine import IOCREngine
from payproof.core.interfaces.quality_gate import IQualityGate
from payproof.core.interfaces.vision_extractor import IVisionExtractor
from payproof.core.use_cases.reprocess_failed import ReprocessFailedUseCase
from payproof.core.use_cases.review_decision import ReviewDecisionUseCase
from payproof.core.use_cases.submit_proof import SubmitProofUseCase
from payproof.core.use_cases.verify_payment import VerifyPaymentUseCase
from payproof.infrastructure.db.database import Database
from payproof.infrastructure.db.repository import SqlVerificationStore
from payproof.infrastructure.events.outbox import EventDeliveryLoop, OutboxEventEmitter
from payproof.infrastructure.events.publishers import LoggingEventPublisher, WebhookEventPublisher
from payproof.infrastructure.imaging.opencv_preprocessor import OpenCVImagePreprocessor
from payproof.infrastructure.orders.sql_order_store import SqlOrderStore
from payproof.infrastructure.ports.guarded import (
    DisabledPort,
    RecognitionPort,
    RetryPolicy,
    StructuredExtractionPort,
)
from payproof.infrastructure.quality.opencv_quality_gate import OpenCVQualityGate
from payproof.infrastructure.queue.dispatcher import JobDispatcher
from payproof.infrastructure.rules.decision_table import DecisionTable, DecisionThresholds
from payproof.infrastructure.rules.fusion_engine import FusionConfig, FusionEngine
from payproof.infrastructure.rules.matching_engine import MatchingConfig, MatchingEngine

logger = logging.getLogger(__name__)


# ─── Configs derivadas do Settings ──────────────────────

def retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.port_max_attempts,
        base_delay_seconds=settings.port_base_delay_seconds,
        max_delay_seconds=settings.port_max_delay_seconds,
    )


def fusion_config(settings: Settings) -> FusionConfig:
    return FusionConfig(
        min_amount=Decimal(str(settings.min_amount)),
        max_amount=Decimal(str(settings.max_amount)),
        single_source_ceiling=settings.single_source_ceiling,
        corroboration_boost=settings.corroboration_boost,
        contradiction_penalty=settings.contradiction_penalty,
        max_proof_age_days=settings.max_proof_age_days,
        future_skew_minutes=settings.future_skew_minutes,
        local_utc_offset_hours=settings.local_utc_offset_hours,
        default_currency=settings.default_currency,
    )


def matching_config(settings: Settings) -> MatchingConfig:
    return MatchingConfig(
        amount_tolerance=Decimal(str(settings.amount_tolerance)),
        min_match_score=settings.min_match_score,
        auto_approve_match_score=settings.auto_approve_match_score,
        partial_reference_penalty=settings.partial_reference_penalty,
        candidate_window_days=settings.candidate_window_days,
        future_skew_minutes=settings.future_skew_minutes,
    )


def decision_thresholds(settings: Settings) -> DecisionThresholds:
    return DecisionThresholds(
        auto_approve=settings.auto_approve_threshold,
        conditional=settings.conditional_threshold,
        review_floor=settings.review_floor,
    )


def build_publisher(settings: Settings) -> IEventPublisher:
    if settings.event_publisher == "webhook":
        return WebhookEventPublisher(settings.event_webhook_url, settings.event_webhook_timeout_seconds)
    return LoggingEventPublisher()


@dataclass
class Container:
    settings: Settings
    db: Database
    store: SqlVerificationStore
    orders: SqlOrderStore
    emitter: OutboxEventEmitter
    publisher: IEventPublisher
    delivery: EventDeliveryLoop
    recognition: IGuardedPort
    structured_extraction: IGuardedPort
    ocr_engine: IOCREngine | None
    vision_extractor: IVisionExtractor | None
    verify: VerifyPaymentUseCase
    dispatcher: JobDispatcher
    submit: SubmitProofUseCase
    review: ReviewDecisionUseCase
    reprocess: ReprocessFailedUseCase

    def adapters_ready(self) -> dict[str, bool]:
        return {
            "recognition": self.ocr_engine is not None and getattr(self.ocr_engine, "ready", True),
            "structured_extraction": self.vision_extractor is not None
            and getattr(self.vision_extractor, "ready", True),
        }


def build_container(
    settings: Settings | None = None,
    db: Database | None = None,
    ocr_engine: IOCREngine | None = None,
    vision_extractor: IVisionExtractor | None = None,
    quality_gate: IQualityGate | None = None,
    publisher: IEventPublisher | None = None,
    sleep=asyncio.sleep,
) -> Container:
    """
    Monta o grafo de dependências.

    Args:
        settings: Settings (default: get_settings()).
        db: Database já criada (testes); senão usa settings.database_url.
        ocr_engine / vision_extractor / quality_gate / publisher: overrides.
        sleep: função de espera usada nos backoffs (testes passam uma no-op).
    """
    settings = settings or get_settings()
    db = db or Database(settings.database_url)

    store = SqlVerificationStore(db)
    orders = SqlOrderStore(db)
    emitter = OutboxEventEmitter(db)
    publisher = publisher or build_publisher(settings)
    delivery = EventDeliveryLoop(
        db,
        publisher,
        interval_seconds=settings.event_poll_interval_seconds,
        batch_size=settings.event_batch_size,
        max_attempts=settings.event_max_attempts,
    )

    # ── Ports externos ──
    policy = retry_policy(settings)
    if ocr_engine is None:
        from payproof.infrastructure.ocr.easyocr_engine import EasyOCREngine
        ocr_engine = EasyOCREngine(
            langs=settings.ocr_langs,
            use_gpu=settings.ocr_use_gpu,
            min_confidence=settings.ocr_min_confidence,
        )
    recognition = RecognitionPort(ocr_engine, policy, settings.ocr_timeout_seconds, sleep)

    if vision_extractor is None and settings.vision_enabled and settings.gemini_api_key:
        from payproof.infrastructure.llm.gemini_vision_extractor import GeminiVisionExtractor
        vision_extractor = GeminiVisionExtractor(api_key=settings.gemini_api_key, model_name=settings.gemini_model)

    structured_extraction: IGuardedPort
    if vision_extractor is not None:
        structured_extraction = StructuredExtractionPort(
            vision_extractor, policy, settings.vision_timeout_seconds, sleep
        )
    else:
        logger.warning("Vision extraction disabled (no GEMINI_API_KEY or VISION_ENABLED=false)")
        structured_extraction = DisabledPort("structured_extraction", "vision_disabled")

    quality_gate = quality_gate or OpenCVQualityGate(
        blur_threshold=settings.blur_threshold,
        brightness_min=settings.brightness_min,
        brightness_max=settings.brightness_max,
        min_resolution=settings.min_resolution,
    )

    # ── Use cases ──
    verify = VerifyPaymentUseCase(
        recognition=recognition,
        structured_extraction=structured_extraction,
        quality_gate=quality_gate,
        fusion=FusionEngine(fusion_config(settings)),
        matching=MatchingEngine(matching_config(settings)),
        decisions=DecisionTable(decision_thresholds(settings)),
        store=store,
        orders=orders,
        events=emitter,
        candidate_lookup_timeout=settings.candidate_lookup_timeout_seconds,
        claim_timeout=settings.claim_timeout_seconds,
        persistence_timeout=settings.persistence_timeout_seconds,
        candidate_window_days=settings.candidate_window_days,
    )
    dispatcher = JobDispatcher(
        handler=verify.process,
        failure_handler=verify.record_failure,
        concurrency=settings.worker_concurrency,
        reserved_high=settings.reserved_high_priority_workers,
        max_attempts=settings.job_max_attempts,
        retry_backoff=settings.job_backoff_seconds,
        sleep=sleep,
    )
    submit = SubmitProofUseCase(
        preprocessor=OpenCVImagePreprocessor(
            max_bytes=settings.max_image_bytes,
            allowed_formats=settings.allowed_formats,
            min_width=settings.min_image_width,
            min_height=settings.min_image_height,
            max_width=settings.max_image_width,
            max_height=settings.max_image_height,
            jpeg_quality=settings.image_quality,
        ),
        store=store,
        queue=dispatcher,
        dedup_window_seconds=settings.dedup_window_seconds,
        max_batch_size=settings.max_batch_size,
        batch_concurrency=settings.batch_concurrency,
    )
    reprocess = ReprocessFailedUseCase(store=store, queue=dispatcher, max_limit=settings.reprocess_max_limit)
    review = ReviewDecisionUseCase(store=store, orders=orders, events=emitter)

    return Container(
        settings=settings,
        db=db,
        store=store,
        orders=orders,
        emitter=emitter,
        publisher=publisher,
        delivery=delivery,
        recognition=recognition,
        structured_extraction=structured_extraction,
        ocr_engine=ocr_engine,
        vision_extractor=vision_extractor,
        verify=verify,
        dispatcher=dispatcher,
        submit=submit,
        review=review,
        reprocess=reprocess,
    )
