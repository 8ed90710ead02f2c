"""
Tests for the Fusion Engine.

Covers:
  - OCR corrobora o vision → COMBINED + boost
  - OCR contradiz → penalidade + revisão
  - Teto de fonte única (também quando só uma fonte leu o valor)
  - Nenhum dado → confiança 0
  - Valor fora da faixa descartado
  - Limites da confiança
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import GCASH_OCR_TEXT, gcash_fields, make_job
from payproof.core.entities.extraction import ExtractionFlag, Provenance
from payproof.core.entities.job import SubmissionContext
from payproof.core.entities.port_result import Degraded, Ok, Unavailable
from payproof.core.interfaces.ocr_engine import OCRResult
from payproof.core.interfaces.vision_extractor import VisionExtraction, VisionFields
from payproof.infrastructure.rules.fusion_engine import FusionConfig, FusionEngine

NOW = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)


def _ocr(text: str = GCASH_OCR_TEXT, confidence: float = 0.95):
    return Ok(OCRResult(text=text, confidence=confidence, engine="test"))


def _vision(fields: VisionFields | None = None, confidence: float = 0.95):
    fields = fields or gcash_fields(timestamp=NOW - timedelta(hours=1))
    return Ok(VisionExtraction(description="receipt", fields=fields, confidence=confidence))


def _fuse(ocr, vision, legibility: float = 1.0, job=None):
    return FusionEngine().fuse(job or make_job(), ocr, vision, legibility, now=NOW)


# ═══════════════════════════════════════════════════════════════
# Duas fontes
# ═══════════════════════════════════════════════════════════════


def test_corroborated_fields_are_combined():
    extraction = _fuse(_ocr(), _vision())

    primary = extraction.primary
    assert primary.provenance == Provenance.COMBINED
    assert primary.amount == Decimal("1200.00")
    assert primary.currency == "PHP"
    assert primary.method == "gcash"
    assert primary.reference == "BP2024-001"
    assert extraction.has_flag(ExtractionFlag.AMOUNT_CORROBORATED)
    assert extraction.has_flag(ExtractionFlag.REFERENCE_CORROBORATED)
    assert extraction.overall_confidence == 1.0
    assert primary.confidence == extraction.overall_confidence
    assert not extraction.requires_review
    assert extraction.ocr_status == "ok" and extraction.vision_status == "ok"


def test_amount_contradiction_penalizes_confidence():
    fields = gcash_fields(amount="750.00", timestamp=NOW - timedelta(hours=1))
    extraction = _fuse(_ocr(), _vision(fields))

    assert extraction.has_flag(ExtractionFlag.OCR_AMOUNT_CONTRADICTION)
    assert extraction.primary.amount == Decimal("750.00")
    # consistência 1.0, fontes 0.95, boost de uma corroboração (referência), × 0.6
    assert extraction.overall_confidence == pytest.approx((0.7 + 0.285 + 0.05) * 0.6, abs=1e-4)
    assert extraction.requires_review


def test_currency_contradiction_flagged():
    fields = gcash_fields(currency="MYR", timestamp=NOW - timedelta(hours=1))
    extraction = _fuse(_ocr(), _vision(fields))
    assert extraction.has_flag(ExtractionFlag.CURRENCY_CONTRADICTION)
    assert extraction.requires_review


def test_alternative_ocr_amounts_become_extra_candidates():
    text = GCASH_OCR_TEXT + "\nService fee ₱15.00"
    extraction = _fuse(_ocr(text), _vision())

    assert len(extraction.candidates) == 2
    alt = extraction.candidates[1]
    assert alt.amount == Decimal("15.00")
    assert alt.provenance == Provenance.OCR
    assert alt.confidence == pytest.approx(extraction.overall_confidence * 0.5, abs=1e-4)


# ═══════════════════════════════════════════════════════════════
# Fonte única / sem dados
# ═══════════════════════════════════════════════════════════════


def test_vision_only_capped_by_single_source_ceiling():
    extraction = _fuse(Unavailable(reason="timeout", attempts=3), _vision())

    assert extraction.primary.provenance == Provenance.VISION
    assert extraction.overall_confidence == 0.70
    assert extraction.has_flag(ExtractionFlag.DEGRADED_OCR)
    assert extraction.ocr_status == "unavailable"
    assert extraction.requires_review


def test_ocr_only_capped_by_single_source_ceiling():
    extraction = _fuse(_ocr(), Unavailable(reason="vision_disabled"))

    primary = extraction.primary
    assert primary.provenance == Provenance.OCR
    assert primary.amount == Decimal("1200.00")
    assert primary.reference == "BP2024-001"
    assert primary.method == "gcash"
    assert extraction.overall_confidence == 0.70
    assert extraction.has_flag(ExtractionFlag.DEGRADED_VISION)


def test_ocr_amount_without_vision_amount_is_capped():
    fields = VisionFields(method="GCash", reference="BP2024-001")
    extraction = _fuse(_ocr(), _vision(fields))

    primary = extraction.primary
    assert primary.provenance == Provenance.OCR
    assert primary.amount == Decimal("1200.00")
    assert extraction.overall_confidence == 0.70
    assert extraction.has_flag(ExtractionFlag.AMOUNT_UNCORROBORATED)
    assert not extraction.has_flag(ExtractionFlag.DEGRADED_VISION)
    assert extraction.requires_review


def test_vision_amount_missing_from_ocr_text_is_capped():
    fields = gcash_fields(amount="750.00", reference="BP2024-002", timestamp=NOW - timedelta(hours=1))
    extraction = _fuse(_ocr("GCash\nSent via GCash"), _vision(fields))

    assert extraction.primary.provenance == Provenance.VISION
    assert extraction.overall_confidence == 0.70
    assert extraction.has_flag(ExtractionFlag.AMOUNT_UNCORROBORATED)
    assert not extraction.has_flag(ExtractionFlag.OCR_AMOUNT_CONTRADICTION)
    assert extraction.requires_review


def test_reference_corroboration_alone_is_not_combined():
    extraction = _fuse(_ocr("GCash\nRef No. BP2024-001"), _vision())

    assert extraction.has_flag(ExtractionFlag.REFERENCE_CORROBORATED)
    assert extraction.has_flag(ExtractionFlag.AMOUNT_UNCORROBORATED)
    assert extraction.primary.provenance == Provenance.VISION
    assert extraction.overall_confidence == 0.70


def test_ceiling_is_configurable():
    engine = FusionEngine(FusionConfig(single_source_ceiling=0.5))
    extraction = engine.fuse(make_job(), _ocr(), Unavailable(reason="down"), 1.0, now=NOW)
    assert extraction.overall_confidence == 0.5


def test_no_data_anywhere():
    extraction = _fuse(
        Degraded(reason="empty_text", value=OCRResult(text="", confidence=0.0)),
        Unavailable(reason="vision_disabled"),
        legibility=0.0,
    )
    assert extraction.candidates == ()
    assert extraction.primary is None
    assert extraction.overall_confidence == 0.0
    assert extraction.has_flag(ExtractionFlag.NO_DATA_EXTRACTED)
    assert extraction.requires_review
    assert extraction.ocr_status == "degraded"


def test_out_of_range_vision_amount_discarded():
    fields = gcash_fields(amount="500000.00", timestamp=NOW - timedelta(hours=1))
    extraction = _fuse(_ocr(), _vision(fields))

    assert extraction.primary.amount == Decimal("1200.00")
    assert extraction.primary.provenance == Provenance.OCR


def test_context_currency_used_when_nothing_explicit():
    fields = VisionFields(amount=Decimal("99.00"), method="Some Wallet")
    job = make_job(context=SubmissionContext(currency="MYR"))
    extraction = _fuse(Unavailable(reason="down"), _vision(fields), job=job)
    assert extraction.primary.currency == "MYR"


# ═══════════════════════════════════════════════════════════════
# Limites
# ═══════════════════════════════════════════════════════════════


@pytest.mark.parametrize("legibility", [-3.0, 0.0, 0.4, 1.0, 7.5])
def test_confidence_always_within_bounds(legibility):
    extraction = _fuse(_ocr(), _vision(), legibility=legibility)
    assert 0.0 <= extraction.overall_confidence <= 1.0
    assert 0.0 <= extraction.legibility <= 1.0


def test_implausible_timestamp_lowers_confidence():
    old = gcash_fields(timestamp=NOW - timedelta(days=365))
    fresh = _fuse(_ocr(confidence=0.5), _vision(confidence=0.5))
    stale = _fuse(_ocr(confidence=0.5), _vision(old, confidence=0.5))
    assert stale.overall_confidence < fresh.overall_confidence
