"""
Extraction Fusion Engine — Implementação COMPLETA.

Combina OCR (texto bruto) e vision model (campos tipados) em um
único PaymentExtraction com confiança calibrada.

Regras:
    1. Ambos os ports OK → campos do vision vencem; o OCR corrobora
       (boost) ou contradiz (penalidade + revisão).
    2. Valor sem corroboração das duas fontes (só um port OK, ou um
       deles sem valor) → confiança limitada pelo teto de fonte única
       (abaixo do limiar de auto-aprovação), `amount_uncorroborated`
       quando os dois ports responderam.
    3. Nenhum valor em lugar nenhum → confiança 0, `no_data_extracted`.

    overall = 0.7 × consistência + 0.3 × confiança das fontes
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from payproof.core.entities.extraction import (
    ExtractionFlag,
    PaymentCandidate,
    PaymentExtraction,
    Provenance,
)
from payproof.core.entities.job import ProcessingJob
from payproof.core.entities.port_result import PortResult
from payproof.core.interfaces.scoring import IFusionEngine
from payproof.core.interfaces.ocr_engine import OCRResult
from payproof.core.interfaces.vision_extractor import VisionExtraction
from payproof.infrastructure.rules import payment_patterns as patterns

logger = logging.getLogger(__name__)

CONSISTENCY_WEIGHTS = {
    "amount": 0.30,
    "reference": 0.25,
    "method": 0.20,
    "timestamp": 0.15,
    "legibility": 0.10,
}
CONSISTENCY_SHARE = 0.7
SOURCE_SHARE = 0.3


@dataclass(frozen=True)
class FusionConfig:
    min_amount: Decimal = Decimal("1.00")
    max_amount: Decimal = Decimal("100000.00")
    single_source_ceiling: float = 0.70
    corroboration_boost: float = 0.05
    contradiction_penalty: float = 0.6
    max_proof_age_days: int = 90
    future_skew_minutes: int = 10
    local_utc_offset_hours: int = 8
    default_currency: str = "PHP"
    max_candidates: int = 5


@dataclass
class OCRFacts:
    """O que o parsing determinístico achou no texto OCR."""
    amounts: list[patterns.AmountHit] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    methods: list[str] = field(default_factory=list)
    currency: str | None = None
    timestamps: list[datetime] = field(default_factory=list)
    text: str = ""

    @property
    def marked_currencies(self) -> set[str]:
        return {h.currency for h in self.amounts if h.currency}


class FusionEngine(IFusionEngine):
    """Fusão OCR + vision em um registro de extração."""

    def __init__(self, config: FusionConfig | None = None):
        self.config = config or FusionConfig()

    # ─── API ────────────────────────────────────────────

    def parse_ocr(self, ocr: OCRResult | None) -> OCRFacts:
        if ocr is None or not ocr.text.strip():
            return OCRFacts()
        text = ocr.text
        return OCRFacts(
            amounts=patterns.extract_amounts(text, self.config.min_amount, self.config.max_amount),
            references=patterns.extract_references(text),
            methods=patterns.detect_methods(text),
            currency=patterns.detect_currency(text),
            timestamps=patterns.extract_timestamps(text, self.config.local_utc_offset_hours),
            text=text,
        )

    def fuse(
        self,
        job: ProcessingJob,
        ocr_result: PortResult,
        vision_result: PortResult,
        legibility: float,
        started_at: float | None = None,
        now: datetime | None = None,
    ) -> PaymentExtraction:
        """
        Funde os dois resultados de port em um PaymentExtraction.

        Args:
            job: Job em processamento (id da extração pré-alocado).
            ocr_result / vision_result: Ok | Degraded | Unavailable.
            legibility: Score do quality gate (0-1).
            started_at: time.perf_counter() do início do job.
            now: Relógio de referência (testes).
        """
        now = now or datetime.now(timezone.utc)
        legibility = max(0.0, min(float(legibility), 1.0))

        ocr: OCRResult | None = ocr_result.value
        vision: VisionExtraction | None = vision_result.value
        ocr_ok = ocr_result.usable
        vision_ok = vision_result.usable

        flags: list[str] = []
        if not ocr_ok:
            flags.append(ExtractionFlag.DEGRADED_OCR.value)
        if not vision_ok:
            flags.append(ExtractionFlag.DEGRADED_VISION.value)

        facts = self.parse_ocr(ocr) if ocr_ok else OCRFacts()
        fields = vision.fields if vision_ok else None
        vision_amount = self._in_range(fields.amount) if fields else None
        context = job.submission_context

        primary: PaymentCandidate | None = None
        corroborated = 0
        amount_corroborated = False
        contradicted = False
        explicit_currency = False

        if vision_amount is not None:
            # --- Vision lidera; OCR corrobora ou contradiz ---
            currency = fields.currency or facts.currency
            explicit_currency = bool(currency)
            currency = currency or (context.currency if context else None) or self.config.default_currency

            method = patterns.normalize_method(fields.method or fields.bank_name)
            if method == "unknown" and facts.methods:
                method = facts.methods[0]

            reference = fields.reference or (facts.references[0] if facts.references else None)
            timestamp = patterns.parse_timestamp(fields.timestamp, self.config.local_utc_offset_hours)
            if timestamp is None and facts.timestamps:
                timestamp = facts.timestamps[0]

            if ocr_ok:
                ocr_amounts = {h.amount for h in facts.amounts}
                if vision_amount in ocr_amounts:
                    corroborated += 1
                    amount_corroborated = True
                    flags.append(ExtractionFlag.AMOUNT_CORROBORATED.value)
                elif ocr_amounts:
                    contradicted = True
                    flags.append(ExtractionFlag.OCR_AMOUNT_CONTRADICTION.value)
                else:
                    flags.append(ExtractionFlag.AMOUNT_UNCORROBORATED.value)

            if ocr_ok and facts.text:
                if fields.reference:
                    if patterns.reference_in_text(fields.reference, facts.text):
                        corroborated += 1
                        flags.append(ExtractionFlag.REFERENCE_CORROBORATED.value)
                    elif facts.references:
                        contradicted = True
                        flags.append(ExtractionFlag.OCR_REFERENCE_CONTRADICTION.value)

                if fields.currency and facts.marked_currencies and fields.currency not in facts.marked_currencies:
                    contradicted = True
                    flags.append(ExtractionFlag.CURRENCY_CONTRADICTION.value)

            primary = PaymentCandidate(
                amount=vision_amount,
                currency=currency,
                method=method,
                sender=fields.sender,
                recipient=fields.recipient,
                reference=reference,
                timestamp=timestamp,
                provenance=Provenance.COMBINED if amount_corroborated else Provenance.VISION,
            )

        elif facts.amounts:
            # --- Só o OCR achou valor ---
            if vision_ok:
                flags.append(ExtractionFlag.AMOUNT_UNCORROBORATED.value)
            top = next((h for h in facts.amounts if h.currency), facts.amounts[0])
            currency = top.currency or facts.currency or (fields.currency if fields else None)
            explicit_currency = bool(currency)
            currency = currency or (context.currency if context else None) or self.config.default_currency

            method = facts.methods[0] if facts.methods else "unknown"
            if method == "unknown" and fields:
                method = patterns.normalize_method(fields.method or fields.bank_name)

            primary = PaymentCandidate(
                amount=top.amount,
                currency=currency,
                method=method,
                sender=fields.sender if fields else None,
                recipient=fields.recipient if fields else None,
                reference=facts.references[0] if facts.references else (fields.reference if fields else None),
                timestamp=facts.timestamps[0] if facts.timestamps else None,
                provenance=Provenance.OCR,
            )

        # --- Confiança ---
        if primary is None:
            flags.append(ExtractionFlag.NO_DATA_EXTRACTED.value)
            overall = 0.0
            candidates: tuple[PaymentCandidate, ...] = ()
        else:
            consistency = self._consistency(primary, explicit_currency, legibility, now)
            source = self._source_confidence(ocr if ocr_ok else None, vision if vision_ok else None)
            overall = CONSISTENCY_SHARE * consistency + SOURCE_SHARE * source
            overall += self.config.corroboration_boost * corroborated
            if contradicted:
                overall *= self.config.contradiction_penalty
            if not amount_corroborated:
                overall = min(overall, self.config.single_source_ceiling)
            overall = round(max(0.0, min(overall, 1.0)), 4)

            primary = replace(primary, confidence=overall)
            candidates = self._candidates(primary, facts, overall)

        requires_review = (
            primary is None
            or not (ocr_ok and vision_ok)
            or not amount_corroborated
            or contradicted
        )

        elapsed = (time.perf_counter() - started_at) * 1000 if started_at is not None else 0.0

        extraction = PaymentExtraction(
            id=job.extraction_id,
            job_id=job.id,
            ocr=ocr,
            vision=vision,
            candidates=candidates,
            overall_confidence=overall,
            requires_review=requires_review,
            flags=tuple(flags),
            legibility=round(legibility, 3),
            ocr_status=ocr_result.status,
            vision_status=vision_result.status,
            processing_time_ms=round(elapsed, 1),
            created_at=now,
        )

        logger.info(
            f"Fused extraction {extraction.id} (job {job.id}): confidence={overall:.3f} "
            f"candidates={len(candidates)} flags={list(flags)}"
        )
        return extraction

    # ─── Scoring ────────────────────────────────────────

    def timestamp_plausible(self, ts: datetime | None, now: datetime) -> bool | None:
        """True/False, ou None se não houver timestamp."""
        if ts is None:
            return None
        earliest = now - timedelta(days=self.config.max_proof_age_days)
        latest = now + timedelta(minutes=self.config.future_skew_minutes)
        return earliest <= ts <= latest

    def _consistency(
        self, candidate: PaymentCandidate, explicit_currency: bool, legibility: float, now: datetime
    ) -> float:
        amount_score = 1.0 if explicit_currency else 0.7

        reference_score = 0.0
        if candidate.reference:
            ref = candidate.reference.strip()
            well_formed = 6 <= len(ref) <= 24 and any(c.isdigit() for c in ref) and all(
                c.isalnum() or c == "-" for c in ref
            )
            reference_score = 1.0 if well_formed else 0.5

        known = patterns.method_currencies(candidate.method)
        if not known:
            method_score = 0.0
        elif candidate.currency in known:
            method_score = 1.0
        else:
            method_score = 0.5

        plausible = self.timestamp_plausible(candidate.timestamp, now)
        timestamp_score = 0.5 if plausible is None else (1.0 if plausible else 0.0)

        w = CONSISTENCY_WEIGHTS
        return (
            w["amount"] * amount_score
            + w["reference"] * reference_score
            + w["method"] * method_score
            + w["timestamp"] * timestamp_score
            + w["legibility"] * legibility
        )

    @staticmethod
    def _source_confidence(ocr: OCRResult | None, vision: VisionExtraction | None) -> float:
        confs = []
        if ocr is not None:
            confs.append(max(0.0, min(ocr.confidence, 1.0)))
        if vision is not None:
            confs.append(max(0.0, min(vision.confidence, 1.0)))
        return sum(confs) / len(confs) if confs else 0.0

    def _candidates(
        self, primary: PaymentCandidate, facts: OCRFacts, overall: float
    ) -> tuple[PaymentCandidate, ...]:
        """Primário + leituras alternativas do OCR, sem repetir (valor, moeda)."""
        result = [primary]
        seen = {(primary.amount, primary.currency)}
        for hit in facts.amounts:
            if len(result) >= self.config.max_candidates:
                break
            currency = hit.currency or primary.currency
            if (hit.amount, currency) in seen:
                continue
            seen.add((hit.amount, currency))
            result.append(PaymentCandidate(
                amount=hit.amount,
                currency=currency,
                method=primary.method,
                reference=primary.reference,
                timestamp=primary.timestamp,
                confidence=round(overall * 0.5, 4),
                provenance=Provenance.OCR,
            ))
        return tuple(result)

    def _in_range(self, amount: Decimal | None) -> Decimal | None:
        if amount is None:
            return None
        if not (self.config.min_amount <= amount <= self.config.max_amount):
            logger.debug(f"Discarding out-of-range amount {amount}")
            return None
        return amount