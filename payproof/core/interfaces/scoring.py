"""
Contract: Scoring Engines

Fusão, matching e decisão são regras determinísticas (funções puras
sobre entidades). As implementações ficam em infrastructure/rules;
os use cases dependem só destes contratos.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from payproof.core.entities.decision import Outcome
from payproof.core.entities.extraction import PaymentExtraction
from payproof.core.entities.job import ProcessingJob
from payproof.core.entities.match import MatchCandidate, PaymentMatch
from payproof.core.entities.port_result import PortResult


class IFusionEngine(ABC):
    """
    Port: Fusion Engine

    Combina os resultados dos dois ports em um PaymentExtraction.
    """

    @abstractmethod
    def fuse(
        self,
        job: ProcessingJob,
        ocr_result: PortResult,
        vision_result: PortResult,
        legibility: float,
        started_at: float | None = None,
        now: datetime | None = None,
    ) -> PaymentExtraction:
        ...


class IMatchingEngine(ABC):
    """
    Port: Matching Engine

    Ranqueia transações pendentes contra a extração.
    """

    @abstractmethod
    def match(
        self,
        extraction: PaymentExtraction,
        candidates: list[MatchCandidate],
        now: datetime | None = None,
    ) -> PaymentMatch:
        ...


class IDecisionTable(ABC):
    """
    Port: Decision Table

    (confiança, match, flags) → (outcome, reason codes).
    """

    @abstractmethod
    def decide(
        self,
        confidence: float,
        match_score: float | None = None,
        flags: tuple[str, ...] | list[str] = (),
        auto_approve_eligible: bool = False,
    ) -> tuple[Outcome, tuple[str, ...]]:
        ...
