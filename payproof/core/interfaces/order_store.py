"""
Contract: Order Store

Fronteira com o armazenamento externo de pedidos. O pipeline só lê
candidatos; reivindicar um candidato passa pelo controle de
concorrência do próprio store (update condicional).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from payproof.core.entities.match import MatchCandidate


class IOrderStore(ABC):
    """
    Port: Order Store
    """

    @abstractmethod
    def find_pending(
        self,
        currency: str,
        since: datetime,
        until: datetime,
        reference_hint: str | None = None,
        amount_hint: Decimal | None = None,
    ) -> list[MatchCandidate]:
        """
        Lista transações ainda aguardando pagamento.

        Args:
            currency: Moeda (ex: "PHP", "MYR").
            since/until: Janela de criação das transações.
            reference_hint: Referência extraída (opcional, só ordena/filtra).
            amount_hint: Valor extraído (opcional).

        Returns:
            Lista de MatchCandidate.
        """
        ...

    @abstractmethod
    def get(self, candidate_id: str) -> MatchCandidate | None:
        """Busca um candidato pelo id (qualquer status)."""
        ...

    @abstractmethod
    def claim(self, candidate_id: str, extraction_id: str) -> None:
        """
        Marca o candidato como pago por esta extração.

        Raises:
            ConcurrentClaimConflict: candidato já não está pendente.
        """
        ...
