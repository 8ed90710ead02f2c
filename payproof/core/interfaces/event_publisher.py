"""
Contract: Event Publisher

Entrega de eventos ao colaborador externo de notificação:
o emitter grava, o publisher entrega.
"""

from abc import ABC, abstractmethod

from payproof.core.entities.event import PaymentEvent


class IEventPublisher(ABC):
    """
    Port: Event Publisher

    Deve levantar exceção se a entrega falhar — o outbox cuida do retry.
    """

    @abstractmethod
    def publish(self, dedupe_key: str, payload: dict) -> None:
        """
        Publica um evento.

        Args:
            dedupe_key: Chave de idempotência para o consumidor.
            payload: Corpo do evento (JSON-serializável).
        """
        ...


class IEventEmitter(ABC):
    """
    Port: Event Emitter

    Registra eventos para entrega assíncrona (outbox). Idempotente:
    emitir de novo a mesma dedupe_key não duplica o evento.
    """

    @abstractmethod
    def emit(self, event: PaymentEvent) -> bool:
        """Retorna False se o evento já estava registrado."""
        ...
