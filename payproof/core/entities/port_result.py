"""
Entity: Port Result

Resultado etiquetado de uma chamada a port externo:
    Ok(value) | Degraded(reason, value?) | Unavailable(reason)

O Fusion Engine recebe sempre um destes — nunca uma exceção —
então o caminho degradado é explícito no tipo.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    attempts: int = 1
    latency_ms: float = 0.0

    status = "ok"

    @property
    def usable(self) -> bool:
        return True


@dataclass(frozen=True)
class Degraded(Generic[T]):
    """A chamada retornou, mas a saída não serve (texto vazio, JSON inválido...)."""
    reason: str
    value: T | None = None
    attempts: int = 1
    latency_ms: float = 0.0

    status = "degraded"

    @property
    def usable(self) -> bool:
        return False


@dataclass(frozen=True)
class Unavailable:
    """Tentativas esgotadas (timeout ou erro do serviço)."""
    reason: str
    attempts: int = 0
    latency_ms: float = 0.0

    status = "unavailable"
    value = None

    @property
    def usable(self) -> bool:
        return False


PortResult = Union[Ok[T], Degraded[T], Unavailable]
