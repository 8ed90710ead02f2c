"""
Contract: Guarded Port

Chamada a um port externo já protegida por timeout e retry.
Nunca levanta: o resultado é sempre Ok | Degraded | Unavailable.
"""

from abc import ABC, abstractmethod

from payproof.core.entities.port_result import PortResult


class IGuardedPort(ABC):
    """
    Port: Guarded Port
    """

    name: str = "port"

    @abstractmethod
    async def run(self, *args) -> PortResult:
        ...
