"""
Contract: Job Queue

Onde a entrada entrega os jobs aceitos. A implementação decide
concorrência, prioridade e retry.
"""

from abc import ABC, abstractmethod

from payproof.core.entities.job import ProcessingJob


class IJobQueue(ABC):
    """
    Port: Job Queue
    """

    @abstractmethod
    async def submit(self, job: ProcessingJob) -> None:
        """
        Enfileira um job para processamento.

        Raises:
            DispatcherClosed: a fila não aceita mais jobs (shutdown).
        """
        ...
