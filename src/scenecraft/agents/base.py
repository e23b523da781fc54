from abc import ABC, abstractmethod
from typing import ClassVar

from ..database.models import Document, DocumentStatus
from ..database.store import DocumentStore
from ..scheduler.context import TickContext
from ..utils.generation_client import GenerationClient


class Agent(ABC):
    """One pipeline stage: consumes documents in ``input_status``.

    ``process`` raises on failure; returning normally means the document may
    be moved to ``output_status``.
    """

    name: ClassVar[str]
    input_status: ClassVar[DocumentStatus]
    output_status: ClassVar[DocumentStatus]

    def __init__(self, store: DocumentStore, client: GenerationClient):
        self.store = store
        self.client = client
        self.is_active = False

    async def initialize(self) -> None:
        self.is_active = True

    async def cleanup(self) -> None:
        self.is_active = False

    @abstractmethod
    async def process(self, document: Document, context: TickContext) -> None:
        pass
