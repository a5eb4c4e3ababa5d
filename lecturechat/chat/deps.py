"""Chat engine dependency definitions.

Defines the ChatDeps dataclass that holds the runtime services a chat turn
needs.
"""

from dataclasses import dataclass

from lecturechat.ingestion.embedding_service import EmbeddingService
from lecturechat.ledger import PriceTable
from lecturechat.storage.repository import Repository
from lecturechat.storage.vector_index import VectorIndex


@dataclass
class ChatDeps:
    """Runtime dependencies for chat turns.

    Attributes:
        repository: Persistence for sessions, messages, videos and usage.
        vector_index: Tenant-scoped similarity search.
        embedding_service: Client used to embed the learner's question.
        price_table: Rates applied to every billable call of the turn.
    """

    repository: Repository
    vector_index: VectorIndex
    embedding_service: EmbeddingService
    price_table: PriceTable
