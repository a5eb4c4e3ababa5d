"""Tenant-scoped similarity search over stored chunk vectors."""

from lecturechat.errors import PipelineError, TransientNetwork, ValidationFailed
from lecturechat.ingestion.schemas import ChunkMatch
from lecturechat.utils.logging import get_logger

from .repository import Repository

logger = get_logger(__name__)

DEFAULT_TOP_K = 5
DEFAULT_SIMILARITY_FLOOR = 0.7


def rank_matches(
    matches: list[ChunkMatch],
    tenant_id: str,
    k: int,
    similarity_floor: float,
    boost_video_id: str | None = None,
    boost: float = 0.0,
) -> list[ChunkMatch]:
    """Order candidate matches deterministically and keep the top ``k``.

    The floor applies to the raw cosine similarity. An anchor video only
    changes the ordering score, so it can lift its own chunks without
    excluding others. Ties are broken by chunk index, then video id.
    """

    def score(match: ChunkMatch) -> float:
        if boost_video_id is not None and match.chunk.video_id == boost_video_id:
            return match.similarity + boost
        return match.similarity

    eligible = [
        m
        for m in matches
        if m.chunk.tenant_id == tenant_id and m.similarity >= similarity_floor
    ]
    eligible.sort(key=lambda m: (-score(m), m.chunk.chunk_index, m.chunk.video_id))
    return eligible[: max(k, 0)]


class VectorIndex:
    """Search facade over a repository's chunk store.

    An empty result is a valid "no relevant passage" outcome.
    """

    def __init__(self, repository: Repository, candidate_multiplier: int = 4):
        self.repository = repository
        self.candidate_multiplier = candidate_multiplier

    async def search(
        self,
        tenant_id: str,
        query_vector: list[float],
        k: int = DEFAULT_TOP_K,
        similarity_floor: float = DEFAULT_SIMILARITY_FLOOR,
        boost_video_id: str | None = None,
        boost: float = 0.0,
    ) -> list[ChunkMatch]:
        """Return up to ``k`` chunks of ``tenant_id`` ranked by similarity.

        Raises:
            ValidationFailed: No tenant scope was given.
            TransientNetwork: The chunk store could not be queried.
        """
        if not tenant_id:
            raise ValidationFailed("Search requires a tenant scope")
        if k <= 0 or not query_vector:
            return []

        biased = boost_video_id is not None and boost > 0
        try:
            candidates = await self.repository.search_chunks(
                tenant_id=tenant_id,
                query_vector=query_vector,
                match_count=k * self.candidate_multiplier if biased else k,
                similarity_floor=similarity_floor,
            )
        except PipelineError:
            raise
        except Exception as e:
            logger.exception("chunk_store_search_failed", tenant_id=tenant_id)
            raise TransientNetwork(f"Vector search failed: {type(e).__name__}") from e

        results = rank_matches(
            candidates,
            tenant_id=tenant_id,
            k=k,
            similarity_floor=similarity_floor,
            boost_video_id=boost_video_id if biased else None,
            boost=boost,
        )

        logger.info(
            "vector_search_ranked",
            tenant_id=tenant_id,
            candidates=len(candidates),
            results=len(results),
            anchor_video_id=boost_video_id,
        )
        return results
