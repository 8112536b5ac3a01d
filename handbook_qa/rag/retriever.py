"""Similarity retrieval over stored chunk embeddings.

The retriever is a thin, backend-agnostic layer over a ``VectorStore``: it
validates the request, normalises the records the store returns and
guarantees the ordering and size contract callers depend on.
"""
from typing import Any, Dict, List, Protocol

import structlog

from handbook_qa.errors import RetrievalServiceError
from handbook_qa.rag.models import RetrievedChunk

logger = structlog.get_logger()


class VectorStore(Protocol):
    """Persistence and nearest-neighbour search for chunk embeddings."""

    async def search(self, query_embedding: List[float], k: int) -> List[Dict[str, Any]]:
        """Return up to k records ``{doc_name, page, content, similarity}``."""
        ...

    async def insert(self, record: Dict[str, Any]) -> None:
        """Persist one record ``{doc_name, page, chunk_index, content, embedding}``."""
        ...

    async def delete_document(self, doc_name: str) -> int:
        """Remove every chunk of a document; returns the number removed."""
        ...

    async def flush(self) -> None:
        """Make previous inserts durable."""
        ...


class SimilarityRetriever:
    """Top-k cosine-similarity retrieval through a vector store."""

    def __init__(self, store: VectorStore):
        self.store = store

    async def retrieve(self, query_embedding: List[float], k: int) -> List[RetrievedChunk]:
        """Retrieve the k most similar chunks.

        Args:
            query_embedding: Question vector
            k: Maximum number of results (positive)

        Returns:
            At most k chunks, most similar first; empty when nothing matches

        Raises:
            ValueError: If k is not a positive integer
            RetrievalServiceError: If the store is unreachable or rejects the query
        """
        if not isinstance(k, int) or k < 1:
            raise ValueError(f"k must be a positive integer, got {k!r}")

        logger.info("retrieval_started", top_k=k, dimension=len(query_embedding))

        try:
            records = await self.store.search(query_embedding, k)
        except RetrievalServiceError:
            raise
        except Exception as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RetrievalServiceError(str(e), code=type(e).__name__) from e

        try:
            results = [RetrievedChunk.from_record(record) for record in records or []]
        except (KeyError, TypeError, ValueError) as e:
            raise RetrievalServiceError(
                f"Malformed search record: {e}", code="bad_response"
            ) from e

        # Stable sort: ties keep the order the store returned them in
        results.sort(key=lambda r: r.similarity, reverse=True)
        results = results[:k]

        logger.info(
            "retrieval_completed",
            results_returned=len(results),
            top_similarity=results[0].similarity if results else None,
        )

        return results
