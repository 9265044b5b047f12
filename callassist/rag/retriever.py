"""
RAG retriever: embeds a query and ranks the in-memory corpus by cosine
similarity.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from callassist.models import CorpusEntry

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    A zero vector on either side yields 0.0 rather than NaN.

    Raises:
        ValueError: If the vectors have different lengths
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.shape} vs {vb.shape}")
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


class Retriever:
    """Handle query embedding and top-K passage retrieval over a fixed corpus."""

    def __init__(
        self,
        corpus: Sequence[CorpusEntry],
        embedder=None,
        timeout_ms: int = 3000,
        overview_query: str = "overview",
        cache_size: int = 100,
    ):
        """
        Initialize retriever.

        Args:
            corpus: Pre-embedded chunks, in insertion order (never mutated)
            embedder: Object with async embed_documents(texts) -> vectors
            timeout_ms: Timeout for embedding a query
            overview_query: Fixed query used for the knowledge-base digest
            cache_size: Max cached query embeddings (FIFO eviction)
        """
        self.embedder = embedder
        self.timeout_ms = timeout_ms
        self.overview_query = overview_query
        self.cache_size = cache_size

        self._chunks: List[str] = [entry.chunk for entry in corpus]
        if self._chunks:
            self._matrix = np.asarray([entry.vector for entry in corpus], dtype=float)
        else:
            self._matrix = np.empty((0, 0), dtype=float)
        self._norms = np.linalg.norm(self._matrix, axis=1) if self._chunks else np.empty(0)

        # Simple in-memory cache for query embeddings
        self._embedding_cache: Dict[str, List[float]] = {}

        logger.info(
            f"Initialized Retriever: corpus={len(self._chunks)} chunks, "
            f"dimension={self.dimension}, embedder={embedder!r}"
        )

    @property
    def dimension(self) -> int:
        return self._matrix.shape[1] if self._chunks else 0

    def __len__(self) -> int:
        return len(self._chunks)

    def similarity_scores(self, query_vector: Sequence[float]) -> np.ndarray:
        """
        Cosine similarity of the query against every corpus entry.

        Returns:
            Array of scores in corpus order (0.0 where either vector is zero)
        """
        query = np.asarray(query_vector, dtype=float)
        if query.shape != (self.dimension,):
            raise ValueError(
                f"Query dimension {query.shape} does not match corpus dimension {self.dimension}"
            )
        dots = self._matrix @ query
        denom = self._norms * np.linalg.norm(query)
        return np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)

    def rank(self, query_vector: Sequence[float], k: int) -> List[str]:
        """
        Top-k chunks for an already-embedded query.

        Ordered by descending similarity; ties keep corpus order.
        """
        if k <= 0 or not self._chunks:
            return []
        scores = self.similarity_scores(query_vector)
        order = np.argsort(-scores, kind="stable")[:k]
        return [self._chunks[i] for i in order]

    async def top_k(self, query: str, k: int = 3) -> List[str]:
        """
        Retrieve the k most relevant chunks for a query.

        Args:
            query: Query text
            k: Number of chunks to return

        Returns:
            Chunk texts by descending similarity.
            Empty on empty corpus (no embedding call), timeout or error.
        """
        if k <= 0:
            return []
        if not self._chunks:
            logger.warning("No vectors available for search")
            return []
        if self.embedder is None:
            logger.warning("No embedder configured - skipping retrieval")
            return []

        try:
            query_vector = await asyncio.wait_for(
                self._get_query_embedding(query),
                timeout=self.timeout_ms / 1000
            )
            if not query_vector:
                logger.warning(f"Empty query embedding for: {query[:50]}")
                return []
            results = self.rank(query_vector, k)

        except asyncio.TimeoutError:
            logger.warning(f"RAG retrieval timeout after {self.timeout_ms}ms for query: {query[:50]}")
            return []
        except Exception as e:
            logger.error(f"Error in RAG search: {e}")
            return []

        logger.info(f"Retrieved {len(results)} chunks for query: '{query[:50]}'")
        return results

    async def overview_chunks(self, k: int = 3) -> List[str]:
        """Representative chunks for the per-session knowledge-base digest."""
        return await self.top_k(self.overview_query, k)

    async def _get_query_embedding(self, query: str) -> Optional[List[float]]:
        """
        Generate embedding for query with caching.

        Args:
            query: Query text

        Returns:
            Embedding vector or None if the embedder returned nothing
        """
        cache_key = query.lower().strip()

        if cache_key in self._embedding_cache:
            logger.debug("Cache hit for query embedding")
            return self._embedding_cache[cache_key]

        vectors = await self.embedder.embed_documents([query])
        if not vectors:
            return None
        embedding = list(vectors[0])

        if len(self._embedding_cache) >= self.cache_size:
            oldest_key = next(iter(self._embedding_cache))
            del self._embedding_cache[oldest_key]
        self._embedding_cache[cache_key] = embedding

        return embedding

    def clear_cache(self):
        """Clear the embedding cache."""
        self._embedding_cache.clear()
        logger.info("Cleared embedding cache")

    @property
    def cache_size_used(self) -> int:
        """Get current cache size."""
        return len(self._embedding_cache)

    def stats(self) -> dict:
        """Corpus statistics for health reporting."""
        return {
            "count": len(self._chunks),
            "dimension": self.dimension,
            "has_embedder": self.embedder is not None,
            "cached_queries": len(self._embedding_cache),
        }
