"""
Embedding providers for query vectors.

Two interchangeable backends with the same async interface
(embed_documents(texts) -> list of vectors):
- LocalEmbedder: sentence-transformers, in-process, no network latency
- OpenAIEmbedder: OpenAI embeddings API

The backend must match whatever produced the corpus vectors.
Errors propagate; the retriever decides how to degrade.
"""

import asyncio
import logging
from typing import List

import httpx
from openai import AsyncOpenAI
from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class LocalEmbedder:
    """
    Local embedding model using sentence-transformers.

    Loads once at startup and kept in memory for fast inference.
    """

    DEFAULT_MODEL = "all-MiniLM-L6-v2"

    def __init__(self, model_name: str = DEFAULT_MODEL):
        """Load the embedding model into memory."""
        logger.info(f"Loading local embedding model: {model_name}")
        self.model_name = model_name
        self.model = SentenceTransformer(model_name)
        self.dimension = self.model.get_sentence_embedding_dimension()
        logger.info(f"Local embedding model loaded: {model_name} ({self.dimension} dimensions)")

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a batch of texts.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text
        """
        if not texts:
            return []
        # sentence-transformers is CPU-bound and synchronous
        embeddings = await asyncio.to_thread(self._encode_batch_sync, texts)
        return [emb.tolist() for emb in embeddings]

    def _encode_batch_sync(self, texts: List[str]):
        """Synchronous batch encoding (called from thread pool)."""
        return self.model.encode(
            texts,
            normalize_embeddings=True,
            show_progress_bar=False,
            batch_size=32
        )

    def __repr__(self) -> str:
        return f"LocalEmbedder(model={self.model_name})"


class OpenAIEmbedder:
    """Embeddings through the OpenAI API."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
    ):
        self.model = model
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=httpx.Timeout(30.0, read=60.0)
        )
        logger.info(f"Using OpenAI API for embeddings (model={model})")

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        response = await self.client.embeddings.create(model=self.model, input=texts)
        return [item.embedding for item in response.data]

    async def close(self):
        await self.client.close()

    def __repr__(self) -> str:
        return f"OpenAIEmbedder(model={self.model})"
