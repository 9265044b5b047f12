"""
RAG (Retrieval-Augmented Generation) over a pre-embedded knowledge base.

Embedding backends live in callassist.rag.embedders and are imported
explicitly by the app, since loading them pulls in model runtimes.
"""

from .corpus import load_corpus, parse_corpus
from .retriever import Retriever, cosine_similarity

__all__ = [
    "Retriever",
    "cosine_similarity",
    "load_corpus",
    "parse_corpus",
]
