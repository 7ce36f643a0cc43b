"""
Vector layer: embedding providers, the resilient embedding client and
nearest-neighbor stores. Advisory over the SQLite record store, which holds
the canonical embeddings.
"""

from .index import IVectorStore, SimpleInMemoryVectorStore
from .faiss_store import FaissVectorStore
from .types import VectorEntry, NeighborHit
from .embeddings import (IEmbeddingProvider, DeterministicHashEmbedding,
                         SentenceTransformerEmbedding, HttpEmbeddingProvider)
from .embedding_client import EmbeddingClient

__all__ = [
    'IVectorStore',
    'SimpleInMemoryVectorStore',
    'FaissVectorStore',
    'VectorEntry',
    'NeighborHit',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'HttpEmbeddingProvider',
    'EmbeddingClient'
]
