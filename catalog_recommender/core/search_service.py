"""
Query service: free-text problem description in, ranked catalog
recommendations out.
"""

import time
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..util.logging import logger
from ..vector.embedding_client import EmbeddingClient
from ..vector.index import IVectorStore
from .cache import EmbeddingCache
from .cancellation import CancellationToken
from .errors import ServiceUnavailableError
from .ranking import aggregate
from .schema import Recommendation
from .schemas import SearchRequest
from .text_cleaning import clean_text


class QueryService:
    """Orchestrates cache, embedding client, vector store and ranking.

    Stateless across requests apart from the shared cache, breaker and
    vector store, so one instance serves concurrent callers.
    """

    def __init__(self, embedding_client: EmbeddingClient, vector_store: IVectorStore,
                 cache: EmbeddingCache = None, neighbors_per_result: int = 10,
                 max_neighbors: int = 200, default_min_similarity: Optional[float] = None,
                 timeout_sec: Optional[float] = None, max_input_chars: int = 8000):
        self.embedding_client = embedding_client
        self.vector_store = vector_store
        self.cache = cache
        self.neighbors_per_result = neighbors_per_result
        self.max_neighbors = max_neighbors
        self.default_min_similarity = default_min_similarity
        self.timeout_sec = timeout_sec
        self.max_input_chars = max_input_chars

    def search(self, query_text: str, top_k: int = 5, min_similarity: Optional[float] = None,
               cancel_token: CancellationToken = None) -> List[Recommendation]:
        """
        Recommend catalog entries for a problem description.

        Args:
            query_text: Free-text description
            top_k: Number of recommendations wanted
            min_similarity: Similarity floor; defaults to the configured floor
            cancel_token: Optional deadline/cancellation for the request

        Returns:
            Ranked recommendations, possibly empty

        Raises:
            ServiceUnavailableError: embedding service degraded or failing
                (retryable); no results are served without a query embedding
            pydantic.ValidationError: invalid arguments
        """
        request = SearchRequest(query_text=query_text, top_k=top_k, min_similarity=min_similarity)
        if request.min_similarity is None:
            floor = self.default_min_similarity
        else:
            floor = request.min_similarity

        if cancel_token is None and self.timeout_sec:
            cancel_token = CancellationToken(self.timeout_sec)

        started = time.monotonic()
        vector, cache_hit = self._query_vector(request.query_text, cancel_token)
        if vector is None:
            return []

        k = min(max(request.top_k * self.neighbors_per_result, request.top_k), self.max_neighbors)
        hits = self.vector_store.query(vector, k, cancel_token=cancel_token)
        recommendations = aggregate(hits, request.top_k, floor)

        logger.log_search(request.query_text, request.top_k, len(recommendations),
                          (time.monotonic() - started) * 1000, cache_hit)
        return recommendations

    def _query_vector(self, query_text: str, cancel_token: Optional[CancellationToken]) -> Tuple[Optional[np.ndarray], bool]:
        if self.cache is not None:
            cached = self.cache.get(query_text)
            if cached is not None:
                return cached, True

        text = clean_text(query_text, self.max_input_chars)
        if not text:
            return None, False

        try:
            vector = self.embedding_client.embed_one(text, cancel_token=cancel_token)
        except ServiceUnavailableError as e:
            logger.warning(f"Search unavailable, embedding service degraded: {e}")
            raise

        if self.cache is not None:
            self.cache.put(query_text, vector)
        return vector, False

    def status(self) -> Dict[str, Any]:
        """Component status for monitoring."""
        breaker = self.embedding_client.breaker
        return {
            "vector_store": self.vector_store.stats(),
            "cache": self.cache.stats() if self.cache is not None else None,
            "breaker": breaker.status() if breaker is not None else None,
            "embedding": self.embedding_client.metrics.snapshot(),
        }
