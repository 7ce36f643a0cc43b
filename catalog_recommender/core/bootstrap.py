"""
Wiring of the recommender components from configuration.
"""

from dataclasses import dataclass
from typing import Sequence

from ..util.logging import logger
from ..vector.embedding_client import EmbeddingClient
from ..vector.index import IVectorStore
from . import config
from .cache import EmbeddingCache
from .circuit_breaker import CircuitBreaker
from .indexer import BatchIndexer
from .records import RecordStore
from .search_service import QueryService


@dataclass
class RecommenderEngine:
    """The configured component graph shared by the indexer and query paths."""
    record_store: RecordStore
    cache: EmbeddingCache
    breaker: CircuitBreaker
    embedding_client: EmbeddingClient
    vector_store: IVectorStore
    indexer: BatchIndexer
    query_service: QueryService

    def archive(self, record_ids: Sequence[str]) -> int:
        """Archive records and drop their vectors from the serving index."""
        count = self.record_store.archive(record_ids)
        for record_id in record_ids:
            if record_id in self.vector_store:
                self.vector_store.delete(record_id)
        logger.log_operation("records.archive", "success", {"records": count})
        return count


def warm_vector_store(record_store: RecordStore, vector_store: IVectorStore, batch_size: int = 1000) -> int:
    """
    Load every EMBEDDED record's stored vector into the vector store.

    Returns:
        Number of vectors loaded
    """
    loaded = 0
    batch = []
    for record in record_store.iter_embedded(batch_size):
        if record.embedding is None:
            continue
        batch.append((record.record_id, record.catalog_id, record.catalog_path, record.embedding))
        if len(batch) >= batch_size:
            vector_store.upsert_many(batch)
            loaded += len(batch)
            batch = []
    if batch:
        vector_store.upsert_many(batch)
        loaded += len(batch)

    logger.log_operation("vector.warm", "success", {"vectors": loaded})
    return loaded


def create_engine(db_path: str = None, embedding_provider=None, vector_store: IVectorStore = None,
                  warm: bool = True, workers: int = None, chunk_size: int = None) -> RecommenderEngine:
    """
    Build the full component graph from configuration.

    Args:
        db_path: Record store location, defaults to DB_PATH
        embedding_provider: Override of the configured provider
        vector_store: Override of the configured vector store
        warm: Load already-embedded vectors from the record store
        workers: Override of INDEX_WORKERS
        chunk_size: Override of INDEX_CHUNK_SIZE
    """
    issues = config.validate_config()
    for issue in issues:
        logger.warning(f"Configuration issue: {issue}")

    provider = embedding_provider or config.get_embedding_provider()
    dimension = provider.get_dimension()
    if vector_store is None:
        vector_store = config.get_vector_store(dimension=dimension)

    record_store = RecordStore(db_path)
    cache = EmbeddingCache(max_entries=config.CACHE_MAX_ENTRIES, ttl_sec=config.CACHE_TTL_SEC)
    breaker = CircuitBreaker(
        name="embedding_provider",
        failure_threshold=config.BREAKER_FAILURE_THRESHOLD,
        cooldown_sec=config.BREAKER_COOLDOWN_SEC,
    )
    embedding_client = EmbeddingClient(
        provider,
        breaker=breaker,
        dimension=dimension,
        max_attempts=config.EMBED_MAX_ATTEMPTS,
        backoff_base_sec=config.EMBED_BACKOFF_BASE_SEC,
        max_retry_after_sec=config.EMBED_MAX_RETRY_AFTER_SEC,
    )
    indexer = BatchIndexer(
        record_store,
        embedding_client,
        vector_store,
        chunk_size=chunk_size or config.INDEX_CHUNK_SIZE,
        workers=workers or config.INDEX_WORKERS,
        max_consecutive_failures=config.INDEX_MAX_CONSECUTIVE_FAILURES,
        max_error_rate=config.INDEX_MAX_ERROR_RATE,
        error_rate_min_chunks=config.INDEX_ERROR_RATE_MIN_CHUNKS,
        lease_sec=config.INDEX_LEASE_SEC,
        max_input_chars=config.EMBED_MAX_INPUT_CHARS,
    )
    query_service = QueryService(
        embedding_client,
        vector_store,
        cache=cache,
        neighbors_per_result=config.SEARCH_NEIGHBORS_PER_RESULT,
        max_neighbors=config.SEARCH_MAX_NEIGHBORS,
        default_min_similarity=config.get_min_similarity(),
        timeout_sec=config.SEARCH_TIMEOUT_SEC,
        max_input_chars=config.EMBED_MAX_INPUT_CHARS,
    )

    if warm:
        warm_vector_store(record_store, vector_store)

    return RecommenderEngine(
        record_store=record_store,
        cache=cache,
        breaker=breaker,
        embedding_client=embedding_client,
        vector_store=vector_store,
        indexer=indexer,
        query_service=query_service,
    )
