"""
Environment-driven configuration for the recommender core.
Values are read once at import; factories below build configured components.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Canonical record store
DB_PATH = os.getenv("DB_PATH", "./data/records.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Embedding provider
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|http|sentence_transformers
EMBED_DIM = int(os.getenv("EMBED_DIM", "1536"))
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "text-embedding-3-small")
EMBED_API_URL = os.getenv("EMBED_API_URL", "https://api.openai.com/v1/embeddings")
EMBED_API_KEY = os.getenv("EMBED_API_KEY")
EMBED_TIMEOUT_SEC = float(os.getenv("EMBED_TIMEOUT_SEC", "30"))
EMBED_MAX_ATTEMPTS = int(os.getenv("EMBED_MAX_ATTEMPTS", "3"))
EMBED_BACKOFF_BASE_SEC = float(os.getenv("EMBED_BACKOFF_BASE_SEC", "2.0"))
EMBED_MAX_RETRY_AFTER_SEC = float(os.getenv("EMBED_MAX_RETRY_AFTER_SEC", "60"))
EMBED_MAX_INPUT_CHARS = int(os.getenv("EMBED_MAX_INPUT_CHARS", "8000"))

# Vector store
VECTOR_PROVIDER = os.getenv("VECTOR_PROVIDER", "memory")  # memory|faiss
HNSW_M = int(os.getenv("HNSW_M", "32"))
HNSW_EF_CONSTRUCTION = int(os.getenv("HNSW_EF_CONSTRUCTION", "200"))
HNSW_EF_SEARCH = int(os.getenv("HNSW_EF_SEARCH", "128"))
REBUILD_THRESHOLD = float(os.getenv("REBUILD_THRESHOLD", "0.10"))

# Query embedding cache
CACHE_MAX_ENTRIES = int(os.getenv("CACHE_MAX_ENTRIES", "1024"))
CACHE_TTL_SEC = float(os.getenv("CACHE_TTL_SEC", "300"))

# Circuit breaker
BREAKER_FAILURE_THRESHOLD = int(os.getenv("BREAKER_FAILURE_THRESHOLD", "5"))
BREAKER_COOLDOWN_SEC = float(os.getenv("BREAKER_COOLDOWN_SEC", "60"))

# Batch indexer
INDEX_CHUNK_SIZE = int(os.getenv("INDEX_CHUNK_SIZE", "100"))
INDEX_WORKERS = int(os.getenv("INDEX_WORKERS", str(os.cpu_count() or 4)))
INDEX_MAX_CONSECUTIVE_FAILURES = int(os.getenv("INDEX_MAX_CONSECUTIVE_FAILURES", "10"))
INDEX_MAX_ERROR_RATE = float(os.getenv("INDEX_MAX_ERROR_RATE", "0.5"))
INDEX_ERROR_RATE_MIN_CHUNKS = int(os.getenv("INDEX_ERROR_RATE_MIN_CHUNKS", "20"))
INDEX_LEASE_SEC = float(os.getenv("INDEX_LEASE_SEC", "600"))

# Query service
SEARCH_NEIGHBORS_PER_RESULT = int(os.getenv("SEARCH_NEIGHBORS_PER_RESULT", "10"))
SEARCH_MAX_NEIGHBORS = int(os.getenv("SEARCH_MAX_NEIGHBORS", "200"))
SEARCH_MIN_SIMILARITY = os.getenv("SEARCH_MIN_SIMILARITY")  # unset means no floor
SEARCH_TIMEOUT_SEC = float(os.getenv("SEARCH_TIMEOUT_SEC", "10"))


def get_vector_store(dimension: int = None, provider: str = None):
    """Get configured vector store implementation."""
    dimension = dimension or EMBED_DIM
    provider = provider or VECTOR_PROVIDER

    if provider == "faiss":
        from ..vector.faiss_store import FaissVectorStore
        return FaissVectorStore(
            dimension=dimension,
            m=HNSW_M,
            ef_construction=HNSW_EF_CONSTRUCTION,
            ef_search=HNSW_EF_SEARCH,
            rebuild_threshold=REBUILD_THRESHOLD,
        )

    from ..vector.index import SimpleInMemoryVectorStore
    return SimpleInMemoryVectorStore(dimension=dimension)


def get_embedding_provider(provider: str = None, dimension: int = None):
    """Get configured embedding provider implementation."""
    provider = provider or EMBED_PROVIDER
    dimension = dimension or EMBED_DIM

    if provider == "http":
        from ..vector.embeddings import HttpEmbeddingProvider
        return HttpEmbeddingProvider(
            url=EMBED_API_URL,
            model=EMBED_MODEL_NAME,
            api_key=EMBED_API_KEY,
            dimension=dimension,
            timeout=EMBED_TIMEOUT_SEC,
        )
    elif provider == "sentence_transformers":
        from ..vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME)

    from ..vector.embeddings import DeterministicHashEmbedding
    return DeterministicHashEmbedding(dimension=dimension)


def get_min_similarity():
    """Default similarity floor for searches, None when unset."""
    if SEARCH_MIN_SIMILARITY is None or SEARCH_MIN_SIMILARITY == "":
        return None
    return float(SEARCH_MIN_SIMILARITY)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if EMBED_PROVIDER not in ["hash", "http", "sentence_transformers"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if VECTOR_PROVIDER not in ["memory", "faiss"]:
        issues.append(f"Invalid VECTOR_PROVIDER: {VECTOR_PROVIDER}")

    if EMBED_PROVIDER == "http" and not EMBED_API_KEY:
        issues.append("EMBED_PROVIDER=http requires EMBED_API_KEY")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if EMBED_MAX_ATTEMPTS < 1:
        issues.append("EMBED_MAX_ATTEMPTS must be >= 1")

    if not 0 < REBUILD_THRESHOLD <= 1:
        issues.append("REBUILD_THRESHOLD must be in (0, 1]")

    if INDEX_CHUNK_SIZE < 1:
        issues.append("INDEX_CHUNK_SIZE must be >= 1")

    if INDEX_WORKERS < 1:
        issues.append("INDEX_WORKERS must be >= 1")

    if not 0 < INDEX_MAX_ERROR_RATE <= 1:
        issues.append("INDEX_MAX_ERROR_RATE must be in (0, 1]")

    if CACHE_MAX_ENTRIES < 1:
        issues.append("CACHE_MAX_ENTRIES must be >= 1")

    return issues
