"""
Vector store interface and the brute-force in-memory implementation.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from ..core.cancellation import CancellationToken
from ..core.errors import DimensionMismatchError
from .types import NeighborHit, VectorEntry


def normalize_vector(vector, dimension: int, record_id: str = None) -> Optional[np.ndarray]:
    """Return a read-only unit-length float32 copy of `vector`.

    Returns None for a zero vector, which has no direction to compare.
    """
    array = np.asarray(vector, dtype=np.float32).ravel()
    if array.shape[0] != dimension:
        raise DimensionMismatchError(dimension, array.shape[0], record_id)

    norm = np.linalg.norm(array)
    if norm == 0 or not np.isfinite(norm):
        return None

    normalized = (array / norm).astype(np.float32)
    normalized.setflags(write=False)
    return normalized


class IVectorStore(ABC):
    """Abstract interface for vector storage operations."""

    dimension: int

    @abstractmethod
    def upsert(self, record_id: str, catalog_id: str, catalog_path: str, embedding) -> None:
        """Insert or overwrite the vector for a record."""
        pass

    def upsert_many(self, entries: Iterable[Tuple[str, str, str, object]]) -> None:
        """Upsert several (record_id, catalog_id, catalog_path, embedding) tuples.

        Each record becomes visible atomically with its full vector.
        """
        for record_id, catalog_id, catalog_path, embedding in entries:
            self.upsert(record_id, catalog_id, catalog_path, embedding)

    @abstractmethod
    def query(self, embedding, k: int, cancel_token: CancellationToken = None) -> List[NeighborHit]:
        """Return up to k nearest neighbors, nearest first."""
        pass

    @abstractmethod
    def delete(self, record_id: str) -> None:
        """Delete a vector by record ID."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all records from the store."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass

    def __contains__(self, record_id: str) -> bool:
        return self.get(record_id) is not None

    def stats(self) -> Dict[str, object]:
        """Store statistics for monitoring."""
        return {"vectors": len(self)}

    @abstractmethod
    def get(self, record_id: str) -> Optional[VectorEntry]:
        """Return the stored entry for a record, if any."""
        pass


class SimpleInMemoryVectorStore(IVectorStore):
    """In-memory exact search by scanning every stored vector."""

    def __init__(self, dimension: int = 1536):
        self.dimension = dimension
        self._entries = {}  # record_id -> VectorEntry
        self._lock = threading.Lock()
        # (ids, matrix) snapshot rebuilt lazily after writes
        self._snapshot = None

    def upsert(self, record_id: str, catalog_id: str, catalog_path: str, embedding) -> None:
        normalized = normalize_vector(embedding, self.dimension, record_id)
        if normalized is None:
            raise ValueError(f"Cannot index zero vector for record '{record_id}'")

        entry = VectorEntry(record_id, catalog_id, catalog_path, normalized)
        with self._lock:
            self._entries[record_id] = entry
            self._snapshot = None

    def query(self, embedding, k: int, cancel_token: CancellationToken = None) -> List[NeighborHit]:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled("vector query")
        if k < 1:
            return []

        normalized_query = normalize_vector(embedding, self.dimension)
        if normalized_query is None:
            return []

        entries, matrix = self._get_snapshot()
        if not entries:
            return []

        similarities = matrix @ normalized_query
        if cancel_token is not None:
            cancel_token.raise_if_cancelled("vector query")

        k = min(k, len(entries))
        # Stable order for equal scores: by insertion order of the snapshot
        order = np.argsort(-similarities, kind="stable")[:k]

        return [
            NeighborHit(
                record_id=entries[i].record_id,
                catalog_id=entries[i].catalog_id,
                catalog_path=entries[i].catalog_path,
                distance=float(1.0 - similarities[i]),
            )
            for i in order
        ]

    def _get_snapshot(self):
        with self._lock:
            if self._snapshot is None:
                entries = list(self._entries.values())
                if entries:
                    matrix = np.vstack([entry.vector for entry in entries])
                else:
                    matrix = np.zeros((0, self.dimension), dtype=np.float32)
                self._snapshot = (entries, matrix)
            return self._snapshot

    def get(self, record_id: str) -> Optional[VectorEntry]:
        with self._lock:
            return self._entries.get(record_id)

    def delete(self, record_id: str) -> None:
        with self._lock:
            if self._entries.pop(record_id, None) is not None:
                self._snapshot = None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._snapshot = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
