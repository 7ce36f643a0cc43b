"""
FAISS HNSW-backed vector store.

The graph is immutable once built. Vectors written since the last build are
kept in a brute-force delta that is searched alongside the graph, and graph
hits for superseded or deleted records are filtered out. Once the delta grows
past `rebuild_threshold` of the corpus a background rebuild folds it into a
fresh graph, which is swapped in atomically.
"""

import threading
import time
from typing import Dict, List, Optional

import faiss
import numpy as np

from ..core.cancellation import CancellationToken
from ..util.logging import logger
from .index import IVectorStore, normalize_vector
from .types import NeighborHit, VectorEntry


class FaissVectorStore(IVectorStore):
    """Approximate nearest-neighbor store over a FAISS HNSW graph."""

    def __init__(self, dimension: int = 1536, m: int = 32, ef_construction: int = 200,
                 ef_search: int = 128, rebuild_threshold: float = 0.10, auto_rebuild: bool = True):
        """
        Initialize FAISS vector store.

        Args:
            dimension: Dimension of the vectors
            m: HNSW neighbors per node
            ef_construction: HNSW build-time candidate list size
            ef_search: HNSW query-time candidate list size; higher means better recall
            rebuild_threshold: Fraction of changed vectors that triggers a rebuild
            auto_rebuild: Schedule background rebuilds automatically after upserts
        """
        self.dimension = dimension
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self.rebuild_threshold = rebuild_threshold
        self.auto_rebuild = auto_rebuild

        self._lock = threading.Lock()
        self._rebuild_lock = threading.Lock()
        self._entries: Dict[str, VectorEntry] = {}

        self._graph = None
        self._graph_entries: List[VectorEntry] = []  # graph position -> entry at build time
        self._dirty = set()  # record ids whose graph position is stale or missing

        self._rebuild_thread: Optional[threading.Thread] = None
        self.rebuild_count = 0
        self.rebuild_failures = 0
        self.last_rebuild_at: Optional[float] = None

    def upsert(self, record_id: str, catalog_id: str, catalog_path: str, embedding) -> None:
        normalized = normalize_vector(embedding, self.dimension, record_id)
        if normalized is None:
            raise ValueError(f"Cannot index zero vector for record '{record_id}'")

        entry = VectorEntry(record_id, catalog_id, catalog_path, normalized)
        with self._lock:
            self._entries[record_id] = entry
            self._dirty.add(record_id)

        self._maybe_schedule_rebuild()

    def upsert_many(self, entries) -> None:
        prepared = []
        for record_id, catalog_id, catalog_path, embedding in entries:
            normalized = normalize_vector(embedding, self.dimension, record_id)
            if normalized is None:
                raise ValueError(f"Cannot index zero vector for record '{record_id}'")
            prepared.append(VectorEntry(record_id, catalog_id, catalog_path, normalized))

        with self._lock:
            for entry in prepared:
                self._entries[entry.record_id] = entry
                self._dirty.add(entry.record_id)

        self._maybe_schedule_rebuild()

    def query(self, embedding, k: int, cancel_token: CancellationToken = None) -> List[NeighborHit]:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled("vector query")
        if k < 1:
            return []

        normalized_query = normalize_vector(embedding, self.dimension)
        if normalized_query is None:
            return []

        with self._lock:
            graph = self._graph
            graph_entries = self._graph_entries
            stale = set(self._dirty)
            delta = [self._entries[rid] for rid in stale if rid in self._entries]

        candidates = []

        if graph is not None and graph.ntotal:
            n = min(graph.ntotal, k + len(stale))
            params = faiss.SearchParametersHNSW(efSearch=max(self.ef_search, n))
            scores, positions = graph.search(normalized_query.reshape(1, -1), n, params=params)
            for score, position in zip(scores[0], positions[0]):
                if position < 0:
                    continue
                entry = graph_entries[position]
                if entry.record_id in stale:
                    continue
                candidates.append((float(1.0 - score), entry))

        if cancel_token is not None:
            cancel_token.raise_if_cancelled("vector query")

        if delta:
            matrix = np.vstack([entry.vector for entry in delta])
            similarities = matrix @ normalized_query
            for similarity, entry in zip(similarities, delta):
                candidates.append((float(1.0 - similarity), entry))

        candidates.sort(key=lambda item: (item[0], item[1].record_id))

        return [
            NeighborHit(entry.record_id, entry.catalog_id, entry.catalog_path, distance)
            for distance, entry in candidates[:k]
        ]

    def pending_fraction(self) -> float:
        """Fraction of the corpus written since the last graph build."""
        with self._lock:
            if not self._entries and not self._dirty:
                return 0.0
            return len(self._dirty) / max(len(self._entries), 1)

    def needs_rebuild(self) -> bool:
        return self.pending_fraction() > self.rebuild_threshold

    def rebuild(self) -> None:
        """Build a new graph from the current vectors and swap it in.

        Idempotent and safe to retry: on failure the previous graph keeps
        serving and the delta is left untouched.
        """
        with self._rebuild_lock:
            started = time.monotonic()
            with self._lock:
                entries = list(self._entries.values())

            graph = self._build_graph(entries) if entries else None
            built = {entry.record_id: entry for entry in entries}

            with self._lock:
                self._graph = graph
                self._graph_entries = entries
                # Anything written while the graph was building stays in the delta
                self._dirty = {
                    rid for rid in self._dirty
                    if self._entries.get(rid) is not built.get(rid)
                }
                remaining = len(self._dirty)

            self.rebuild_count += 1
            self.last_rebuild_at = time.time()
            logger.log_operation("vector.rebuild", "success", {
                "vectors": len(entries),
                "pending_after": remaining,
                "duration_ms": round((time.monotonic() - started) * 1000, 2)
            })

    def _build_graph(self, entries: List[VectorEntry]):
        graph = faiss.IndexHNSWFlat(self.dimension, self.m, faiss.METRIC_INNER_PRODUCT)
        graph.hnsw.efConstruction = self.ef_construction
        matrix = np.ascontiguousarray(np.vstack([entry.vector for entry in entries]), dtype=np.float32)
        graph.add(matrix)
        return graph

    def _maybe_schedule_rebuild(self) -> None:
        if not self.auto_rebuild or not self.needs_rebuild():
            return

        with self._lock:
            if self._rebuild_thread is not None and self._rebuild_thread.is_alive():
                return
            self._rebuild_thread = threading.Thread(
                target=self._background_rebuild, name="faiss-rebuild", daemon=True
            )
            self._rebuild_thread.start()

    def _background_rebuild(self) -> None:
        # Writes that land during a rebuild can push the delta over the
        # threshold again, so keep folding until it settles.
        for _ in range(3):
            try:
                self.rebuild()
            except Exception as e:
                self.rebuild_failures += 1
                logger.log_operation("vector.rebuild", "failed", {"error": str(e)})
                return
            if not self.needs_rebuild():
                return

    def wait_for_rebuild(self, timeout: float = None) -> None:
        """Block until any in-flight background rebuild has finished."""
        thread = self._rebuild_thread
        if thread is not None:
            thread.join(timeout)

    def get(self, record_id: str) -> Optional[VectorEntry]:
        with self._lock:
            return self._entries.get(record_id)

    def delete(self, record_id: str) -> None:
        with self._lock:
            if self._entries.pop(record_id, None) is not None:
                self._dirty.add(record_id)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._graph = None
            self._graph_entries = []
            self._dirty.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, object]:
        with self._lock:
            return {
                "vectors": len(self._entries),
                "graph_size": self._graph.ntotal if self._graph is not None else 0,
                "pending": len(self._dirty),
                "rebuild_count": self.rebuild_count,
                "rebuild_failures": self.rebuild_failures,
                "last_rebuild_at": self.last_rebuild_at,
            }
