"""
Types exchanged with vector stores.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class VectorEntry:
    """A record's embedding as held by a vector store."""

    record_id: str
    catalog_id: str
    catalog_path: str
    vector: np.ndarray
    """Unit-normalized float32 vector, read-only once stored"""


@dataclass(frozen=True)
class NeighborHit:
    """Represents a nearest-neighbor result from a vector store."""

    record_id: str
    catalog_id: str
    catalog_path: str
    distance: float
    """Cosine distance (1 - cosine similarity), smaller is nearer"""
