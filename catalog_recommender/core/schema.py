"""
Record, recommendation and run-report types shared by the core services.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np


class RecordStatus(str, Enum):
    PENDING = "pending"
    EMBEDDED = "embedded"
    FAILED = "failed"


@dataclass
class Record:
    record_id: str
    catalog_id: str
    catalog_path: str
    text: str
    status: RecordStatus = RecordStatus.PENDING
    embedding: Optional[np.ndarray] = None
    last_error: Optional[str] = None
    updated_at: Optional[datetime] = None


@dataclass
class Recommendation:
    """One ranked catalog entry with the records that support it."""
    catalog_id: str
    catalog_path: str
    supporting_record_ids: List[str]
    raw_count: int
    weighted_score: float
    rank: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "catalog_id": self.catalog_id,
            "catalog_path": self.catalog_path,
            "weighted_score": self.weighted_score,
            "raw_count": self.raw_count,
            "supporting_record_ids": list(self.supporting_record_ids),
        }


@dataclass
class IndexRunReport:
    """Summary of one IndexBatch run."""
    processed: int = 0
    embedded: int = 0
    failed: int = 0
    duration_sec: float = 0.0
    chunks_processed: int = 0
    chunks_failed: int = 0
    aborted: bool = False
    abort_reason: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "processed": self.processed,
            "embedded": self.embedded,
            "failed": self.failed,
            "duration_sec": round(self.duration_sec, 3),
            "chunks_processed": self.chunks_processed,
            "chunks_failed": self.chunks_failed,
            "aborted": self.aborted,
            "errors": self.errors,
        }
        if self.abort_reason:
            data["abort_reason"] = self.abort_reason
        return data
