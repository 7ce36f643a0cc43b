"""
Canonical record store: ingestion, status transitions and chunk claiming for
the batch indexer.
"""

import json
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import ValidationError

from ..util.logging import logger
from .db import get_db, init_db
from .schema import Record, RecordStatus
from .schemas import RawRecordIn

_COLUMNS = "record_id, catalog_id, catalog_path, text, embedding, status, last_error, updated_at"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode_embedding(vector) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _decode_embedding(blob: Optional[bytes]) -> Optional[np.ndarray]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32).copy()


def _row_to_record(row) -> Record:
    record_id, catalog_id, catalog_path, text, embedding, status, last_error, updated_at = row
    return Record(
        record_id=record_id,
        catalog_id=catalog_id,
        catalog_path=catalog_path,
        text=text,
        status=RecordStatus(status),
        embedding=_decode_embedding(embedding),
        last_error=last_error,
        updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
    )


class RecordStore:
    """SQLite-backed store of historical records.

    Records move PENDING -> EMBEDDED or PENDING -> FAILED as the indexer
    processes them, and FAILED -> PENDING when an operator requests
    reprocessing. Workers claim pending records with a claim token and
    lease; a lease that expires (e.g. after a crash) makes the records
    claimable again.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path
        init_db(db_path)

    def ingest(self, raw_records: Iterable) -> Dict[str, int]:
        """
        Insert or update raw records from the extraction layer.

        New records, and records whose text or catalog assignment changed,
        are (re)set to PENDING. Identical records are left untouched.

        Args:
            raw_records: dicts or RawRecordIn with record_id, catalog_id,
                catalog_path and text

        Returns:
            Counts of inserted, updated, unchanged and rejected records
        """
        counts = {"inserted": 0, "updated": 0, "unchanged": 0, "rejected": 0}

        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            for raw in raw_records:
                try:
                    item = raw if isinstance(raw, RawRecordIn) else RawRecordIn(**raw)
                except ValidationError as e:
                    counts["rejected"] += 1
                    logger.warning(f"Rejected raw record {raw.get('record_id') if isinstance(raw, dict) else raw!r}: {e.error_count()} validation errors")
                    continue

                cursor.execute(
                    "SELECT catalog_id, catalog_path, text FROM records WHERE record_id = ?",
                    (item.record_id,)
                )
                existing = cursor.fetchone()

                if existing is None:
                    cursor.execute(
                        "INSERT INTO records (record_id, catalog_id, catalog_path, text, status, updated_at) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        (item.record_id, item.catalog_id, item.catalog_path, item.text,
                         RecordStatus.PENDING.value, _now_iso())
                    )
                    counts["inserted"] += 1
                elif tuple(existing) == (item.catalog_id, item.catalog_path, item.text):
                    counts["unchanged"] += 1
                else:
                    cursor.execute(
                        "UPDATE records SET catalog_id = ?, catalog_path = ?, text = ?, embedding = NULL, "
                        "status = ?, last_error = NULL, updated_at = ?, claim_token = NULL, claimed_at = NULL "
                        "WHERE record_id = ?",
                        (item.catalog_id, item.catalog_path, item.text,
                         RecordStatus.PENDING.value, _now_iso(), item.record_id)
                    )
                    counts["updated"] += 1

            conn.commit()

        logger.log_operation("records.ingest", "success", counts)
        return counts

    def get(self, record_id: str) -> Optional[Record]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_COLUMNS} FROM records WHERE record_id = ?", (record_id,))
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def claim_pending(self, limit: int, record_ids: Optional[Sequence[str]] = None,
                      lease_sec: float = 600.0) -> Tuple[Optional[str], List[Record]]:
        """
        Atomically claim up to `limit` pending records.

        Records already claimed under an unexpired lease are skipped, so
        concurrent workers never receive the same record.

        Returns:
            (claim_token, records); the token is None when nothing was claimed
        """
        now = time.time()
        token = uuid.uuid4().hex

        query = (
            f"SELECT {_COLUMNS} FROM records "
            "WHERE status = ? AND (claim_token IS NULL OR claimed_at < ?)"
        )
        params = [RecordStatus.PENDING.value, now - lease_sec]
        if record_ids is not None:
            query += " AND record_id IN (SELECT value FROM json_each(?))"
            params.append(json.dumps(list(record_ids)))
        query += " ORDER BY rowid LIMIT ?"
        params.append(limit)

        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            # Take the write lock up front so select-then-claim is atomic
            cursor.execute("BEGIN IMMEDIATE")
            try:
                cursor.execute(query, params)
                rows = cursor.fetchall()
                cursor.executemany(
                    "UPDATE records SET claim_token = ?, claimed_at = ? WHERE record_id = ?",
                    [(token, now, row[0]) for row in rows]
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise

        if not rows:
            return None, []
        return token, [_row_to_record(row) for row in rows]

    def mark_embedded(self, claim_token: str, items: Sequence[Tuple[str, object]]) -> int:
        """Mark claimed records EMBEDDED with their vectors, in one transaction.

        Records whose claim was lost (lease expired and re-claimed) are skipped.
        """
        updated_at = _now_iso()
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.executemany(
                "UPDATE records SET status = ?, embedding = ?, last_error = NULL, updated_at = ?, "
                "claim_token = NULL, claimed_at = NULL WHERE record_id = ? AND claim_token = ?",
                [(RecordStatus.EMBEDDED.value, _encode_embedding(vector), updated_at, record_id, claim_token)
                 for record_id, vector in items]
            )
            conn.commit()
            return cursor.rowcount

    def mark_failed(self, claim_token: str, record_ids: Sequence[str], error: str) -> int:
        """Mark claimed records FAILED with the error message attached."""
        updated_at = _now_iso()
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.executemany(
                "UPDATE records SET status = ?, last_error = ?, updated_at = ?, "
                "claim_token = NULL, claimed_at = NULL WHERE record_id = ? AND claim_token = ?",
                [(RecordStatus.FAILED.value, error[:1000], updated_at, record_id, claim_token)
                 for record_id in record_ids]
            )
            conn.commit()
            return cursor.rowcount

    def release(self, claim_token: str, record_ids: Sequence[str]) -> int:
        """Give claimed records back to the pending pool untouched."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.executemany(
                "UPDATE records SET claim_token = NULL, claimed_at = NULL "
                "WHERE record_id = ? AND claim_token = ?",
                [(record_id, claim_token) for record_id in record_ids]
            )
            conn.commit()
            return cursor.rowcount

    def reprocess_failed(self, record_ids: Optional[Sequence[str]] = None) -> int:
        """Operator action: move FAILED records (all, or the given ids) back to PENDING."""
        query = "UPDATE records SET status = ?, last_error = NULL, updated_at = ? WHERE status = ?"
        params = [RecordStatus.PENDING.value, _now_iso(), RecordStatus.FAILED.value]
        if record_ids is not None:
            query += " AND record_id IN (SELECT value FROM json_each(?))"
            params.append(json.dumps(list(record_ids)))

        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            conn.commit()
            count = cursor.rowcount

        logger.log_operation("records.reprocess_failed", "success", {"records": count})
        return count

    def archive(self, record_ids: Sequence[str]) -> int:
        """Move records out of the working set into the archive table."""
        ids_json = json.dumps(list(record_ids))
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                cursor.execute(
                    f"INSERT OR REPLACE INTO records_archive ({_COLUMNS}, archived_at) "
                    f"SELECT {_COLUMNS}, ? FROM records WHERE record_id IN (SELECT value FROM json_each(?))",
                    (_now_iso(), ids_json)
                )
                cursor.execute(
                    "DELETE FROM records WHERE record_id IN (SELECT value FROM json_each(?))",
                    (ids_json,)
                )
                count = cursor.rowcount
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return count

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in RecordStatus}
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT status, COUNT(*) FROM records GROUP BY status")
            for status, count in cursor.fetchall():
                counts[status] = count
        return counts

    def iter_embedded(self, batch_size: int = 1000) -> Iterator[Record]:
        """Yield every EMBEDDED record with its vector, in batches."""
        last_rowid = 0
        while True:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"SELECT rowid, {_COLUMNS} FROM records WHERE status = ? AND rowid > ? "
                    "ORDER BY rowid LIMIT ?",
                    (RecordStatus.EMBEDDED.value, last_rowid, batch_size)
                )
                rows = cursor.fetchall()
            if not rows:
                return
            for row in rows:
                last_rowid = row[0]
                yield _row_to_record(row[1:])
