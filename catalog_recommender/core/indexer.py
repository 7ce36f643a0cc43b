"""
Batch indexer: drains pending records in chunks with a fixed pool of worker
threads, embeds each chunk in one provider call and upserts the vectors.

Failures are contained to the chunk (or record) they happen in. Two safety
valves abort the whole run: too many consecutive failed chunks, or a
cumulative chunk error rate above the limit. An authentication failure
aborts immediately, as does a circuit breaker that is open inside its
cooldown; while another worker holds the half-open trial, workers wait.
"""

import threading
import time
from typing import List, Optional, Sequence

from ..util.logging import logger
from ..vector.embedding_client import EmbeddingClient
from ..vector.index import IVectorStore
from .cancellation import CancellationToken
from .circuit_breaker import BreakerState
from .errors import (
    AuthError,
    CircuitOpenError,
    DimensionMismatchError,
    OperationCancelledError,
    RecommenderError,
)
from .records import RecordStore
from .schema import IndexRunReport, Record
from .text_cleaning import clean_text


class _IndexRun:
    """Shared, lock-protected state of one index_batch call."""

    def __init__(self, max_consecutive_failures: int, max_error_rate: float, error_rate_min_chunks: int):
        self.max_consecutive_failures = max_consecutive_failures
        self.max_error_rate = max_error_rate
        self.error_rate_min_chunks = error_rate_min_chunks

        self.lock = threading.Lock()
        self.stop = threading.Event()
        self.report = IndexRunReport()
        self.consecutive_failures = 0

    def abort(self, reason: str) -> None:
        with self.lock:
            self._abort(reason)

    def _abort(self, reason: str) -> None:
        # Caller holds self.lock; the first reason wins
        if not self.report.aborted:
            self.report.aborted = True
            self.report.abort_reason = reason
        self.stop.set()

    def chunk_succeeded(self, embedded: int, failed: int) -> None:
        with self.lock:
            self.report.chunks_processed += 1
            self.report.embedded += embedded
            self.report.failed += failed
            self.report.processed += embedded + failed
            self.consecutive_failures = 0

    def records_failed(self, count: int) -> None:
        # Records failed outside any counted chunk
        with self.lock:
            self.report.failed += count
            self.report.processed += count

    def chunk_failed(self, records_failed: int, error: str) -> None:
        with self.lock:
            report = self.report
            report.chunks_processed += 1
            report.chunks_failed += 1
            report.failed += records_failed
            report.processed += records_failed
            if len(report.errors) < 20:
                report.errors.append(error)
            self.consecutive_failures += 1

            if self.consecutive_failures > self.max_consecutive_failures:
                self._abort(
                    f"{self.consecutive_failures} consecutive chunk failures "
                    f"(limit {self.max_consecutive_failures}); last error: {error}"
                )
            elif report.chunks_processed >= self.error_rate_min_chunks:
                error_rate = report.chunks_failed / report.chunks_processed
                if error_rate > self.max_error_rate:
                    self._abort(
                        f"chunk error rate {error_rate:.0%} exceeds {self.max_error_rate:.0%} "
                        f"after {report.chunks_processed} chunks; last error: {error}"
                    )


class BatchIndexer:
    """Embeds pending records and upserts them into the vector store."""

    def __init__(self, record_store: RecordStore, embedding_client: EmbeddingClient,
                 vector_store: IVectorStore, chunk_size: int = 100, workers: int = 4,
                 max_consecutive_failures: int = 10, max_error_rate: float = 0.5,
                 error_rate_min_chunks: int = 20, lease_sec: float = 600.0,
                 max_input_chars: int = 8000, call_timeout_sec: Optional[float] = None,
                 breaker_poll_sec: float = 0.05):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1: {chunk_size}")
        if workers < 1:
            raise ValueError(f"workers must be >= 1: {workers}")

        self.record_store = record_store
        self.embedding_client = embedding_client
        self.vector_store = vector_store
        self.chunk_size = min(chunk_size, embedding_client.max_batch_size)
        self.workers = workers
        self.max_consecutive_failures = max_consecutive_failures
        self.max_error_rate = max_error_rate
        self.error_rate_min_chunks = error_rate_min_chunks
        self.lease_sec = lease_sec
        self.max_input_chars = max_input_chars
        self.call_timeout_sec = call_timeout_sec
        self.breaker_poll_sec = breaker_poll_sec

    def index_batch(self, pending_record_ids: Optional[Sequence[str]] = None) -> IndexRunReport:
        """
        Process pending records until none remain or a safety valve trips.

        Args:
            pending_record_ids: Restrict the run to these records

        Returns:
            IndexRunReport with processed/failed counts, duration and the
            abort reason if the run was halted
        """
        run = _IndexRun(self.max_consecutive_failures, self.max_error_rate, self.error_rate_min_chunks)
        record_ids = list(pending_record_ids) if pending_record_ids is not None else None
        started = time.monotonic()

        logger.log_operation("index.run", "started", {
            "workers": self.workers,
            "chunk_size": self.chunk_size,
            "filtered": record_ids is not None
        })

        threads = [
            threading.Thread(target=self._worker, args=(run, f"indexer-{i}", record_ids),
                             name=f"indexer-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        report = run.report
        report.duration_sec = time.monotonic() - started
        logger.log_index_run("aborted" if report.aborted else "completed", report.to_dict())
        return report

    def reprocess_failed(self, record_ids: Optional[Sequence[str]] = None) -> int:
        """Operator-triggered FAILED -> PENDING transition."""
        return self.record_store.reprocess_failed(record_ids)

    def _worker(self, run: _IndexRun, name: str, record_ids: Optional[List[str]]) -> None:
        while not run.stop.is_set():
            gate = self._breaker_gate()
            if gate == "open":
                run.abort("embedding service degraded: circuit breaker is open")
                return
            if gate == "wait":
                run.stop.wait(self.breaker_poll_sec)
                continue

            token = None
            records: List[Record] = []
            try:
                token, records = self.record_store.claim_pending(self.chunk_size, record_ids, self.lease_sec)
                if not records:
                    return
                self._process_chunk(run, name, token, records)
            except Exception as e:
                if records:
                    self.record_store.release(token, [record.record_id for record in records])
                logger.error(f"Indexer worker {name} stopped on unexpected error: {e}")
                run.abort(f"unexpected error in {name}: {type(e).__name__}: {e}")
                return

    def _breaker_gate(self) -> str:
        """
        Decide whether a worker may claim its next chunk.

        Returns:
            "proceed" when calls are admitted, "open" while the breaker is
            open inside its cooldown, "wait" while another worker holds the
            half-open trial
        """
        breaker = self.embedding_client.breaker
        if breaker is None or breaker.allows_calls():
            return "proceed"
        if breaker.state.state == BreakerState.OPEN:
            return "open"
        return "wait"

    def _process_chunk(self, run: _IndexRun, worker: str, token: str, records: List[Record]) -> None:
        record_ids = [record.record_id for record in records]

        to_embed = []
        empty_ids = []
        for record in records:
            text = clean_text(record.text, self.max_input_chars)
            if text:
                to_embed.append((record, text))
            else:
                empty_ids.append(record.record_id)

        if empty_ids:
            self.record_store.mark_failed(token, empty_ids, "empty text after cleaning")

        if not to_embed:
            run.chunk_succeeded(embedded=0, failed=len(empty_ids))
            return

        embed_ids = [record.record_id for record, _ in to_embed]
        cancel_token = CancellationToken(self.call_timeout_sec) if self.call_timeout_sec else None
        try:
            vectors = self.embedding_client.embed([text for _, text in to_embed],
                                                  cancel_token=cancel_token, strict=False)
        except AuthError as e:
            self.record_store.release(token, embed_ids)
            logger.log_index_chunk(worker, len(records), "aborted", {"error": str(e)})
            run.abort(f"authentication failed: {e}")
            return
        except CircuitOpenError as e:
            # The provider was never called; the records go back to the pool
            # and the worker's next breaker check decides to wait or abort
            self.record_store.release(token, embed_ids)
            logger.log_index_chunk(worker, len(records), "rejected", {"error": str(e)})
            if empty_ids:
                run.records_failed(len(empty_ids))
            return
        except OperationCancelledError as e:
            self.record_store.release(token, embed_ids)
            logger.log_index_chunk(worker, len(records), "cancelled", {"error": str(e)})
            run.chunk_failed(len(empty_ids), str(e))
            return
        except RecommenderError as e:
            error = f"{type(e).__name__}: {e}"
            self.record_store.mark_failed(token, embed_ids, error)
            logger.log_index_chunk(worker, len(records), "failed", {"error": error[:200]})
            run.chunk_failed(len(record_ids), error)
            return

        embedded = []
        failed = []
        # Upsert before marking EMBEDDED so a crash never leaves a record
        # marked without its vector in the store.
        for (record, _), vector in zip(to_embed, vectors):
            try:
                self.vector_store.upsert(record.record_id, record.catalog_id, record.catalog_path, vector)
            except DimensionMismatchError as e:
                logger.error(f"Dimension mismatch for record {record.record_id}: {e}")
                failed.append((record.record_id, f"DimensionMismatchError: {e}"))
                continue
            except ValueError as e:
                failed.append((record.record_id, str(e)))
                continue
            embedded.append((record.record_id, vector))

        self.record_store.mark_embedded(token, embedded)
        for record_id, error in failed:
            self.record_store.mark_failed(token, [record_id], error)

        failed_count = len(failed) + len(empty_ids)
        logger.log_index_chunk(worker, len(records), "success", {
            "embedded": len(embedded),
            "failed": failed_count
        })
        run.chunk_succeeded(embedded=len(embedded), failed=failed_count)
