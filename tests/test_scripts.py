"""
Tests for the operator scripts.
"""

import pytest
import numpy as np
from unittest.mock import MagicMock, patch

from catalog_recommender.core import config
from catalog_recommender.core.records import RecordStore
from catalog_recommender.core.schema import IndexRunReport
from catalog_recommender.vector.index import SimpleInMemoryVectorStore
from scripts import rebuild_index, run_indexer

DIM = 64


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "records.db")


@pytest.fixture
def hash_config(monkeypatch):
    monkeypatch.setattr(config, "EMBED_PROVIDER", "hash")
    monkeypatch.setattr(config, "VECTOR_PROVIDER", "memory")
    monkeypatch.setattr(config, "EMBED_DIM", DIM)


def ingest(db_path, count):
    store = RecordStore(db_path)
    store.ingest([
        {"record_id": f"r{i}", "catalog_id": "A", "catalog_path": "Hardware/Printer",
         "text": f"printer issue number {i}"}
        for i in range(count)
    ])
    return store


class TestRunIndexer:
    """Test the batch indexing entry point."""

    def test_indexes_pending_records(self, db_path, hash_config, capsys):
        store = ingest(db_path, 3)

        run_indexer.main(["--db-path", db_path, "--workers", "1", "--chunk-size", "2"])

        out = capsys.readouterr().out
        assert "Starting batch indexing..." in out
        assert "Processed 3 records (3 embedded, 0 failed)" in out
        assert "Indexing complete!" in out
        assert store.count_by_status()["embedded"] == 3

    def test_json_report(self, db_path, hash_config, capsys):
        ingest(db_path, 1)

        run_indexer.main(["--db-path", db_path, "--workers", "1", "--json"])

        assert '"embedded": 1' in capsys.readouterr().out

    def test_abort_exits_non_zero(self, capsys):
        engine = MagicMock()
        engine.indexer.index_batch.return_value = IndexRunReport(
            processed=11, failed=11, aborted=True, abort_reason="11 consecutive chunk failures"
        )

        with patch("scripts.run_indexer.create_engine", return_value=engine):
            with pytest.raises(SystemExit) as exc_info:
                run_indexer.main(["--record-id", "r1", "--record-id", "r2"])

        assert exc_info.value.code == 1
        engine.indexer.index_batch.assert_called_once_with(["r1", "r2"])
        assert "ERROR: Run aborted: 11 consecutive chunk failures" in capsys.readouterr().out

    def test_reprocess_failed_flag(self, capsys):
        engine = MagicMock()
        engine.indexer.reprocess_failed.return_value = 4
        engine.indexer.index_batch.return_value = IndexRunReport(processed=4, embedded=4)

        with patch("scripts.run_indexer.create_engine", return_value=engine):
            run_indexer.main(["--reprocess-failed"])

        engine.indexer.reprocess_failed.assert_called_once_with(None)
        assert "Re-queued 4 failed records" in capsys.readouterr().out


class TestRebuildIndex:
    """Test rebuilding the vector index from stored embeddings."""

    def test_rebuild_from_stored_vectors(self, db_path, capsys):
        store = ingest(db_path, 3)
        token, _ = store.claim_pending(10)
        store.mark_embedded(token, [(f"r{i}", np.eye(DIM, dtype=np.float32)[i]) for i in range(3)])

        vector_store = SimpleInMemoryVectorStore(dimension=DIM)
        vector_store.upsert("stale", "Z", "Z", np.ones(DIM))

        rebuild_index.main(db_path=db_path, vector_store=vector_store)

        out = capsys.readouterr().out
        assert "✓ Cleared existing vector index" in out
        assert "Found 3 embedded records in canonical store" in out
        assert "✓ Successfully rebuilt index with 3 vectors" in out
        assert "✓ Verification search returned 3 results" in out
        assert len(vector_store) == 3
        assert "stale" not in vector_store

    def test_nothing_to_rebuild(self, db_path, capsys):
        ingest(db_path, 2)

        rebuild_index.main(db_path=db_path, vector_store=SimpleInMemoryVectorStore(dimension=DIM))

        assert "No entries to rebuild. Exiting." in capsys.readouterr().out
