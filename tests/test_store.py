"""Tests for the DuckDB store."""

from datetime import UTC, datetime

import pyarrow as pa
import pyarrow.parquet as pq
import pytest
from conftest import NOW, REPO_ID

from src.errors import StorageError
from src.models import Review
from src.store import OUTPUT_SCHEMA, BatchWriter, Store


def make_review(number: int, body: str = "Walkthrough") -> Review:
    """Create a Review with sensible defaults."""
    return Review(
        id=f"aireview:{number:032x}",
        pull_request_id="github:GithubPullRequest:1:7",
        repo_id=REPO_ID,
        ai_tool="coderabbit",
        ai_tool_user="coderabbitai",
        review_id=f"github:GithubPrComment:1:{number}",
        body=body,
        summary="",
        created_date=NOW,
        risk_level="low",
        risk_score=10,
        risk_confidence=70,
        review_state="commented",
        source_platform="github",
    )


class TestUpsert:
    """Tests for INSERT OR REPLACE writes."""

    def test_batch_duplicates_collapse_to_last(self, store):
        written = store.upsert([make_review(1, "first"), make_review(1, "second")])
        assert written == 1
        [row] = store.iter_reviews([REPO_ID])
        assert row["body"] == "second"

    def test_replace_existing(self, store):
        store.upsert([make_review(1, "first")])
        store.upsert([make_review(1, "second")])
        assert store.count("ai_reviews") == 1
        assert next(store.iter_reviews([REPO_ID]))["body"] == "second"

    def test_empty(self, store):
        assert store.upsert([]) == 0
        assert store.upsert_rows("ai_reviews", []) == 0

    def test_composite_key(self, store):
        rows = [
            {"pull_request_id": "pr1", "issue_id": "i1"},
            {"pull_request_id": "pr1", "issue_id": "i1"},
            {"pull_request_id": "pr1", "issue_id": "i2"},
        ]
        assert store.upsert_rows("pull_request_issues", rows) == 2
        assert store.count("pull_request_issues") == 2

    def test_unknown_column_raises(self, store):
        with pytest.raises(StorageError):
            store.upsert_rows("issues", [{"id": "i1", "no_such_column": 1}])

    def test_failed_write_leaves_store_usable(self, store):
        with pytest.raises(StorageError):
            store.upsert_rows("issues", [{"id": "i1", "no_such_column": 1}])
        store.upsert([make_review(1)])
        assert store.count("ai_reviews") == 1

    def test_timestamps_round_trip_as_utc(self, store):
        store.upsert([make_review(1)])
        row = next(store.iter_reviews([REPO_ID]))
        assert row["created_date"] == NOW
        assert row["created_date"].tzinfo == UTC


class TestBatchWriter:
    """Tests for buffered writes."""

    def test_flushes_every_batch(self, store):
        writer = BatchWriter(store, batch_size=2)
        for i in range(3):
            writer.add(make_review(i))
        assert writer.written == 2
        assert len(writer.pending) == 1
        assert store.count("ai_reviews") == 2

    def test_flushes_on_exit(self, store):
        with BatchWriter(store, batch_size=10) as writer:
            writer.add(make_review(1))
        assert writer.written == 1
        assert store.count("ai_reviews") == 1

    def test_drops_pending_on_error(self, store):
        with pytest.raises(RuntimeError):
            with BatchWriter(store, batch_size=10) as writer:
                writer.add(make_review(1))
                raise RuntimeError("boom")
        assert store.count("ai_reviews") == 0


class TestReads:
    """Tests for streaming reads and scope lookups."""

    def test_stream_in_small_chunks(self, store):
        store.upsert([make_review(i) for i in range(5)])
        rows = list(store._stream("SELECT id FROM ai_reviews ORDER BY id", batch_size=2))
        assert len(rows) == 5

    def test_bad_query_raises(self, store):
        with pytest.raises(StorageError):
            list(store._stream("SELECT * FROM no_such_table"))

    def test_repo_ids_for_project(self, store, seed):
        seed.project("acme", "repo-b", "repo-a")
        store.upsert_rows("project_mapping", [{"project_name": "acme", "table_name": "boards", "row_id": "board-1"}])
        assert store.repo_ids_for_project("acme") == ["repo-a", "repo-b"]
        assert store.repo_ids_for_project("other") == []

    def test_empty_scope_reads_nothing(self, store, seed):
        seed.comment(seed.pull_request(1), "Walkthrough")
        assert list(store.iter_comments([])) == []
        assert list(store.iter_reviews([])) == []
        assert list(store.iter_merged_pull_requests([])) == []

    def test_comments_join_pull_request(self, store, seed):
        pr = seed.pull_request(1, merged_date=NOW)
        seed.comment(pr, "Walkthrough", comment_id="github:GithubPrComment:1:9")
        [row] = store.iter_comments([REPO_ID])
        assert row["repo_id"] == REPO_ID
        assert row["pr_url"] == "https://github.com/acme/api/pull/1"
        assert row["merged_date"] == NOW


class TestParquet:
    """Tests for Parquet import and export."""

    def test_export_output_tables(self, store, tmp_path):
        store.upsert([make_review(1), make_review(2)])
        written = store.export_parquet(tmp_path / "out")

        assert set(written) == set(OUTPUT_SCHEMA)
        assert pq.read_table(written["ai_reviews"]).num_rows == 2
        assert pq.read_table(written["ai_failure_predictions"]).num_rows == 0

    def test_export_keeps_columns_of_empty_tables(self, store, tmp_path):
        written = store.export_parquet(tmp_path / "out")
        schema = pq.read_schema(written["ai_failure_predictions"])
        assert "prediction_outcome" in schema.names
        assert "pr_merged_at" in schema.names

    def test_export_writes_every_batch(self, store, tmp_path, monkeypatch):
        monkeypatch.setattr("src.store.BATCH_SIZE", 1)
        store.upsert([make_review(1), make_review(2), make_review(3)])
        written = store.export_parquet(tmp_path / "out")
        assert sorted(pq.read_table(written["ai_reviews"]).column("review_id").to_pylist()) == [
            "github:GithubPrComment:1:1",
            "github:GithubPrComment:1:2",
            "github:GithubPrComment:1:3",
        ]

    def test_import_source_tables(self, store, tmp_path):
        table = pa.table({
            "id": ["github:GithubPullRequest:1:1", "github:GithubPullRequest:1:2"],
            "base_repo_id": [REPO_ID, REPO_ID],
            "status": ["MERGED", "OPEN"],
            "url": ["https://github.com/acme/api/pull/1", "https://github.com/acme/api/pull/2"],
            "merge_commit_sha": ["abc", None],
            "created_date": [datetime(2025, 1, 1), datetime(2025, 1, 2)],
            "merged_date": [datetime(2025, 1, 3), None],
        })
        pq.write_table(table, tmp_path / "pull_requests.parquet")

        loaded = store.import_parquet(tmp_path)

        assert loaded == {"pull_requests": 2}
        [merged] = store.iter_merged_pull_requests([REPO_ID])
        assert merged["merged_date"] == datetime(2025, 1, 3, tzinfo=UTC)

    def test_import_empty_directory(self, store, tmp_path):
        assert store.import_parquet(tmp_path) == {}


class TestFileStore:
    """Tests for on-disk databases."""

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "aireview.duckdb"
        with Store(path) as s:
            s.upsert([make_review(1)])
        assert path.exists()

        with Store(path) as s:
            assert s.count("ai_reviews") == 1
