"""DuckDB storage for source rows and pipeline output.

Source tables (pull requests, comments, CI, issues, commits, project
mapping) are owned by collectors and only read here. Output tables are
written with INSERT OR REPLACE keyed by record id, one transaction per batch.
Timestamps are stored as naive UTC and come back timezone-aware.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import duckdb
import pyarrow.parquet as pq
from pydantic import BaseModel

from .config import BATCH_SIZE
from .errors import StorageError
from .models import Finding, Metrics, Prediction, Review

logger = logging.getLogger(__name__)

SOURCE_SCHEMA = {
    "pull_requests": """
        CREATE TABLE IF NOT EXISTS pull_requests (
            id VARCHAR PRIMARY KEY,
            base_repo_id VARCHAR,
            status VARCHAR,
            url VARCHAR,
            merge_commit_sha VARCHAR,
            created_date TIMESTAMP,
            merged_date TIMESTAMP
        )
    """,
    "pull_request_comments": """
        CREATE TABLE IF NOT EXISTS pull_request_comments (
            id VARCHAR PRIMARY KEY,
            pull_request_id VARCHAR,
            account_id VARCHAR,
            body VARCHAR,
            status VARCHAR,
            created_date TIMESTAMP
        )
    """,
    "cicd_pipelines": """
        CREATE TABLE IF NOT EXISTS cicd_pipelines (
            id VARCHAR PRIMARY KEY,
            status VARCHAR,
            finished_date TIMESTAMP
        )
    """,
    "cicd_pipeline_commits": """
        CREATE TABLE IF NOT EXISTS cicd_pipeline_commits (
            pipeline_id VARCHAR,
            commit_sha VARCHAR,
            PRIMARY KEY (pipeline_id, commit_sha)
        )
    """,
    "issues": """
        CREATE TABLE IF NOT EXISTS issues (
            id VARCHAR PRIMARY KEY,
            type VARCHAR,
            created_date TIMESTAMP
        )
    """,
    "pull_request_issues": """
        CREATE TABLE IF NOT EXISTS pull_request_issues (
            pull_request_id VARCHAR,
            issue_id VARCHAR,
            PRIMARY KEY (pull_request_id, issue_id)
        )
    """,
    "commits": """
        CREATE TABLE IF NOT EXISTS commits (
            sha VARCHAR PRIMARY KEY,
            message VARCHAR,
            authored_date TIMESTAMP
        )
    """,
    "pull_request_commits": """
        CREATE TABLE IF NOT EXISTS pull_request_commits (
            pull_request_id VARCHAR,
            commit_sha VARCHAR,
            PRIMARY KEY (pull_request_id, commit_sha)
        )
    """,
    "project_mapping": """
        CREATE TABLE IF NOT EXISTS project_mapping (
            project_name VARCHAR,
            table_name VARCHAR,
            row_id VARCHAR,
            PRIMARY KEY (project_name, table_name, row_id)
        )
    """,
}

OUTPUT_SCHEMA = {
    "ai_reviews": """
        CREATE TABLE IF NOT EXISTS ai_reviews (
            id VARCHAR PRIMARY KEY,
            pull_request_id VARCHAR,
            repo_id VARCHAR,
            ai_tool VARCHAR,
            ai_tool_user VARCHAR,
            review_id VARCHAR,
            body VARCHAR,
            summary VARCHAR,
            created_date TIMESTAMP,
            risk_level VARCHAR,
            risk_score INTEGER,
            risk_confidence INTEGER,
            issues_found INTEGER,
            suggestions_count INTEGER,
            files_reviewed INTEGER,
            lines_reviewed INTEGER,
            effort_complexity VARCHAR,
            effort_rating INTEGER,
            effort_minutes INTEGER,
            pre_merge_checks_passed INTEGER,
            pre_merge_checks_failed INTEGER,
            pre_merge_checks_inconclusive INTEGER,
            review_state VARCHAR,
            source_platform VARCHAR,
            source_url VARCHAR
        )
    """,
    "ai_review_findings": """
        CREATE TABLE IF NOT EXISTS ai_review_findings (
            id VARCHAR PRIMARY KEY,
            ai_review_id VARCHAR,
            pull_request_id VARCHAR,
            repo_id VARCHAR,
            ai_tool VARCHAR,
            category VARCHAR,
            severity VARCHAR,
            type VARCHAR,
            title VARCHAR,
            description VARCHAR,
            file_path VARCHAR,
            line_start INTEGER,
            line_end INTEGER,
            commit_sha VARCHAR,
            code_snippet VARCHAR,
            suggested_code VARCHAR,
            suggestion_applied BOOLEAN,
            is_resolved BOOLEAN,
            resolved_at TIMESTAMP,
            resolved_by VARCHAR,
            resolution VARCHAR,
            response_time INTEGER,
            created_date TIMESTAMP,
            source_comment_id VARCHAR
        )
    """,
    "ai_failure_predictions": """
        CREATE TABLE IF NOT EXISTS ai_failure_predictions (
            id VARCHAR PRIMARY KEY,
            pull_request_id VARCHAR,
            repo_id VARCHAR,
            ai_tool VARCHAR,
            was_flagged_risky BOOLEAN,
            risk_score INTEGER,
            flagged_at TIMESTAMP,
            pr_merged_at TIMESTAMP,
            had_ci_failure BOOLEAN,
            ci_failure_at TIMESTAMP,
            had_bug_reported BOOLEAN,
            bug_reported_at TIMESTAMP,
            bug_issue_id VARCHAR,
            had_rollback BOOLEAN,
            rollback_at TIMESTAMP,
            prediction_outcome VARCHAR,
            observation_window_days INTEGER,
            observation_end_date TIMESTAMP,
            created_at TIMESTAMP
        )
    """,
    "ai_prediction_metrics": """
        CREATE TABLE IF NOT EXISTS ai_prediction_metrics (
            id VARCHAR PRIMARY KEY,
            repo_id VARCHAR,
            ai_tool VARCHAR,
            period_start TIMESTAMP,
            period_end TIMESTAMP,
            period_type VARCHAR,
            true_positives INTEGER,
            false_positives INTEGER,
            false_negatives INTEGER,
            true_negatives INTEGER,
            "precision" DOUBLE,
            recall DOUBLE,
            accuracy DOUBLE,
            f1_score DOUBLE,
            total_prs INTEGER,
            flagged_prs INTEGER,
            failed_prs INTEGER,
            observed_prs INTEGER,
            recommended_autonomy_level VARCHAR,
            calculated_at TIMESTAMP
        )
    """,
}

TABLE_FOR_MODEL: dict[type[BaseModel], str] = {
    Review: "ai_reviews",
    Finding: "ai_review_findings",
    Prediction: "ai_failure_predictions",
    Metrics: "ai_prediction_metrics",
}

PRIMARY_KEYS = {
    "cicd_pipeline_commits": ("pipeline_id", "commit_sha"),
    "pull_request_issues": ("pull_request_id", "issue_id"),
    "commits": ("sha",),
    "pull_request_commits": ("pull_request_id", "commit_sha"),
    "project_mapping": ("project_name", "table_name", "row_id"),
}


def to_db_time(value: Any) -> Any:
    """Convert aware datetimes to naive UTC; pass anything else through."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def from_db_time(value: Any) -> Any:
    """Attach UTC to naive datetimes read back from the database."""
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Store:
    """DuckDB-backed store shared by all pipeline stages."""

    def __init__(self, path: Path | str = ":memory:"):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.con = duckdb.connect(self.path)
            self.create_schema()
        except duckdb.Error as e:
            raise StorageError(f"cannot open {self.path}: {e}") from e

    def create_schema(self) -> None:
        for ddl in (*SOURCE_SCHEMA.values(), *OUTPUT_SCHEMA.values()):
            self.con.execute(ddl)

    def close(self) -> None:
        self.con.close()

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # === Writes ===

    def upsert_rows(self, table: str, rows: Iterable[dict[str, Any]]) -> int:
        """Insert or replace rows in one transaction. Returns rows written.

        Rows sharing a primary key within the batch collapse to the last one.
        """
        key_columns = PRIMARY_KEYS.get(table, ("id",))
        unique: dict[tuple, dict[str, Any]] = {}
        for row in rows:
            unique[tuple(row[k] for k in key_columns)] = row
        if not unique:
            return 0

        batch = list(unique.values())
        columns = list(batch[0].keys())
        placeholders = ", ".join("?" for _ in columns)
        column_list = ", ".join(f'"{c}"' for c in columns)
        sql = f"INSERT OR REPLACE INTO {table} ({column_list}) VALUES ({placeholders})"
        params = [[to_db_time(row[c]) for c in columns] for row in batch]

        try:
            self.con.execute("BEGIN TRANSACTION")
            self.con.executemany(sql, params)
            self.con.execute("COMMIT")
        except duckdb.Error as e:
            try:
                self.con.execute("ROLLBACK")
            except duckdb.Error:
                logger.debug(f"Rollback after failed write to {table} also failed")
            raise StorageError(f"writing {len(batch)} rows to {table} failed: {e}") from e

        return len(batch)

    def upsert(self, records: Sequence[BaseModel]) -> int:
        """Upsert output records of a single model type."""
        if not records:
            return 0
        table = TABLE_FOR_MODEL[type(records[0])]
        return self.upsert_rows(table, [r.model_dump() for r in records])

    # === Reads ===

    def _stream(self, query: str, params: list | None = None, batch_size: int = BATCH_SIZE) -> Iterator[dict[str, Any]]:
        """Stream query rows as dicts through a dedicated cursor."""
        cursor = self.con.cursor()
        try:
            try:
                cursor.execute(query, params or [])
            except duckdb.Error as e:
                raise StorageError(f"query failed: {e}") from e
            columns = [d[0] for d in cursor.description]
            while True:
                try:
                    rows = cursor.fetchmany(batch_size)
                except duckdb.Error as e:
                    raise StorageError(f"reading rows failed: {e}") from e
                if not rows:
                    break
                for row in rows:
                    yield {c: from_db_time(v) for c, v in zip(columns, row)}
        finally:
            cursor.close()

    def _fetchone(self, query: str, params: list) -> tuple | None:
        row = self.con.execute(query, params).fetchone()
        if row is None:
            return None
        return tuple(from_db_time(v) for v in row)

    def repo_ids_for_project(self, project_name: str) -> list[str]:
        """Repository ids mapped to a project."""
        rows = self.con.execute(
            """
            SELECT row_id FROM project_mapping
            WHERE project_name = ? AND table_name = 'repos'
            ORDER BY row_id
            """,
            [project_name],
        ).fetchall()
        return [r[0] for r in rows]

    def iter_comments(
        self,
        repo_ids: list[str],
        time_after: datetime | None = None,
        source_platform: str | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Stream PR comments of the scope joined to their pull request."""
        if not repo_ids:
            return
        where = ["list_contains(?, pr.base_repo_id)"]
        params: list[Any] = [repo_ids]
        if time_after is not None:
            where.append("c.created_date > ?")
            params.append(to_db_time(time_after))
        if source_platform:
            where.append("pr.id LIKE ?")
            params.append(f"{source_platform}:%")

        yield from self._stream(f"""
            SELECT
                c.id,
                c.pull_request_id,
                COALESCE(c.account_id, '') AS account_id,
                COALESCE(c.body, '') AS body,
                c.created_date,
                c.status,
                pr.base_repo_id AS repo_id,
                pr.status AS pr_status,
                pr.merged_date,
                pr.url AS pr_url
            FROM pull_request_comments c
            JOIN pull_requests pr ON pr.id = c.pull_request_id
            WHERE {" AND ".join(where)}
            ORDER BY c.created_date, c.id
        """, params)

    def iter_reviews(self, repo_ids: list[str]) -> Iterator[dict[str, Any]]:
        """Stream stored Reviews of the scope."""
        if not repo_ids:
            return
        yield from self._stream("""
            SELECT * FROM ai_reviews
            WHERE list_contains(?, repo_id)
            ORDER BY created_date, id
        """, [repo_ids])

    def iter_merged_pull_requests(self, repo_ids: list[str]) -> Iterator[dict[str, Any]]:
        """Stream merged PRs, each joined to the latest Review per AI tool.

        A PR reviewed by two tools yields two rows; an unreviewed PR yields
        one row with an empty tool.
        """
        if not repo_ids:
            return
        yield from self._stream("""
            WITH latest AS (
                SELECT
                    pull_request_id,
                    ai_tool,
                    risk_level,
                    risk_score,
                    created_date,
                    ROW_NUMBER() OVER (
                        PARTITION BY pull_request_id, ai_tool
                        ORDER BY created_date DESC, id DESC
                    ) AS rn
                FROM ai_reviews
            )
            SELECT
                pr.id,
                pr.base_repo_id AS repo_id,
                pr.merged_date,
                pr.merge_commit_sha,
                COALESCE(l.ai_tool, '') AS ai_tool,
                l.risk_level,
                COALESCE(l.risk_score, 0) AS risk_score,
                l.created_date AS review_created_date
            FROM pull_requests pr
            LEFT JOIN latest l ON l.pull_request_id = pr.id AND l.rn = 1
            WHERE list_contains(?, pr.base_repo_id)
              AND UPPER(pr.status) = 'MERGED'
            ORDER BY pr.id, ai_tool
        """, [repo_ids])

    def classified_prediction_ids(self, repo_ids: list[str]) -> set[str]:
        """Ids of predictions whose outcome is already decided."""
        if not repo_ids:
            return set()
        rows = self.con.execute(
            """
            SELECT id FROM ai_failure_predictions
            WHERE list_contains(?, repo_id) AND prediction_outcome <> ''
            """,
            [repo_ids],
        ).fetchall()
        return {r[0] for r in rows}

    # === Outcome lookups ===
    # Each returns the earliest matching fact in (start, end], or None.
    # A failing query is logged and treated as "not observed".

    def first_ci_failure(self, commit_sha: str | None, start: datetime, end: datetime) -> datetime | None:
        if not commit_sha:
            return None
        try:
            row = self._fetchone(
                """
                SELECT p.finished_date
                FROM cicd_pipelines p
                JOIN cicd_pipeline_commits pc ON pc.pipeline_id = p.id
                WHERE pc.commit_sha = ?
                  AND p.status = 'FAILURE'
                  AND p.finished_date > ? AND p.finished_date <= ?
                ORDER BY p.finished_date
                LIMIT 1
                """,
                [commit_sha, to_db_time(start), to_db_time(end)],
            )
        except duckdb.Error as e:
            logger.warning(f"CI failure lookup for commit {commit_sha} failed: {e}")
            return None
        return row[0] if row else None

    def first_bug_report(self, pull_request_id: str, start: datetime, end: datetime) -> tuple[str, datetime] | None:
        try:
            row = self._fetchone(
                """
                SELECT i.id, i.created_date
                FROM pull_request_issues pri
                JOIN issues i ON i.id = pri.issue_id
                WHERE pri.pull_request_id = ?
                  AND i.type = 'BUG'
                  AND i.created_date > ? AND i.created_date <= ?
                ORDER BY i.created_date, i.id
                LIMIT 1
                """,
                [pull_request_id, to_db_time(start), to_db_time(end)],
            )
        except duckdb.Error as e:
            logger.warning(f"Bug report lookup for PR {pull_request_id} failed: {e}")
            return None
        return (row[0], row[1]) if row else None

    def first_rollback(self, repo_id: str, start: datetime, end: datetime) -> datetime | None:
        try:
            row = self._fetchone(
                """
                SELECT c.authored_date
                FROM commits c
                JOIN pull_request_commits prc ON prc.commit_sha = c.sha
                JOIN pull_requests pr ON pr.id = prc.pull_request_id
                WHERE pr.base_repo_id = ?
                  AND c.message ILIKE '%revert%'
                  AND c.authored_date > ? AND c.authored_date <= ?
                ORDER BY c.authored_date
                LIMIT 1
                """,
                [repo_id, to_db_time(start), to_db_time(end)],
            )
        except duckdb.Error as e:
            logger.warning(f"Rollback lookup for repo {repo_id} failed: {e}")
            return None
        return row[0] if row else None

    # === Metrics inputs ===

    def prediction_tools(self, repo_id: str) -> list[str]:
        """AI tools with at least one classified prediction in the repo."""
        rows = self.con.execute(
            """
            SELECT DISTINCT ai_tool FROM ai_failure_predictions
            WHERE repo_id = ? AND prediction_outcome <> '' AND ai_tool <> ''
            ORDER BY ai_tool
            """,
            [repo_id],
        ).fetchall()
        return [r[0] for r in rows]

    def prediction_counts(self, repo_id: str, ai_tool: str, start: datetime, end: datetime) -> dict[str, int]:
        """Tallies over classified predictions for PRs merged in [start, end]."""
        row = self.con.execute(
            """
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE was_flagged_risky) AS flagged,
                COUNT(*) FILTER (WHERE had_ci_failure OR had_bug_reported OR had_rollback) AS failed,
                COUNT(*) FILTER (WHERE prediction_outcome = 'TP') AS tp,
                COUNT(*) FILTER (WHERE prediction_outcome = 'FP') AS fp,
                COUNT(*) FILTER (WHERE prediction_outcome = 'FN') AS fn,
                COUNT(*) FILTER (WHERE prediction_outcome = 'TN') AS tn
            FROM ai_failure_predictions
            WHERE repo_id = ? AND ai_tool = ?
              AND pr_merged_at >= ? AND pr_merged_at <= ?
              AND prediction_outcome <> ''
            """,
            [repo_id, ai_tool, to_db_time(start), to_db_time(end)],
        ).fetchone()
        keys = ["total", "flagged", "failed", "tp", "fp", "fn", "tn"]
        return dict(zip(keys, row))

    def count(self, table: str) -> int:
        row = self.con.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        return row[0] if row else 0

    # === Parquet interchange ===

    def import_parquet(self, directory: Path | str) -> dict[str, int]:
        """Bulk-load source tables from `<table>.parquet` files in a directory."""
        directory = Path(directory)
        loaded = {}
        for table in SOURCE_SCHEMA:
            path = directory / f"{table}.parquet"
            if not path.exists():
                continue
            try:
                self.con.execute(f"INSERT OR REPLACE INTO {table} BY NAME SELECT * FROM read_parquet('{path}')")
            except duckdb.Error as e:
                raise StorageError(f"loading {path} failed: {e}") from e
            loaded[table] = self.count(table)
            logger.info(f"Loaded {path} into {table} ({loaded[table]} rows)")
        return loaded

    def export_parquet(self, directory: Path | str) -> dict[str, Path]:
        """Write every output table to `<table>.parquet`."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        written = {}
        for table in OUTPUT_SCHEMA:
            path = directory / f"{table}.parquet"
            reader = self.con.execute(f"SELECT * FROM {table}").fetch_record_batch(BATCH_SIZE)
            rows = 0
            with pq.ParquetWriter(path, reader.schema) as writer:
                for batch in reader:
                    writer.write_batch(batch)
                    rows += batch.num_rows
            written[table] = path
            logger.info(f"Exported {table} to {path} ({rows} rows)")
        return written


class BatchWriter:
    """Buffers records and upserts them every `batch_size` items.

    Use as a context manager; the pending partial batch is flushed on a
    clean exit and dropped if the block raises.
    """

    def __init__(self, store: Store, batch_size: int = BATCH_SIZE):
        self.store = store
        self.batch_size = batch_size
        self.pending: list[BaseModel] = []
        self.written = 0

    def add(self, record: BaseModel) -> None:
        self.pending.append(record)
        if len(self.pending) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        if not self.pending:
            return
        self.written += self.store.upsert(self.pending)
        self.pending = []

    def __enter__(self) -> BatchWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.flush()
