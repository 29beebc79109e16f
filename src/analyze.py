"""Analysis queries over the pipeline output tables.

Run with: aireview analyze [--query NAME]
"""

from __future__ import annotations

from pathlib import Path

import duckdb

from .config import DB_PATH


def get_connection(db_path: Path | str | None = None) -> duckdb.DuckDBPyConnection:
    """Open the pipeline database read-only."""
    return duckdb.connect(str(db_path or DB_PATH), read_only=True)


def run_query(con: duckdb.DuckDBPyConnection, title: str, query: str) -> None:
    """Run a query and print results."""
    print(f"\n=== {title} ===")
    con.sql(query).show()


def reviews_by_tool(con: duckdb.DuckDBPyConnection) -> None:
    """Review volume and average parsed metrics per AI tool."""
    run_query(con, "AI Reviews by Tool", """
        SELECT
            ai_tool,
            COUNT(*) as reviews,
            COUNT(DISTINCT pull_request_id) as prs,
            ROUND(AVG(issues_found), 1) as avg_issues,
            ROUND(AVG(suggestions_count), 1) as avg_suggestions,
            ROUND(AVG(NULLIF(effort_minutes, 0)), 1) as avg_effort_minutes
        FROM ai_reviews
        GROUP BY 1
        ORDER BY reviews DESC
    """)


def reviews_by_risk(con: duckdb.DuckDBPyConnection) -> None:
    """Distribution of detected risk levels."""
    run_query(con, "AI Reviews by Risk Level", """
        SELECT
            ai_tool,
            risk_level,
            COUNT(*) as reviews,
            ROUND(100.0 * COUNT(*) / SUM(COUNT(*)) OVER (PARTITION BY ai_tool), 1) as pct
        FROM ai_reviews
        GROUP BY 1, 2
        ORDER BY 1, CASE risk_level
            WHEN 'critical' THEN 1 WHEN 'high' THEN 2 WHEN 'medium' THEN 3 ELSE 4 END
    """)


def review_states(con: duckdb.DuckDBPyConnection) -> None:
    run_query(con, "AI Review Outcome States", """
        SELECT
            ai_tool,
            review_state,
            COUNT(*) as reviews
        FROM ai_reviews
        GROUP BY 1, 2
        ORDER BY 1, reviews DESC
    """)


def findings_by_category(con: duckdb.DuckDBPyConnection) -> None:
    """Finding counts by category and severity."""
    run_query(con, "Findings by Category and Severity", """
        SELECT
            category,
            SUM(CASE WHEN severity = 'critical' THEN 1 ELSE 0 END) as critical,
            SUM(CASE WHEN severity = 'error' THEN 1 ELSE 0 END) as error,
            SUM(CASE WHEN severity = 'warning' THEN 1 ELSE 0 END) as warning,
            SUM(CASE WHEN severity = 'info' THEN 1 ELSE 0 END) as info,
            COUNT(*) as total
        FROM ai_review_findings
        GROUP BY 1
        ORDER BY total DESC
    """)


def top_finding_files(con: duckdb.DuckDBPyConnection) -> None:
    run_query(con, "Files with Most Findings", """
        SELECT
            file_path,
            COUNT(*) as findings,
            COUNT(DISTINCT pull_request_id) as prs
        FROM ai_review_findings
        WHERE file_path <> ''
        GROUP BY 1
        ORDER BY findings DESC
        LIMIT 15
    """)


def prediction_outcomes(con: duckdb.DuckDBPyConnection) -> None:
    """Confusion-matrix buckets per tool, with pending observations."""
    run_query(con, "Prediction Outcomes", """
        SELECT
            CASE WHEN ai_tool = '' THEN '(no AI review)' ELSE ai_tool END as ai_tool,
            SUM(CASE WHEN prediction_outcome = 'TP' THEN 1 ELSE 0 END) as tp,
            SUM(CASE WHEN prediction_outcome = 'FP' THEN 1 ELSE 0 END) as fp,
            SUM(CASE WHEN prediction_outcome = 'FN' THEN 1 ELSE 0 END) as fn,
            SUM(CASE WHEN prediction_outcome = 'TN' THEN 1 ELSE 0 END) as tn,
            SUM(CASE WHEN prediction_outcome = '' THEN 1 ELSE 0 END) as pending,
            COUNT(*) as total
        FROM ai_failure_predictions
        GROUP BY 1
        ORDER BY total DESC
    """)


def failure_sources(con: duckdb.DuckDBPyConnection) -> None:
    """Which outcome signals drive observed failures."""
    run_query(con, "Post-merge Failure Signals", """
        SELECT
            SUM(CASE WHEN had_ci_failure THEN 1 ELSE 0 END) as ci_failures,
            SUM(CASE WHEN had_bug_reported THEN 1 ELSE 0 END) as bug_reports,
            SUM(CASE WHEN had_rollback THEN 1 ELSE 0 END) as rollbacks,
            COUNT(DISTINCT pull_request_id) as merged_prs
        FROM ai_failure_predictions
    """)


def latest_metrics(con: duckdb.DuckDBPyConnection) -> None:
    """Most recent metrics snapshot per repo, tool and period."""
    run_query(con, "Latest Prediction Metrics", """
        SELECT
            repo_id,
            ai_tool,
            period_type,
            observed_prs,
            ROUND("precision", 2) as "precision",
            ROUND(recall, 2) as recall,
            ROUND(accuracy, 2) as accuracy,
            ROUND(f1_score, 2) as f1,
            recommended_autonomy_level as autonomy
        FROM ai_prediction_metrics
        QUALIFY ROW_NUMBER() OVER (
            PARTITION BY repo_id, ai_tool, period_type
            ORDER BY calculated_at DESC
        ) = 1
        ORDER BY repo_id, ai_tool, CASE period_type
            WHEN 'daily' THEN 1 WHEN 'weekly' THEN 2 WHEN 'monthly' THEN 3 ELSE 4 END
    """)


QUERIES = {
    "reviews_by_tool": reviews_by_tool,
    "reviews_by_risk": reviews_by_risk,
    "review_states": review_states,
    "findings_by_category": findings_by_category,
    "top_finding_files": top_finding_files,
    "prediction_outcomes": prediction_outcomes,
    "failure_sources": failure_sources,
    "latest_metrics": latest_metrics,
}


def main(query: str | None = None, db_path: Path | str | None = None) -> None:
    """Run all analysis queries, or just the named one."""
    if query is not None and query not in QUERIES:
        raise KeyError(f"Unknown query {query!r}; available: {', '.join(QUERIES)}")

    con = get_connection(db_path)

    print("=" * 60)
    print("AI Review Analysis Report")
    print("=" * 60)

    result = con.execute("SELECT COUNT(*) FROM ai_reviews").fetchone()
    total_reviews = result[0] if result else 0
    print(f"\nTotal AI reviews: {total_reviews:,}")

    for name, fn in QUERIES.items():
        if query is None or name == query:
            fn(con)

    con.close()


if __name__ == "__main__":
    main()
