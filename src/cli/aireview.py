"""Main CLI entry point for aireview - AI code review analytics."""

import argparse
import sys
from datetime import UTC, datetime
from pathlib import Path

from ..errors import AiReviewError
from .init_config import init_config


def parse_date(value: str) -> datetime:
    """Parse an ISO date or datetime; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date {value!r} (expected YYYY-MM-DD)") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def build_parser() -> argparse.ArgumentParser:
    from ..main import STAGE_NAMES

    parser = argparse.ArgumentParser(
        prog="aireview",
        description="Measure how well AI code reviewers predict post-merge failures",
        epilog="Run 'aireview <command> --help' for more information on a command.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init command - write default config
    init_parser = subparsers.add_parser(
        "init",
        help="Write a default aireview.yaml",
        description="Write the default tool, risk and observation-window settings to aireview.yaml.",
    )
    init_parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Output file path (default: aireview.yaml in current directory)",
    )
    init_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Overwrite an existing file",
    )

    # load command - bulk-load source tables
    load_parser = subparsers.add_parser(
        "load",
        help="Load source tables from Parquet files",
        description="Load <table>.parquet files (pull_requests, pull_request_comments, ...) into the database.",
    )
    load_parser.add_argument("directory", type=Path, help="Directory containing <table>.parquet files")
    load_parser.add_argument("--db", type=Path, default=None, help="Database path (default: AIREVIEW_DB_PATH)")

    # run command - run the pipeline
    run_parser = subparsers.add_parser(
        "run",
        help="Run the analytics pipeline",
        description="Detect AI reviews, extract findings, correlate outcomes and compute metrics.",
    )
    scope = run_parser.add_mutually_exclusive_group(required=True)
    scope.add_argument("--repo-id", type=str, help="Repository id to analyze")
    scope.add_argument("--project", type=str, help="Project name (expands to its repositories)")
    run_parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Scope config file (default: aireview.yaml if present)",
    )
    run_parser.add_argument(
        "--time-after",
        type=parse_date,
        default=None,
        help="Only consider comments created after this date (ISO format: YYYY-MM-DD)",
    )
    run_parser.add_argument(
        "--source-platform",
        choices=["github", "gitlab"],
        default=None,
        help="Only consider pull requests from this platform",
    )
    run_parser.add_argument(
        "--stage",
        action="append",
        choices=STAGE_NAMES,
        default=None,
        help="Run only this stage (repeatable; default: all, in dependency order)",
    )
    run_parser.add_argument("--db", type=Path, default=None, help="Database path (default: AIREVIEW_DB_PATH)")

    # analyze command - run analysis queries
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Run analysis queries (raw table output)",
        description="Run analysis queries over the output tables and print raw DuckDB tables.",
    )
    analyze_parser.add_argument(
        "--query",
        "-q",
        type=str,
        default=None,
        help="Run specific query (default: run all)",
    )
    analyze_parser.add_argument("--db", type=Path, default=None, help="Database path (default: AIREVIEW_DB_PATH)")

    # export command - write output tables
    export_parser = subparsers.add_parser(
        "export",
        help="Export output tables to Parquet",
        description="Write ai_reviews, ai_review_findings, ai_failure_predictions and ai_prediction_metrics to Parquet.",
    )
    export_parser.add_argument("directory", type=Path, help="Output directory")
    export_parser.add_argument("--db", type=Path, default=None, help="Database path (default: AIREVIEW_DB_PATH)")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point for aireview."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    from ..main import setup_logging

    setup_logging()

    try:
        if args.command == "init":
            init_config(output=args.output, force=args.force)

        elif args.command == "load":
            from ..config import DB_PATH
            from ..store import Store

            with Store(args.db or DB_PATH) as store:
                loaded = store.import_parquet(args.directory)
            if not loaded:
                print(f"No <table>.parquet files found in {args.directory}")
            for table, rows in loaded.items():
                print(f"  {table}: {rows} rows")

        elif args.command == "run":
            # Import here to avoid slow startup
            import trio

            from ..context import RunOptions
            from ..main import main as run_main
            from ..scope_config import ScopeConfig

            options = RunOptions(
                repo_id=args.repo_id,
                project_name=args.project,
                source_platform=args.source_platform,
                time_after=args.time_after,
            )
            scope_config = ScopeConfig.load(args.config)
            trio.run(run_main, options, scope_config, args.db, args.stage)

        elif args.command == "analyze":
            from ..analyze import main as analyze_main

            analyze_main(query=args.query, db_path=args.db)

        elif args.command == "export":
            from ..config import DB_PATH
            from ..store import Store

            with Store(args.db or DB_PATH) as store:
                written = store.export_parquet(args.directory)
            for table, path in written.items():
                print(f"  {table}: {path}")

    except (AiReviewError, FileExistsError, KeyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
