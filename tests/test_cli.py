"""Tests for the aireview command line."""

import argparse
from datetime import UTC, datetime, timedelta, timezone

import pyarrow as pa
import pyarrow.parquet as pq
import pytest
import yaml
from conftest import REPO_ID

from src.cli.aireview import build_parser, main, parse_date
from src.cli.init_config import HEADER, init_config
from src.scope_config import ScopeConfig
from src.store import Store


@pytest.fixture(autouse=True)
def no_file_logging(monkeypatch):
    """Keep CLI runs from writing to the user's log file."""
    monkeypatch.setattr("src.main.setup_logging", lambda: None)


def write_source_tables(directory, merged: datetime) -> None:
    pr_id = "github:GithubPullRequest:1:1"
    pq.write_table(pa.table({
        "id": [pr_id],
        "base_repo_id": [REPO_ID],
        "status": ["MERGED"],
        "url": ["https://github.com/acme/api/pull/1"],
        "merge_commit_sha": ["abc"],
        "created_date": [merged - timedelta(days=1)],
        "merged_date": [merged],
    }), directory / "pull_requests.parquet")
    pq.write_table(pa.table({
        "id": ["github:GithubPrComment:1:10"],
        "pull_request_id": [pr_id],
        "account_id": ["coderabbitai"],
        "body": ["## Walkthrough\nAdds pagination\n\n- Consider a maximum page size for the list route"],
        "status": [None],
        "created_date": [merged - timedelta(hours=2)],
    }), directory / "pull_request_comments.parquet")


class TestParseDate:
    """Tests for --time-after parsing."""

    def test_date_is_utc(self):
        assert parse_date("2025-01-02") == datetime(2025, 1, 2, tzinfo=UTC)

    def test_keeps_offset(self):
        parsed = parse_date("2025-01-02T03:04:05+02:00")
        assert parsed.utcoffset() == timedelta(hours=2)
        assert parsed == datetime(2025, 1, 2, 1, 4, 5, tzinfo=timezone.utc)

    def test_invalid(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_date("last tuesday")


class TestParser:
    """Tests for argument parsing."""

    def test_run_requires_scope(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run"])

    def test_run_scope_is_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "--repo-id", "r", "--project", "p"])

    def test_unknown_stage(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "--repo-id", "r", "--stage", "fetch_prs"])

    def test_run_options(self):
        args = build_parser().parse_args([
            "run", "--project", "acme", "--time-after", "2025-01-01",
            "--source-platform", "gitlab", "--stage", "extract_reviews", "--stage", "extract_findings",
        ])
        assert args.project == "acme"
        assert args.time_after == datetime(2025, 1, 1, tzinfo=UTC)
        assert args.source_platform == "gitlab"
        assert args.stage == ["extract_reviews", "extract_findings"]

    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 0
        assert "aireview" in capsys.readouterr().out


class TestInit:
    """Tests for aireview init."""

    def test_writes_default_config(self, tmp_path):
        content = init_config(root=tmp_path)
        path = tmp_path / "aireview.yaml"
        assert path.read_text() == content
        assert content.startswith(HEADER)
        assert ScopeConfig.from_dict(yaml.safe_load(content)) == ScopeConfig.default()

    def test_refuses_to_overwrite(self, tmp_path):
        init_config(root=tmp_path)
        with pytest.raises(FileExistsError):
            init_config(root=tmp_path)

    def test_force_overwrites(self, tmp_path):
        path = tmp_path / "aireview.yaml"
        path.write_text("qodoEnabled: false\n")
        init_config(output=path, force=True)
        assert ScopeConfig.load(path) == ScopeConfig.default()

    def test_cli_existing_file_exits(self, tmp_path, capsys):
        output = tmp_path / "custom.yaml"
        main(["init", "--output", str(output)])
        assert output.exists()

        with pytest.raises(SystemExit) as exc_info:
            main(["init", "--output", str(output)])
        assert exc_info.value.code == 1
        assert "already exists" in capsys.readouterr().err


class TestPipelineCommands:
    """Tests for load, run, analyze and export."""

    def test_load_run_export(self, tmp_path, capsys):
        source = tmp_path / "source"
        source.mkdir()
        write_source_tables(source, merged=datetime.now(UTC).replace(tzinfo=None) - timedelta(days=20))
        db = tmp_path / "aireview.duckdb"

        main(["load", str(source), "--db", str(db)])
        assert "pull_requests: 1 rows" in capsys.readouterr().out

        main(["run", "--repo-id", REPO_ID, "--db", str(db)])
        with Store(db) as store:
            assert store.count("ai_reviews") == 1
            assert store.count("ai_review_findings") == 1
            assert store.count("ai_failure_predictions") == 1

        out_dir = tmp_path / "out"
        main(["export", str(out_dir), "--db", str(db)])
        assert pq.read_table(out_dir / "ai_reviews.parquet").num_rows == 1
        assert pq.read_table(out_dir / "ai_failure_predictions.parquet").column("prediction_outcome").to_pylist() == ["TN"]

    def test_load_empty_directory(self, tmp_path, capsys):
        main(["load", str(tmp_path), "--db", str(tmp_path / "aireview.duckdb")])
        assert "No <table>.parquet files" in capsys.readouterr().out

    def test_run_bad_config_exits(self, tmp_path, capsys):
        config = tmp_path / "aireview.yaml"
        config.write_text("riskHighPattern: '[invalid(regex'\n")

        with pytest.raises(SystemExit) as exc_info:
            main(["run", "--repo-id", REPO_ID, "--config", str(config), "--db", str(tmp_path / "a.duckdb")])

        assert exc_info.value.code == 1
        assert "riskHighPattern" in capsys.readouterr().err

    def test_analyze_unknown_query_exits(self, tmp_path, capsys):
        db = tmp_path / "aireview.duckdb"
        Store(db).close()

        with pytest.raises(SystemExit) as exc_info:
            main(["analyze", "--query", "nope", "--db", str(db)])

        assert exc_info.value.code == 1
        assert "Unknown query" in capsys.readouterr().err
