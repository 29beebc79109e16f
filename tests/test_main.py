"""Tests for the pipeline runner."""

import io
import os
import signal
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import trio
from conftest import NOW, REPO_ID
from rich.console import Console

from src.context import RunOptions
from src.errors import ConfigurationError, StageError
from src.main import STAGE_NAMES, PipelineRunner, RunState, RunStats, main, print_summary
from src.scope_config import ScopeConfig

HIGH_RISK = "## Walkthrough\nCritical: possible data loss in the migration\n\n- Missing error check on the migration result"
SHA = "a1b2c3d4e5f60718293a4b5c6d7e8f9012345678"


@pytest.fixture
def runner(store):
    """Create a PipelineRunner over the test store."""
    return PipelineRunner(store, RunOptions(repo_id=REPO_ID), console=Console(quiet=True), now=NOW)


class TestPipelineRunner:
    """Tests for PipelineRunner setup and control."""

    def test_init_state(self, runner):
        assert runner.stats.state == RunState.RUNNING
        assert [p.name for p in runner.stats.stages] == STAGE_NAMES
        assert runner._stop_requested is False

    def test_stage_selection_keeps_dependency_order(self, store):
        runner = PipelineRunner(
            store,
            RunOptions(repo_id=REPO_ID),
            console=Console(quiet=True),
            stages=["aggregate_metrics", "extract_reviews"],
        )
        assert [name for name, _ in runner.stages] == ["extract_reviews", "aggregate_metrics"]

    def test_unknown_stage(self, store):
        with pytest.raises(ValueError, match="fetch_prs"):
            PipelineRunner(store, RunOptions(repo_id=REPO_ID), stages=["fetch_prs"])

    def test_dashboard_rows(self, runner):
        table = runner.build_dashboard()
        assert table.row_count == len(STAGE_NAMES)

        runner.stats.last_error = "extract_reviews: StorageError: disk full"
        assert runner.build_dashboard().row_count == len(STAGE_NAMES) + 1

    def test_stats_lookup(self, runner):
        assert runner.stats.stage("correlate_outcomes").name == "correlate_outcomes"
        assert runner.stats.stage("nope") is None

    @pytest.mark.trio
    async def test_signal_watcher_cancels_nursery(self, runner):
        """Signal watcher requests a stop and cancels the nursery."""
        async with trio.open_nursery() as nursery:
            nursery.start_soon(runner._signal_watcher, nursery)

            # Give it a moment to start
            await trio.sleep(0.01)

            os.kill(os.getpid(), signal.SIGINT)

            # Give signal time to be processed
            await trio.sleep(0.1)

            if runner._stop_requested:
                nursery.cancel_scope.cancel()

        assert runner._stop_requested is True
        assert runner.stats.state == RunState.PAUSED

    @pytest.mark.trio
    async def test_dashboard_task_respects_stop(self, runner):
        mock_live = MagicMock()

        async with trio.open_nursery() as nursery:
            nursery.start_soon(runner._dashboard_task, mock_live)
            await trio.sleep(0.1)
            runner._stop_requested = True

            # Dashboard updates every 0.5s
            await trio.sleep(0.6)
            nursery.cancel_scope.cancel()

        assert mock_live.update.called


class TestRun:
    """Tests for running stages end to end."""

    @pytest.mark.trio
    async def test_full_run(self, store, seed, runner):
        merged = NOW - timedelta(days=20)
        pr = seed.pull_request(1, merged_date=merged, merge_commit_sha=SHA)
        seed.comment(pr, HIGH_RISK)
        seed.ci_failure(SHA, merged + timedelta(days=1))

        stats = await runner.run(show_dashboard=False)

        assert stats.state == RunState.COMPLETED
        assert all(p.finished for p in stats.stages)
        assert stats.started_at is not None
        assert stats.finished_at is not None
        assert store.count("ai_reviews") == 1
        assert store.count("ai_review_findings") == 1
        assert store.count("ai_failure_predictions") == 1
        # monthly and rolling_60d cover the merge
        assert store.count("ai_prediction_metrics") == 2
        assert stats.stage("aggregate_metrics").written == 2

        outcome = store.con.execute("SELECT prediction_outcome FROM ai_failure_predictions").fetchone()[0]
        assert outcome == "TP"

    @pytest.mark.trio
    async def test_run_with_dashboard(self, store, seed, runner):
        seed.comment(seed.pull_request(1, merged_date=NOW - timedelta(days=20)), HIGH_RISK)
        stats = await runner.run(show_dashboard=True)
        assert stats.state == RunState.COMPLETED

    @pytest.mark.trio
    async def test_selected_stage_only(self, store, seed):
        seed.comment(seed.pull_request(1, merged_date=NOW - timedelta(days=20)), HIGH_RISK)
        runner = PipelineRunner(
            store, RunOptions(repo_id=REPO_ID), console=Console(quiet=True), stages=["extract_reviews"], now=NOW
        )

        await runner.run(show_dashboard=False)

        assert store.count("ai_reviews") == 1
        assert store.count("ai_failure_predictions") == 0

    @pytest.mark.trio
    async def test_missing_scope_fails_before_stages(self, store):
        runner = PipelineRunner(store, RunOptions(), console=Console(quiet=True))
        with pytest.raises(ConfigurationError) as exc_info:
            await runner.run(show_dashboard=False)
        assert exc_info.value.field == "repoId"
        assert runner.stats.stages[0].processed == 0

    @pytest.mark.trio
    async def test_invalid_pattern_fails_before_stages(self, store, seed):
        seed.comment(seed.pull_request(1), HIGH_RISK)
        runner = PipelineRunner(
            store,
            RunOptions(repo_id=REPO_ID),
            ScopeConfig(risk_high_pattern="[invalid(regex"),
            console=Console(quiet=True),
        )
        with pytest.raises(ConfigurationError) as exc_info:
            await runner.run(show_dashboard=False)
        assert exc_info.value.field == "riskHighPattern"
        assert store.count("ai_reviews") == 0

    @pytest.mark.trio
    async def test_stage_failure(self, store, monkeypatch):
        def broken(ctx, progress):
            raise RuntimeError("disk on fire")

        calls = []
        monkeypatch.setattr("src.main.STAGES", [
            ("extract_reviews", broken),
            ("extract_findings", lambda ctx, progress: calls.append(progress.name)),
        ])
        runner = PipelineRunner(store, RunOptions(repo_id=REPO_ID), console=Console(quiet=True))

        with pytest.raises(StageError) as exc_info:
            await runner.run(show_dashboard=False)

        assert exc_info.value.stage == "extract_reviews"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert runner.stats.state == RunState.ERROR
        assert "disk on fire" in runner.stats.last_error
        assert calls == []

    @pytest.mark.trio
    async def test_stop_skips_remaining_stages(self, store, monkeypatch):
        holder = {}
        calls = []

        def first(ctx, progress):
            progress.processed = 1
            holder["runner"]._stop_requested = True

        monkeypatch.setattr("src.main.STAGES", [
            ("extract_reviews", first),
            ("extract_findings", lambda ctx, progress: calls.append(progress.name)),
        ])
        runner = PipelineRunner(store, RunOptions(repo_id=REPO_ID), console=Console(quiet=True))
        holder["runner"] = runner

        stats = await runner.run(show_dashboard=False)

        assert stats.state == RunState.PAUSED
        assert stats.stages[0].finished is False
        assert calls == []

    @pytest.mark.trio
    async def test_stage_sees_stop_flag(self, store, monkeypatch):
        seen = []

        def stage(ctx, progress):
            seen.append(ctx.should_stop())

        monkeypatch.setattr("src.main.STAGES", [("extract_reviews", stage)])
        runner = PipelineRunner(store, RunOptions(repo_id=REPO_ID), console=Console(quiet=True))

        await runner.run(show_dashboard=False)
        assert seen == [False]


class TestSummary:
    """Tests for the end-of-run summary."""

    def test_completed(self):
        out = io.StringIO()
        stats = RunStats(state=RunState.COMPLETED)
        print_summary(Console(file=out), stats)
        assert "Run complete" in out.getvalue()

    def test_paused(self):
        out = io.StringIO()
        print_summary(Console(file=out), RunStats(state=RunState.PAUSED))
        assert "Run stopped" in out.getvalue()


class TestMain:
    """Tests for the async entry point."""

    @pytest.mark.trio
    async def test_main_uses_db_path(self, tmp_path):
        db_path = tmp_path / "aireview.duckdb"
        stats = await main(RunOptions(repo_id=REPO_ID), db_path=str(db_path))
        assert stats.state == RunState.COMPLETED
        assert db_path.exists()
