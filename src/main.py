"""Pipeline runner with live dashboard.

Stages run one after another in a worker thread while trio watches for
SIGINT/SIGTERM and refreshes the dashboard. A stop request is picked up by
the running stage between records; it flushes its pending batch and the
remaining stages are skipped.
"""

import logging
import os
import signal
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

import trio
from rich.console import Console
from rich.live import Live
from rich.table import Table

from .config import BATCH_SIZE, DATA_DIR, DB_PATH, LOG_FILE
from .context import RunOptions, StageProgress, TaskContext, build_context
from .correlator import correlate_outcomes
from .errors import StageError
from .extractors.findings import extract_findings
from .extractors.reviews import extract_reviews
from .metrics import aggregate_metrics
from .patterns import PatternCache
from .scope_config import ScopeConfig
from .store import Store

logger = logging.getLogger(__name__)

# Dependency order
STAGES: list[tuple[str, Callable[[TaskContext, StageProgress], None]]] = [
    ("extract_reviews", extract_reviews),
    ("extract_findings", extract_findings),
    ("correlate_outcomes", correlate_outcomes),
    ("aggregate_metrics", aggregate_metrics),
]
STAGE_NAMES = [name for name, _ in STAGES]


def setup_logging():
    """Setup file logging for debugging."""
    os.makedirs(DATA_DIR, exist_ok=True)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
        handlers=[
            logging.FileHandler(LOG_FILE, mode="a"),
        ],
    )
    return logging.getLogger(__name__)


class RunState(Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class RunStats:
    """Live run statistics."""
    stages: list[StageProgress] = field(default_factory=list)
    state: RunState = RunState.RUNNING
    current_stage: str = ""
    last_error: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def stage(self, name: str) -> StageProgress | None:
        for progress in self.stages:
            if progress.name == name:
                return progress
        return None


class PipelineRunner:
    """Runs the selected stages for one scope."""

    def __init__(
        self,
        store: Store,
        options: RunOptions,
        scope_config: ScopeConfig | None = None,
        console: Console | None = None,
        stages: list[str] | None = None,
        batch_size: int = BATCH_SIZE,
        now: datetime | None = None,
    ):
        self.store = store
        self.options = options
        self.scope_config = scope_config
        self.console = console or Console()
        self.batch_size = batch_size
        self.now = now
        self.cache = PatternCache()

        selected = set(stages) if stages else set(STAGE_NAMES)
        unknown = selected - set(STAGE_NAMES)
        if unknown:
            raise ValueError(f"Unknown stage(s): {', '.join(sorted(unknown))}")
        self.stages = [(name, fn) for name, fn in STAGES if name in selected]

        self.stats = RunStats(stages=[StageProgress(name) for name, _ in self.stages])
        self._error: StageError | None = None

        # Control flag
        self._stop_requested = False

    async def _signal_watcher(self, nursery: trio.Nursery) -> None:
        """Watch for interrupt signals and cancel the nursery gracefully."""
        with trio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signal_aiter:
            async for sig in signal_aiter:
                self._stop_requested = True
                self.stats.state = RunState.PAUSED
                logger.info(f"Signal {sig} received, stopping after the current batch...")
                nursery.cancel_scope.cancel()
                break

    def build_dashboard(self) -> Table:
        """Build the live dashboard display."""
        table = Table(title="AI Review Pipeline", expand=True)
        table.add_column("Stage", style="cyan")
        table.add_column("Processed", style="green", justify="right")
        table.add_column("Written", style="green", justify="right")
        table.add_column("Skipped", justify="right")
        table.add_column("Status")

        state_color = {
            RunState.RUNNING: "green",
            RunState.PAUSED: "yellow",
            RunState.COMPLETED: "blue",
            RunState.ERROR: "red",
        }

        for progress in self.stats.stages:
            if progress.finished:
                status = "[blue]done[/]"
            elif progress.name == self.stats.current_stage:
                color = state_color[self.stats.state]
                status = f"[{color}]{self.stats.state.value}[/]"
            else:
                status = "[dim]waiting[/]"
            table.add_row(
                progress.name,
                str(progress.processed),
                str(progress.written),
                str(progress.skipped),
                status,
            )

        if self.stats.last_error:
            error = self.stats.last_error
            table.add_row("[red]Last Error[/]", "", "", "", f"[red]{error[:80]}...[/]" if len(error) > 80 else f"[red]{error}[/]")

        return table

    async def _dashboard_task(self, live: Live) -> None:
        """Update dashboard periodically."""
        while not self._stop_requested:
            await trio.sleep(0.5)
            live.update(self.build_dashboard())

    async def _run_stages(self, ctx: TaskContext, nursery: trio.Nursery) -> None:
        try:
            for (name, stage), progress in zip(self.stages, self.stats.stages):
                if self._stop_requested:
                    break
                self.stats.current_stage = name
                logger.info(f"Stage {name} started")
                try:
                    await trio.to_thread.run_sync(stage, ctx, progress)
                except Exception as e:
                    self.stats.state = RunState.ERROR
                    self.stats.last_error = f"{name}: {type(e).__name__}: {str(e)[:100]}"
                    logger.error(f"Stage {name} failed: {type(e).__name__}: {e}")
                    logger.error(traceback.format_exc())
                    self._error = StageError(name, e)
                    return
                progress.finished = not self._stop_requested
                logger.info(
                    f"Stage {name} finished: {progress.processed} processed, "
                    f"{progress.written} written, {progress.skipped} skipped"
                )
        finally:
            nursery.cancel_scope.cancel()

    async def run(self, show_dashboard: bool = True) -> RunStats:
        """Run the selected stages in order.

        Raises ConfigurationError before any stage runs if the options or
        patterns are invalid, and StageError if a stage fails.
        """
        ctx = build_context(
            self.store,
            self.options,
            self.scope_config,
            now=self.now,
            batch_size=self.batch_size,
            cache=self.cache,
            should_stop=lambda: self._stop_requested,
        )
        scope = self.options.repo_id or f"project {self.options.project_name}"
        logger.info("=" * 60)
        logger.info(f"Starting run for {scope}: repos {ctx.repo_ids}, stages {[n for n, _ in self.stages]}")
        self.stats.started_at = datetime.now(UTC)

        async with trio.open_nursery() as nursery:
            nursery.start_soon(self._signal_watcher, nursery)
            if show_dashboard:
                live = Live(self.build_dashboard(), console=self.console, refresh_per_second=2)
                with live:
                    nursery.start_soon(self._dashboard_task, live)
                    await self._run_stages(ctx, nursery)
                    live.update(self.build_dashboard())
            else:
                await self._run_stages(ctx, nursery)

        self.stats.finished_at = datetime.now(UTC)
        self.stats.current_stage = ""

        if self._error is not None:
            logger.error(f"Run aborted: {self._error}")
            raise self._error

        self.stats.state = RunState.PAUSED if self._stop_requested else RunState.COMPLETED
        status = "interrupted" if self._stop_requested else "complete"
        logger.info(f"Run {status}: " + ", ".join(f"{p.name}={p.written}" for p in self.stats.stages))
        return self.stats


def print_summary(console: Console, stats: RunStats) -> None:
    """Print the end-of-run summary."""
    if stats.state == RunState.PAUSED:
        console.print("\n[bold yellow]Run stopped - completed batches are saved[/]")
    else:
        console.print("\n[bold green]Run complete![/]")

    for progress in stats.stages:
        console.print(f"  {progress.name}: {progress.processed} processed, {progress.written} written")
    console.print(f"  Log file: {LOG_FILE}")

    if stats.state == RunState.PAUSED:
        console.print("\n[dim]Run again to recompute; records are overwritten by id[/]")


async def main(
    options: RunOptions,
    scope_config: ScopeConfig | None = None,
    db_path: str | None = None,
    stages: list[str] | None = None,
) -> RunStats:
    """Main entry point."""
    console = Console()
    with Store(db_path or DB_PATH) as store:
        runner = PipelineRunner(store, options, scope_config, console=console, stages=stages)
        stats = await runner.run()
    print_summary(console, stats)
    return stats
