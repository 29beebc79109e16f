"""Per-run options and the context passed to every pipeline stage."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .config import BATCH_SIZE
from .errors import ConfigurationError
from .patterns import CompiledPatterns, PatternCache, compile_patterns
from .scope_config import ScopeConfig
from .store import Store

logger = logging.getLogger(__name__)

SOURCE_PLATFORMS = ("github", "gitlab")


@dataclass
class RunOptions:
    """What a run is scoped to. Either repo_id or project_name is required."""
    repo_id: str | None = None
    project_name: str | None = None
    source_platform: str | None = None
    time_after: datetime | None = None

    def validate(self) -> None:
        if not self.repo_id and not self.project_name:
            raise ConfigurationError("repoId", "either repoId or projectName is required")
        if self.source_platform and self.source_platform not in SOURCE_PLATFORMS:
            raise ConfigurationError(
                "sourcePlatform",
                f"must be one of {', '.join(SOURCE_PLATFORMS)}, got {self.source_platform!r}",
            )
        if self.time_after is not None and self.time_after.tzinfo is None:
            self.time_after = self.time_after.replace(tzinfo=UTC)


@dataclass
class StageProgress:
    """Live counters for one stage, read by the dashboard."""
    name: str
    processed: int = 0
    written: int = 0
    skipped: int = 0
    finished: bool = False


def _never_stop() -> bool:
    return False


@dataclass
class TaskContext:
    """Everything a stage needs, built once per run."""
    store: Store
    options: RunOptions
    scope_config: ScopeConfig
    patterns: CompiledPatterns
    repo_ids: list[str]
    now: datetime
    batch_size: int = BATCH_SIZE
    should_stop: Callable[[], bool] = field(default=_never_stop)


def build_context(
    store: Store,
    options: RunOptions,
    scope_config: ScopeConfig | None = None,
    now: datetime | None = None,
    batch_size: int = BATCH_SIZE,
    cache: PatternCache | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> TaskContext:
    """Validate options, compile patterns and resolve the repository scope.

    Raises ConfigurationError before any record is read.
    """
    options.validate()
    scope_config = scope_config or ScopeConfig.default()
    patterns = compile_patterns(scope_config, cache)

    if options.repo_id:
        repo_ids = [options.repo_id]
    else:
        repo_ids = store.repo_ids_for_project(options.project_name)
        if not repo_ids:
            logger.warning(f"Project {options.project_name} has no mapped repositories")

    return TaskContext(
        store=store,
        options=options,
        scope_config=scope_config,
        patterns=patterns,
        repo_ids=repo_ids,
        now=now or datetime.now(UTC),
        batch_size=batch_size,
        should_stop=should_stop or _never_stop,
    )
