"""Tests for run options and the stage context."""

from datetime import UTC, datetime

import pytest
from conftest import NOW, REPO_ID

from src.context import RunOptions, build_context
from src.errors import ConfigurationError
from src.scope_config import ScopeConfig


class TestRunOptions:
    """Tests for option validation."""

    def test_scope_required(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RunOptions().validate()
        assert exc_info.value.field == "repoId"

    def test_unknown_platform(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RunOptions(repo_id=REPO_ID, source_platform="bitbucket").validate()
        assert exc_info.value.field == "sourcePlatform"

    def test_naive_time_after_is_utc(self):
        options = RunOptions(repo_id=REPO_ID, time_after=datetime(2025, 1, 1))
        options.validate()
        assert options.time_after == datetime(2025, 1, 1, tzinfo=UTC)


class TestBuildContext:
    """Tests for context construction."""

    def test_repo_scope(self, make_context):
        ctx = make_context()
        assert ctx.repo_ids == [REPO_ID]
        assert ctx.now == NOW
        assert ctx.scope_config == ScopeConfig.default()
        assert ctx.should_stop() is False

    def test_project_scope(self, seed, make_context):
        seed.project("acme", "repo-2", "repo-1")
        ctx = make_context(RunOptions(project_name="acme"))
        assert ctx.repo_ids == ["repo-1", "repo-2"]

    def test_project_without_repos(self, make_context):
        assert make_context(RunOptions(project_name="ghost")).repo_ids == []

    def test_repo_id_wins_over_project(self, seed, make_context):
        seed.project("acme", "repo-1")
        ctx = make_context(RunOptions(repo_id=REPO_ID, project_name="acme"))
        assert ctx.repo_ids == [REPO_ID]

    def test_uses_scope_config(self, make_context):
        ctx = make_context(scope_config=ScopeConfig(observation_window_days=30))
        assert ctx.scope_config.observation_window_days == 30
        assert ctx.patterns.config.observation_window_days == 30

    def test_invalid_pattern(self, make_context):
        with pytest.raises(ConfigurationError):
            make_context(scope_config=ScopeConfig(bug_link_pattern="(unclosed"))

    def test_default_now(self, store):
        before = datetime.now(UTC)
        ctx = build_context(store, RunOptions(repo_id=REPO_ID))
        assert ctx.now >= before
