"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta

import pytest

from src.context import RunOptions, build_context
from src.patterns import compile_patterns
from src.store import Store

REPO_ID = "github:GithubRepo:1:42"
NOW = datetime(2025, 3, 1, 12, tzinfo=UTC)


class Seeder:
    """Writes source rows (the collectors' side) into a test store."""

    def __init__(self, store: Store):
        self.store = store
        self._next = 0

    def _seq(self) -> int:
        self._next += 1
        return self._next

    def pull_request(
        self,
        number: int,
        repo_id: str = REPO_ID,
        status: str = "MERGED",
        merged_date: datetime | None = None,
        merge_commit_sha: str | None = None,
        platform: str = "github",
    ) -> str:
        pr_id = f"{platform}:{platform.capitalize()}PullRequest:1:{number}"
        self.store.upsert_rows("pull_requests", [{
            "id": pr_id,
            "base_repo_id": repo_id,
            "status": status,
            "url": f"https://{platform}.com/acme/api/pull/{number}",
            "merge_commit_sha": merge_commit_sha,
            "created_date": (merged_date or NOW) - timedelta(days=1),
            "merged_date": merged_date,
        }])
        return pr_id

    def comment(
        self,
        pull_request_id: str,
        body: str,
        account_id: str = "coderabbitai",
        created_date: datetime | None = None,
        status: str | None = None,
        comment_id: str | None = None,
    ) -> str:
        comment_id = comment_id or f"github:GithubPrComment:1:{1000 + self._seq()}"
        self.store.upsert_rows("pull_request_comments", [{
            "id": comment_id,
            "pull_request_id": pull_request_id,
            "account_id": account_id,
            "body": body,
            "status": status,
            "created_date": created_date or NOW - timedelta(days=30),
        }])
        return comment_id

    def ci_failure(self, commit_sha: str, finished_date: datetime, status: str = "FAILURE") -> None:
        pipeline_id = f"github:GithubRun:1:{self._seq()}"
        self.store.upsert_rows("cicd_pipelines", [{
            "id": pipeline_id,
            "status": status,
            "finished_date": finished_date,
        }])
        self.store.upsert_rows("cicd_pipeline_commits", [{
            "pipeline_id": pipeline_id,
            "commit_sha": commit_sha,
        }])

    def bug(self, pull_request_id: str, created_date: datetime, issue_type: str = "BUG") -> str:
        issue_id = f"github:GithubIssue:1:{self._seq()}"
        self.store.upsert_rows("issues", [{
            "id": issue_id,
            "type": issue_type,
            "created_date": created_date,
        }])
        self.store.upsert_rows("pull_request_issues", [{
            "pull_request_id": pull_request_id,
            "issue_id": issue_id,
        }])
        return issue_id

    def revert(self, pull_request_id: str, authored_date: datetime, message: str = 'Revert "Add feature"') -> str:
        sha = f"{self._seq():040x}"
        self.store.upsert_rows("commits", [{
            "sha": sha,
            "message": message,
            "authored_date": authored_date,
        }])
        self.store.upsert_rows("pull_request_commits", [{
            "pull_request_id": pull_request_id,
            "commit_sha": sha,
        }])
        return sha

    def project(self, project_name: str, *repo_ids: str) -> None:
        self.store.upsert_rows("project_mapping", [
            {"project_name": project_name, "table_name": "repos", "row_id": repo_id}
            for repo_id in repo_ids
        ])


@pytest.fixture
def store():
    """In-memory store with the full schema."""
    with Store() as s:
        yield s


@pytest.fixture
def seed(store):
    return Seeder(store)


@pytest.fixture
def patterns():
    """Default compiled patterns."""
    return compile_patterns()


@pytest.fixture
def make_context(store):
    """Build a TaskContext for REPO_ID at a fixed NOW."""

    def _make(options=None, scope_config=None, now=NOW, **kwargs):
        return build_context(
            store,
            options or RunOptions(repo_id=REPO_ID),
            scope_config,
            now=now,
            **kwargs,
        )

    return _make
