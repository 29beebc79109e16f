"""Pydantic models for source rows and pipeline output records."""

import hashlib
from datetime import datetime

from pydantic import BaseModel

# AI tools
AI_TOOL_CODERABBIT = "coderabbit"
AI_TOOL_CURSOR_BUGBOT = "cursor_bugbot"
AI_TOOL_QODO = "qodo"

# Risk levels
RISK_LEVEL_LOW = "low"
RISK_LEVEL_MEDIUM = "medium"
RISK_LEVEL_HIGH = "high"
RISK_LEVEL_CRITICAL = "critical"

# Review states
REVIEW_STATE_APPROVED = "approved"
REVIEW_STATE_CHANGES_REQUESTED = "changes_requested"
REVIEW_STATE_COMMENTED = "commented"

# Effort complexity
COMPLEXITY_TRIVIAL = "trivial"
COMPLEXITY_SIMPLE = "simple"
COMPLEXITY_MODERATE = "moderate"
COMPLEXITY_COMPLEX = "complex"

# Finding categories
CATEGORY_SECURITY = "security"
CATEGORY_PERFORMANCE = "performance"
CATEGORY_BUG = "bug"
CATEGORY_STYLE = "style"
CATEGORY_DOCUMENTATION = "documentation"
CATEGORY_TESTING = "testing"
CATEGORY_MAINTAINABILITY = "maintainability"
CATEGORY_BEST_PRACTICE = "best_practice"

# Finding severities
SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"
SEVERITY_CRITICAL = "critical"

# Finding types
FINDING_TYPE_SUGGESTION = "suggestion"
FINDING_TYPE_ISSUE = "issue"
FINDING_TYPE_COMMENT = "comment"
FINDING_TYPE_APPROVAL = "approval"

# Finding resolutions
RESOLUTION_FIXED = "fixed"
RESOLUTION_WONT_FIX = "wont_fix"
RESOLUTION_FALSE_POSITIVE = "false_positive"

# Confusion matrix buckets
OUTCOME_TP = "TP"  # flagged, failure occurred
OUTCOME_FP = "FP"  # flagged, no failure
OUTCOME_FN = "FN"  # not flagged, failure occurred
OUTCOME_TN = "TN"  # not flagged, no failure
OUTCOME_PENDING = ""  # observation window still open

# Autonomy levels
AUTONOMY_AUTO_BLOCK = "auto_block"
AUTONOMY_MANDATORY_REVIEW = "mandatory_review"
AUTONOMY_ADVISORY_ONLY = "advisory_only"


def generate_id(prefix: str, *parts: object) -> str:
    """Deterministic record id: prefix plus 32 hex chars of sha256 over the parts."""
    digest = hashlib.sha256(":".join(str(p) for p in parts).encode()).hexdigest()
    return f"{prefix}:{digest[:32]}"


# === Source rows (written by collectors, read by the pipeline) ===


class SourceComment(BaseModel):
    """PR comment joined with its parent pull request."""
    id: str
    pull_request_id: str
    account_id: str
    body: str
    created_date: datetime
    status: str | None = None
    repo_id: str | None = None
    pr_status: str | None = None
    merged_date: datetime | None = None
    pr_url: str | None = None


class MergedPullRequest(BaseModel):
    """Merged PR left-joined to its most recent review by one AI tool.

    ai_tool is empty when no AI tool reviewed the PR.
    """
    id: str
    repo_id: str
    merged_date: datetime | None
    merge_commit_sha: str | None = None
    ai_tool: str = ""
    risk_level: str | None = None
    risk_score: int = 0
    review_created_date: datetime | None = None


# === Pipeline output ===


class Review(BaseModel):
    """AI-generated review comment on a pull request."""
    id: str
    pull_request_id: str
    repo_id: str
    ai_tool: str
    ai_tool_user: str
    review_id: str
    body: str
    summary: str
    created_date: datetime

    # Risk assessment
    risk_level: str
    risk_score: int
    risk_confidence: int

    # Counts parsed from the body
    issues_found: int = 0
    suggestions_count: int = 0
    files_reviewed: int = 0
    lines_reviewed: int = 0

    # Effort estimation
    effort_complexity: str = ""
    effort_rating: int = 0  # 1-5, 0 when absent
    effort_minutes: int = 0

    # Pre-merge checks
    pre_merge_checks_passed: int = 0
    pre_merge_checks_failed: int = 0
    pre_merge_checks_inconclusive: int = 0

    review_state: str
    source_platform: str
    source_url: str = ""


class Finding(BaseModel):
    """Single issue or suggestion parsed out of a review body."""
    id: str
    ai_review_id: str
    pull_request_id: str
    repo_id: str
    ai_tool: str

    category: str
    severity: str
    type: str

    title: str
    description: str
    file_path: str = ""
    line_start: int = 0
    line_end: int = 0
    commit_sha: str = ""

    code_snippet: str = ""
    suggested_code: str = ""
    suggestion_applied: bool = False

    # Filled in later by resolution tracking
    is_resolved: bool = False
    resolved_at: datetime | None = None
    resolved_by: str = ""
    resolution: str = ""
    response_time: int = 0  # minutes

    created_date: datetime
    source_comment_id: str = ""


class Prediction(BaseModel):
    """AI risk flag for one (pull request, tool) pair vs. what actually happened."""
    id: str
    pull_request_id: str
    repo_id: str
    ai_tool: str

    was_flagged_risky: bool
    risk_score: int
    flagged_at: datetime | None = None

    pr_merged_at: datetime
    had_ci_failure: bool = False
    ci_failure_at: datetime | None = None
    had_bug_reported: bool = False
    bug_reported_at: datetime | None = None
    bug_issue_id: str = ""
    had_rollback: bool = False
    rollback_at: datetime | None = None

    prediction_outcome: str = OUTCOME_PENDING

    observation_window_days: int
    observation_end_date: datetime
    created_at: datetime


class Metrics(BaseModel):
    """Aggregated prediction accuracy for a repo, tool and period."""
    id: str
    repo_id: str
    ai_tool: str

    period_start: datetime
    period_end: datetime
    period_type: str

    true_positives: int
    false_positives: int
    false_negatives: int
    true_negatives: int

    precision: float
    recall: float
    accuracy: float
    f1_score: float

    total_prs: int
    flagged_prs: int
    failed_prs: int
    observed_prs: int

    recommended_autonomy_level: str
    calculated_at: datetime
