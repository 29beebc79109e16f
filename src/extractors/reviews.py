"""AI review detector.

Streams PR comments of the scope, keeps the ones written by an enabled AI
tool and turns each into a Review with risk, effort, counts and summary.
"""

import logging
import re
from dataclasses import dataclass

from pydantic import ValidationError

from ..context import StageProgress, TaskContext
from ..models import (
    COMPLEXITY_COMPLEX,
    COMPLEXITY_MODERATE,
    COMPLEXITY_SIMPLE,
    COMPLEXITY_TRIVIAL,
    REVIEW_STATE_APPROVED,
    REVIEW_STATE_CHANGES_REQUESTED,
    REVIEW_STATE_COMMENTED,
    RISK_LEVEL_HIGH,
    RISK_LEVEL_LOW,
    RISK_LEVEL_MEDIUM,
    Review,
    SourceComment,
    generate_id,
)
from ..patterns import CompiledPatterns
from ..rules import Rule, first_match
from ..store import BatchWriter
from .summary import extract_summary

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 70
NO_MATCH_RISK_SCORE = 10

# Risk scores per level
RISK_SCORES = {
    RISK_LEVEL_HIGH: 80,
    RISK_LEVEL_MEDIUM: 50,
    RISK_LEVEL_LOW: 20,
}

# Default minutes per complexity keyword
COMPLEXITY_MINUTES = {
    COMPLEXITY_TRIVIAL: 5,
    COMPLEXITY_SIMPLE: 5,
    COMPLEXITY_MODERATE: 15,
    COMPLEXITY_COMPLEX: 30,
}

# Body parsing patterns
EFFORT_RATING_RE = re.compile(r"🎯\s*(\d)(?:\s*\([^)]+\))?")
QODO_EFFORT_RE = re.compile(r"estimated effort[^:]*:\s*(\d)", re.IGNORECASE)
COMPLEXITY_RE = re.compile(r"simple|moderate|complex|trivial", re.IGNORECASE)
TIME_RE = re.compile(r"(?:⏱️\s*)?~?(\d+)\s*minutes?")
CHECKS_PASSED_RE = re.compile(r"(?:✅\s*)?(\d+)\s*(?:checks?\s+)?passed", re.IGNORECASE)
CHECKS_FAILED_RE = re.compile(r"(?:❌\s*)?(\d+)\s*(?:checks?\s+)?failed", re.IGNORECASE)
CHECKS_INCONCLUSIVE_RE = re.compile(r"(\d+)\s*(?:checks?\s+)?inconclusive", re.IGNORECASE)
ISSUE_PATTERNS = [
    re.compile(r"\b(?:bug|error|issue|problem|warning)\b", re.IGNORECASE),
    re.compile("❌"),
    re.compile("⚠️"),
]
SUGGESTION_RE = re.compile(r"suggest|recommend|consider|should|could", re.IGNORECASE)
FILE_RE = re.compile(r"\b[\w/]+\.(?:go|ts|js|py|java|rs|cpp|c|h)\b")
LINES_RE = re.compile(r"\+(\d+)\s*[−-](\d+)")

REVIEW_STATE_RULES = [
    Rule(REVIEW_STATE_APPROVED, re.compile(r"approved|lgtm")),
    Rule(REVIEW_STATE_CHANGES_REQUESTED, re.compile(r"changes requested|request changes")),
]

COMMENT_STATUS_STATES = {
    "APPROVED": REVIEW_STATE_APPROVED,
    "CHANGES_REQUESTED": REVIEW_STATE_CHANGES_REQUESTED,
}


@dataclass
class ReviewMetrics:
    """Numbers parsed out of a review body."""
    confidence: int = DEFAULT_CONFIDENCE
    issues_found: int = 0
    suggestions_count: int = 0
    files_reviewed: int = 0
    lines_reviewed: int = 0
    complexity: str = ""
    effort_rating: int = 0
    effort_minutes: int = 0
    checks_passed: int = 0
    checks_failed: int = 0
    checks_inconclusive: int = 0


def review_id(pull_request_id: str, comment_id: str, ai_tool: str) -> str:
    return generate_id("aireview", pull_request_id, comment_id, ai_tool)


def detect_ai_tool(patterns: CompiledPatterns, account_id: str, body: str) -> str | None:
    """Return the first enabled tool whose username or body pattern matches."""
    for matcher in patterns.tools:
        if matcher.matches(account_id, body):
            return matcher.tool
    return None


def _effort_rating(body: str) -> int:
    for pattern in (EFFORT_RATING_RE, QODO_EFFORT_RE):
        match = pattern.search(body)
        if match:
            value = int(match.group(1))
            if 1 <= value <= 5:
                return value
    return 0


def _complexity_from_rating(rating: int) -> str:
    if rating <= 2:
        return COMPLEXITY_SIMPLE
    if rating <= 3:
        return COMPLEXITY_MODERATE
    return COMPLEXITY_COMPLEX


def _count(pattern: re.Pattern, body: str) -> int:
    match = pattern.search(body)
    return int(match.group(1)) if match else 0


def parse_review_metrics(body: str) -> ReviewMetrics:
    """Parse effort, pre-merge checks and counts from a review body."""
    metrics = ReviewMetrics()

    metrics.effort_rating = _effort_rating(body)

    match = COMPLEXITY_RE.search(body)
    if match:
        metrics.complexity = match.group(0).lower()
        metrics.effort_minutes = COMPLEXITY_MINUTES[metrics.complexity]
    elif metrics.effort_rating:
        metrics.complexity = _complexity_from_rating(metrics.effort_rating)

    match = TIME_RE.search(body)
    if match:
        metrics.effort_minutes = int(match.group(1))

    metrics.checks_passed = _count(CHECKS_PASSED_RE, body)
    metrics.checks_failed = _count(CHECKS_FAILED_RE, body)
    metrics.checks_inconclusive = _count(CHECKS_INCONCLUSIVE_RE, body)

    metrics.issues_found = sum(len(p.findall(body)) for p in ISSUE_PATTERNS)
    metrics.suggestions_count = len(SUGGESTION_RE.findall(body))
    metrics.files_reviewed = len(set(FILE_RE.findall(body)))

    match = LINES_RE.search(body)
    if match:
        metrics.lines_reviewed = int(match.group(1)) + int(match.group(2))

    return metrics


def detect_risk_level(patterns: CompiledPatterns, body: str) -> tuple[str, int]:
    """Classify risk by the high, medium and low patterns, in that order."""
    rules = [
        Rule(RISK_LEVEL_HIGH, patterns.risk_high),
        Rule(RISK_LEVEL_MEDIUM, patterns.risk_medium),
        Rule(RISK_LEVEL_LOW, patterns.risk_low),
    ]
    level = first_match(rules, body, None)
    if level is None:
        return RISK_LEVEL_LOW, NO_MATCH_RISK_SCORE
    return level, RISK_SCORES[level]


def detect_review_state(body: str, status: str | None) -> str:
    """Body keywords win over the comment status."""
    state = first_match(REVIEW_STATE_RULES, body.lower(), None)
    if state is not None:
        return state
    return COMMENT_STATUS_STATES.get((status or "").upper(), REVIEW_STATE_COMMENTED)


def detect_source_platform(pull_request_id: str) -> str:
    if pull_request_id.startswith("github:"):
        return "github"
    if pull_request_id.startswith("gitlab:"):
        return "gitlab"
    return "unknown"


def build_comment_url(pr_url: str | None, comment_id: str) -> str:
    """Link to the comment itself when the id carries its platform number.

    Comment ids look like `github:GithubPrComment:1:123456`; anything
    shorter links to the pull request.
    """
    if not pr_url:
        return ""
    parts = comment_id.split(":")
    if len(parts) < 4:
        return pr_url
    platform = comment_id.lower()
    if "github" in platform:
        return f"{pr_url}#issuecomment-{parts[-1]}"
    if "gitlab" in platform:
        return f"{pr_url}#note_{parts[-1]}"
    return pr_url


def build_review(comment: SourceComment, ai_tool: str, patterns: CompiledPatterns, repo_id: str) -> Review:
    """Build the Review record for an AI-authored comment."""
    metrics = parse_review_metrics(comment.body)
    risk_level, risk_score = detect_risk_level(patterns, comment.body)

    return Review(
        id=review_id(comment.pull_request_id, comment.id, ai_tool),
        pull_request_id=comment.pull_request_id,
        repo_id=comment.repo_id or repo_id,
        ai_tool=ai_tool,
        ai_tool_user=comment.account_id,
        review_id=comment.id,
        body=comment.body,
        summary=extract_summary(comment.body),
        created_date=comment.created_date,
        risk_level=risk_level,
        risk_score=risk_score,
        risk_confidence=metrics.confidence,
        issues_found=metrics.issues_found,
        suggestions_count=metrics.suggestions_count,
        files_reviewed=metrics.files_reviewed,
        lines_reviewed=metrics.lines_reviewed,
        effort_complexity=metrics.complexity,
        effort_rating=metrics.effort_rating,
        effort_minutes=metrics.effort_minutes,
        pre_merge_checks_passed=metrics.checks_passed,
        pre_merge_checks_failed=metrics.checks_failed,
        pre_merge_checks_inconclusive=metrics.checks_inconclusive,
        review_state=detect_review_state(comment.body, comment.status),
        source_platform=detect_source_platform(comment.pull_request_id),
        source_url=build_comment_url(comment.pr_url, comment.id),
    )


def extract_reviews(ctx: TaskContext, progress: StageProgress) -> None:
    """Detect AI reviews among the scope's PR comments and upsert them."""
    logger.info(f"Extracting AI reviews for repos {ctx.repo_ids}")
    seen: set[str] = set()

    with BatchWriter(ctx.store, ctx.batch_size) as writer:
        rows = ctx.store.iter_comments(
            ctx.repo_ids,
            time_after=ctx.options.time_after,
            source_platform=ctx.options.source_platform,
        )
        for row in rows:
            if ctx.should_stop():
                logger.info("Stop requested, ending review extraction early")
                break
            progress.processed += 1

            try:
                comment = SourceComment.model_validate(row)
            except ValidationError as e:
                progress.skipped += 1
                logger.debug(f"Skipping malformed comment {row.get('id')}: {e}")
                continue

            ai_tool = detect_ai_tool(ctx.patterns, comment.account_id, comment.body)
            if ai_tool is None:
                continue

            rid = review_id(comment.pull_request_id, comment.id, ai_tool)
            if rid in seen:
                continue
            seen.add(rid)

            writer.add(build_review(comment, ai_tool, ctx.patterns, ctx.options.repo_id or ""))
            progress.written = writer.written + len(writer.pending)

    progress.written = writer.written
    logger.info(f"Completed AI review extraction: {len(seen)} reviews found, {writer.written} written")
