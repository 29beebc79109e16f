"""Finding extractor.

Re-reads stored Reviews and splits each body into individual findings.
Tool-specific parsers run first, then the generic bullet parser runs for
every tool.
"""

import logging
import re
from collections.abc import Callable

from pydantic import ValidationError

from ..context import StageProgress, TaskContext
from ..models import (
    AI_TOOL_CODERABBIT,
    CATEGORY_BEST_PRACTICE,
    CATEGORY_BUG,
    CATEGORY_DOCUMENTATION,
    CATEGORY_MAINTAINABILITY,
    CATEGORY_PERFORMANCE,
    CATEGORY_SECURITY,
    CATEGORY_STYLE,
    FINDING_TYPE_COMMENT,
    FINDING_TYPE_ISSUE,
    FINDING_TYPE_SUGGESTION,
    SEVERITY_CRITICAL,
    SEVERITY_ERROR,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    Finding,
    Review,
    generate_id,
)
from ..rules import Rule, first_match
from ..store import BatchWriter

logger = logging.getLogger(__name__)

MIN_BULLET_LENGTH = 20
MAX_TITLE_LENGTH = 80

FILE_BLOCK_RE = re.compile(r"(?:📁|File:)\s*([^\n]+)\n((?:[-*•]\s*[^\n]+\n?)+)", re.MULTILINE)
BLOCK_ITEM_RE = re.compile(r"^[-*•]\s*(.+)", re.MULTILINE)
SUGGESTION_BLOCK_RE = re.compile(r"```suggestion\s*\n(.+?)```", re.DOTALL)
BULLET_RE = re.compile(r"^[-*•]\s+(.+)$", re.MULTILINE)
FILE_PATH_RE = re.compile(r"\b[\w/.-]+\.(?:go|ts|js|py|java|rs|cpp|c|h)\b")
TITLE_END_RE = re.compile(r"[.!?\n]")

CATEGORY_RULES = [
    Rule(CATEGORY_SECURITY, re.compile(r"security|vulnerab|xss|sql.?inject|auth|creds|secret|token|password", re.IGNORECASE)),
    Rule(CATEGORY_PERFORMANCE, re.compile(r"performance|slow|optimi|efficien|memory|leak|cache|latency", re.IGNORECASE)),
    Rule(CATEGORY_BUG, re.compile(r"bug|error|crash|fail|broken|undefined|null.?pointer|exception", re.IGNORECASE)),
    Rule(CATEGORY_STYLE, re.compile(r"style|format|indent|naming|convention|lint", re.IGNORECASE)),
    Rule(CATEGORY_DOCUMENTATION, re.compile(r"doc|comment|readme|describe|explain", re.IGNORECASE)),
    Rule(CATEGORY_MAINTAINABILITY, re.compile(r"maintain|refactor|complex|duplicate|dry|solid|clean", re.IGNORECASE)),
]

SEVERITY_RULES = [
    Rule(SEVERITY_CRITICAL, re.compile(r"critical|severe|security|vulnerab|crash|data.?loss", re.IGNORECASE)),
    Rule(SEVERITY_ERROR, re.compile(r"error|bug|fail|broken|must|required", re.IGNORECASE)),
    Rule(SEVERITY_WARNING, re.compile(r"warning|should|recommend|consider", re.IGNORECASE)),
]

TYPE_RULES = [
    Rule(FINDING_TYPE_SUGGESTION, re.compile(r"suggest|recommend|consider|could|might", re.IGNORECASE)),
    Rule(FINDING_TYPE_ISSUE, re.compile(r"issue|bug|error|problem|fail", re.IGNORECASE)),
]


def finding_id(review_id: str, context: str, index: int) -> str:
    return generate_id("aifinding", review_id, context, index)


def detect_category(text: str) -> str:
    return first_match(CATEGORY_RULES, text, CATEGORY_BEST_PRACTICE)


def detect_severity(text: str) -> str:
    return first_match(SEVERITY_RULES, text, SEVERITY_INFO)


def detect_type(text: str) -> str:
    return first_match(TYPE_RULES, text, FINDING_TYPE_COMMENT)


def truncate_title(description: str) -> str:
    """First sentence if it ends within 80 chars, else a clipped prefix."""
    match = TITLE_END_RE.search(description)
    if match and 0 < match.start() < MAX_TITLE_LENGTH:
        return description[:match.start()]
    if len(description) > MAX_TITLE_LENGTH:
        return description[:MAX_TITLE_LENGTH - 3] + "..."
    return description


def _finding(review: Review, context: str, index: int, **fields) -> Finding:
    return Finding(
        id=finding_id(review.id, context, index),
        ai_review_id=review.id,
        pull_request_id=review.pull_request_id,
        repo_id=review.repo_id,
        ai_tool=review.ai_tool,
        created_date=review.created_date,
        source_comment_id=review.review_id,
        **fields,
    )


def _classified(review: Review, context: str, index: int, description: str, file_path: str = "") -> Finding:
    return _finding(
        review,
        context,
        index,
        file_path=file_path,
        description=description,
        title=truncate_title(description),
        category=detect_category(description),
        severity=detect_severity(description),
        type=detect_type(description),
    )


def parse_coderabbit_findings(review: Review) -> list[Finding]:
    """File-grouped bullet lists and ```suggestion blocks."""
    findings = []

    # Positions continue across repeated headers for the same file
    counters: dict[str, int] = {}
    for block in FILE_BLOCK_RE.finditer(review.body):
        file_path = block.group(1).strip()
        for item in BLOCK_ITEM_RE.finditer(block.group(2)):
            idx = counters.get(file_path, 0)
            counters[file_path] = idx + 1
            findings.append(_classified(review, file_path, idx, item.group(1).strip(), file_path=file_path))

    for idx, block in enumerate(SUGGESTION_BLOCK_RE.finditer(review.body)):
        findings.append(_finding(
            review,
            "suggestion",
            idx,
            suggested_code=block.group(1).strip(),
            category=CATEGORY_BEST_PRACTICE,
            severity=SEVERITY_INFO,
            type=FINDING_TYPE_SUGGESTION,
            title="Code suggestion",
            description="AI-suggested code change",
        ))

    return findings


def parse_generic_findings(review: Review) -> list[Finding]:
    """One finding per top-level bullet of at least MIN_BULLET_LENGTH chars.

    The index is the bullet's position among all bullet lines, so skipping
    a short bullet does not shift the ids of the ones after it.
    """
    findings = []
    for idx, bullet in enumerate(BULLET_RE.finditer(review.body)):
        description = bullet.group(1).strip()
        if len(description) < MIN_BULLET_LENGTH:
            continue
        match = FILE_PATH_RE.search(description)
        findings.append(_classified(review, "bullet", idx, description, file_path=match.group(0) if match else ""))
    return findings


TOOL_PARSERS: dict[str, Callable[[Review], list[Finding]]] = {
    AI_TOOL_CODERABBIT: parse_coderabbit_findings,
}


def parse_findings(review: Review) -> list[Finding]:
    findings = []
    tool_parser = TOOL_PARSERS.get(review.ai_tool)
    if tool_parser is not None:
        findings.extend(tool_parser(review))
    findings.extend(parse_generic_findings(review))
    return findings


def extract_findings(ctx: TaskContext, progress: StageProgress) -> None:
    """Split stored Reviews of the scope into Findings and upsert them."""
    logger.info(f"Extracting findings from AI reviews for repos {ctx.repo_ids}")
    total = 0

    with BatchWriter(ctx.store, ctx.batch_size) as writer:
        for row in ctx.store.iter_reviews(ctx.repo_ids):
            if ctx.should_stop():
                logger.info("Stop requested, ending finding extraction early")
                break
            progress.processed += 1

            try:
                review = Review.model_validate(row)
            except ValidationError as e:
                progress.skipped += 1
                logger.debug(f"Skipping malformed review {row.get('id')}: {e}")
                continue

            findings = parse_findings(review)
            total += len(findings)
            for finding in findings:
                writer.add(finding)
            progress.written = writer.written + len(writer.pending)

    progress.written = writer.written
    logger.info(f"Completed finding extraction: {total} findings found, {writer.written} written")
