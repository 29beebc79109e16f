"""Outcome correlator.

Pairs each merged PR (per AI tool that reviewed it) with what happened
after the merge: a failed CI pipeline on the merge commit, a linked bug
report, or a revert commit in the repository. Once the observation window
has elapsed the pair is classified as TP, FP, FN or TN.
"""

import logging
from datetime import datetime, timedelta

from pydantic import ValidationError

from .context import StageProgress, TaskContext
from .models import (
    OUTCOME_FN,
    OUTCOME_FP,
    OUTCOME_PENDING,
    OUTCOME_TN,
    OUTCOME_TP,
    RISK_LEVEL_CRITICAL,
    RISK_LEVEL_HIGH,
    MergedPullRequest,
    Prediction,
    generate_id,
)
from .store import BatchWriter, Store

logger = logging.getLogger(__name__)

RISKY_SCORE_THRESHOLD = 70
RISKY_LEVELS = {RISK_LEVEL_HIGH, RISK_LEVEL_CRITICAL}


def prediction_id(pull_request_id: str, ai_tool: str) -> str:
    return generate_id("aipred", pull_request_id, ai_tool)


def was_flagged_risky(risk_level: str | None, risk_score: int) -> bool:
    return risk_level in RISKY_LEVELS or risk_score >= RISKY_SCORE_THRESHOLD


def calculate_outcome(flagged: bool, failed: bool) -> str:
    """Confusion-matrix bucket for a finished observation."""
    if flagged:
        return OUTCOME_TP if failed else OUTCOME_FP
    return OUTCOME_FN if failed else OUTCOME_TN


def build_prediction(store: Store, pr: MergedPullRequest, window_days: int, now: datetime) -> Prediction:
    """Look up outcomes for one merged PR and build its Prediction.

    All three lookups cover (merged, merged + window]. The outcome stays
    pending until `now` is past the window end.
    """
    merged_at = pr.merged_date
    window_end = merged_at + timedelta(days=window_days)
    flagged = was_flagged_risky(pr.risk_level, pr.risk_score)

    ci_failure_at = store.first_ci_failure(pr.merge_commit_sha, merged_at, window_end)
    bug = store.first_bug_report(pr.id, merged_at, window_end)
    rollback_at = store.first_rollback(pr.repo_id, merged_at, window_end)

    prediction = Prediction(
        id=prediction_id(pr.id, pr.ai_tool),
        pull_request_id=pr.id,
        repo_id=pr.repo_id,
        ai_tool=pr.ai_tool,
        was_flagged_risky=flagged,
        risk_score=pr.risk_score,
        flagged_at=pr.review_created_date,
        pr_merged_at=merged_at,
        had_ci_failure=ci_failure_at is not None,
        ci_failure_at=ci_failure_at,
        had_bug_reported=bug is not None,
        bug_reported_at=bug[1] if bug else None,
        bug_issue_id=bug[0] if bug else "",
        had_rollback=rollback_at is not None,
        rollback_at=rollback_at,
        observation_window_days=window_days,
        observation_end_date=window_end,
        created_at=now,
    )

    if now > window_end:
        failed = prediction.had_ci_failure or prediction.had_bug_reported or prediction.had_rollback
        prediction.prediction_outcome = calculate_outcome(flagged, failed)
    else:
        prediction.prediction_outcome = OUTCOME_PENDING

    return prediction


def correlate_outcomes(ctx: TaskContext, progress: StageProgress) -> None:
    """Build or refresh Predictions for every merged PR of the scope.

    Predictions that are already classified are left untouched.
    """
    window_days = ctx.scope_config.observation_window_days
    logger.info(f"Correlating outcomes for repos {ctx.repo_ids} (window: {window_days} days)")

    classified = ctx.store.classified_prediction_ids(ctx.repo_ids)
    kept = 0

    with BatchWriter(ctx.store, ctx.batch_size) as writer:
        for row in ctx.store.iter_merged_pull_requests(ctx.repo_ids):
            if ctx.should_stop():
                logger.info("Stop requested, ending outcome correlation early")
                break
            progress.processed += 1

            try:
                pr = MergedPullRequest.model_validate(row)
            except ValidationError as e:
                progress.skipped += 1
                logger.debug(f"Skipping malformed pull request {row.get('id')}: {e}")
                continue

            if pr.merged_date is None:
                progress.skipped += 1
                logger.debug(f"Skipping pull request {pr.id}: no merge date")
                continue

            if prediction_id(pr.id, pr.ai_tool) in classified:
                kept += 1
                continue

            writer.add(build_prediction(ctx.store, pr, window_days, ctx.now))
            progress.written = writer.written + len(writer.pending)

    progress.written = writer.written
    logger.info(
        f"Completed outcome correlation: {progress.processed} PRs processed, "
        f"{writer.written} predictions written, {kept} already classified"
    )
