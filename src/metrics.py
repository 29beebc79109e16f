"""Metrics aggregator.

Rolls classified Predictions up into precision, recall, accuracy and F1 per
repository, AI tool and sliding period, and recommends how much autonomy a
tool has earned.
"""

import logging
from datetime import datetime, timedelta

from .context import StageProgress, TaskContext
from .models import (
    AUTONOMY_ADVISORY_ONLY,
    AUTONOMY_AUTO_BLOCK,
    AUTONOMY_MANDATORY_REVIEW,
    Metrics,
    generate_id,
)
from .store import BatchWriter

logger = logging.getLogger(__name__)

# (period type, days back from now)
PERIODS = [
    ("daily", 1),
    ("weekly", 7),
    ("monthly", 30),
    ("rolling_60d", 60),
]

# Autonomy thresholds: (level, min precision, min recall), checked in order
AUTONOMY_THRESHOLDS = [
    (AUTONOMY_AUTO_BLOCK, 0.80, 0.70),
    (AUTONOMY_MANDATORY_REVIEW, 0.60, 0.50),
]


def metrics_id(repo_id: str, ai_tool: str, period_type: str, period_start: datetime) -> str:
    return generate_id("aimetrics", repo_id, ai_tool, period_type, period_start.strftime("%Y-%m-%d"))


def determine_autonomy_level(precision: float, recall: float) -> str:
    for level, min_precision, min_recall in AUTONOMY_THRESHOLDS:
        if precision >= min_precision and recall >= min_recall:
            return level
    return AUTONOMY_ADVISORY_ONLY


def compute_rates(tp: int, fp: int, fn: int, tn: int) -> tuple[float, float, float, float]:
    """Return (precision, recall, accuracy, f1); a zero denominator gives 0."""
    total = tp + fp + fn + tn
    precision = tp / (tp + fp) if tp + fp else 0.0
    recall = tp / (tp + fn) if tp + fn else 0.0
    accuracy = (tp + tn) / total if total else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
    return precision, recall, accuracy, f1


def build_metrics(
    repo_id: str,
    ai_tool: str,
    period_type: str,
    period_start: datetime,
    period_end: datetime,
    counts: dict[str, int],
    now: datetime,
) -> Metrics:
    tp, fp, fn, tn = counts["tp"], counts["fp"], counts["fn"], counts["tn"]
    precision, recall, accuracy, f1 = compute_rates(tp, fp, fn, tn)

    return Metrics(
        id=metrics_id(repo_id, ai_tool, period_type, period_start),
        repo_id=repo_id,
        ai_tool=ai_tool,
        period_start=period_start,
        period_end=period_end,
        period_type=period_type,
        true_positives=tp,
        false_positives=fp,
        false_negatives=fn,
        true_negatives=tn,
        precision=precision,
        recall=recall,
        accuracy=accuracy,
        f1_score=f1,
        total_prs=counts["total"],
        flagged_prs=counts["flagged"],
        failed_prs=counts["failed"],
        observed_prs=tp + fp + fn + tn,
        recommended_autonomy_level=determine_autonomy_level(precision, recall),
        calculated_at=now,
    )


def aggregate_metrics(ctx: TaskContext, progress: StageProgress) -> None:
    """Compute Metrics for every (repo, tool, period) with classified data."""
    logger.info(f"Calculating prediction metrics for repos {ctx.repo_ids}")

    with BatchWriter(ctx.store, ctx.batch_size) as writer:
        pairs = ((repo_id, ai_tool) for repo_id in ctx.repo_ids for ai_tool in ctx.store.prediction_tools(repo_id))
        for repo_id, ai_tool in pairs:
            if ctx.should_stop():
                logger.info("Stop requested, ending metrics aggregation early")
                break
            for period_type, days in PERIODS:
                progress.processed += 1
                period_start = ctx.now - timedelta(days=days)
                counts = ctx.store.prediction_counts(repo_id, ai_tool, period_start, ctx.now)
                if counts["total"] == 0:
                    progress.skipped += 1
                    continue
                writer.add(build_metrics(repo_id, ai_tool, period_type, period_start, ctx.now, counts, ctx.now))
                progress.written = writer.written + len(writer.pending)

    progress.written = writer.written
    logger.info(f"Completed prediction metrics calculation: {writer.written} metrics written")
