"""
Report Generator — scores a review and snapshots the result.

generate_report(review_id):
    1. Load the review and the taxonomy version it is bound to.
    2. Load its task / category evaluations and the current weights.
    3. Score every task of that version (absent evaluation → 0 contributions).
    4. Per category: mean of its task scores, combined with the category
       ratings through the category weight group.
    5. Overall: equal-weight mean of the category scores.
    6. Top issues: categories and tasks below the low-score threshold,
       ascending by score (most severe first).
    7. Upsert the review's single Report row.

Generation only reads evaluations and review state. Identical inputs give an
identical report, timestamps included: last_modified_at moves only when the
content changes. There is no isolation against evaluations written while a
report is being computed; the result is a best-effort snapshot.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import select

from cuj_eval.core.exceptions import NotFoundError, ValidationError
from cuj_eval.models import db, utcnow
from cuj_eval.models.scoring import BENCHMARK_COMPARISONS, REPORT_NOTE_FIELDS, Report
from cuj_eval.services import evaluation_service, scoring_config_service, taxonomy_service
from cuj_eval.services.helpers.locking import key_lock
from cuj_eval.services.review_lifecycle import require_review
from cuj_eval.services.scoring_engine import (
    CategoryRatings,
    TaskRatings,
    category_rollup_score,
    category_score,
    overall_score,
    task_score,
)

logger = logging.getLogger(__name__)

# Fields an external viewer gets blanked
EXTERNAL_REDACTED = {"top_issues": [], "top_hates": None, "benchmark_rank": None,
                     "benchmark_comparison": None}

INTERNAL_ROLES = frozenset({"admin", "internal", "reviewer"})
EXTERNAL_ROLES = frozenset({"external"})

_PRECISION = 2


def _r(value: float | None) -> float | None:
    return None if value is None else round(value, _PRECISION)


def _task_issue_reason(evaluation) -> str:
    if evaluation is None or evaluation.doable is None:
        return "not evaluated"
    if evaluation.doable is False:
        return "task not doable"
    return "low ratings"


def _build_content(review, weights, threshold: float, limit: int) -> dict:
    version_id = review.cuj_database_version_id
    tasks = taxonomy_service.tasks_for_version(version_id)
    categories = {c.id: c for c in taxonomy_service.categories_for_version(version_id)}
    for task in tasks:
        categories.setdefault(task.cuj.category_id, task.cuj.category)

    task_evals = evaluation_service.task_evaluations_by_task(review.id)
    category_evals = evaluation_service.category_evaluations_by_category(review.id)

    # ── Task level ────────────────────────────────────────────────────────
    task_rows = []
    raw_by_category: dict[int, list[float]] = {cid: [] for cid in categories}
    issues = []
    for task in tasks:
        evaluation = task_evals.get(task.id)
        score = task_score(TaskRatings.from_evaluation(evaluation), weights.task)
        category_id = task.cuj.category_id
        raw_by_category[category_id].append(score)
        task_rows.append({
            "task_id": task.id,
            "name": task.name,
            "cuj_id": task.cuj_id,
            "category_id": category_id,
            "evaluated": evaluation is not None,
            "doable": evaluation.doable if evaluation is not None else None,
            "score": _r(score),
        })
        if score < threshold:
            issues.append({
                "kind": "task",
                "id": task.id,
                "name": task.name,
                "category_id": category_id,
                "score": _r(score),
                "reason": _task_issue_reason(evaluation),
                "_sort": (score, 1, task.id),
            })

    # ── Category level ────────────────────────────────────────────────────
    category_rows = []
    rollup: dict[int, float] = {}
    for category_id in sorted(categories):
        category = categories[category_id]
        evaluation = category_evals.get(category_id)
        ratings = CategoryRatings.from_evaluation(evaluation)
        task_average = category_score(raw_by_category[category_id])
        score = category_rollup_score(task_average, ratings, weights.category)
        rollup[category_id] = score
        category_rows.append({
            "category_id": category_id,
            "name": category.name,
            "task_count": len(raw_by_category[category_id]),
            "task_average": _r(task_average),
            "responsiveness": _r(ratings.responsiveness),
            "writing": _r(ratings.writing),
            "emotional": _r(ratings.emotional),
            "evaluated": evaluation is not None,
            "score": _r(score),
        })
        if score < threshold:
            issues.append({
                "kind": "category",
                "id": category_id,
                "name": category.name,
                "category_id": category_id,
                "score": _r(score),
                "reason": "low category score",
                "_sort": (score, 0, category_id),
            })

    # ── Overall ───────────────────────────────────────────────────────────
    overall = overall_score(rollup)
    issues.sort(key=lambda issue: issue["_sort"])
    top_issues = [{k: v for k, v in issue.items() if k != "_sort"} for issue in issues[:limit]]

    evaluated = sum(1 for row in task_rows if row["evaluated"])
    summary = (
        f"Overall score {overall:.1f}/100 across {len(category_rows)} categories "
        f"and {len(task_rows)} tasks ({evaluated} evaluated). "
        f"{len(issues)} item(s) scored below {threshold:g}."
    )
    if category_rows:
        weakest = min(category_rows, key=lambda row: (row["score"], row["category_id"]))
        summary += f" Weakest category: {weakest['name']} ({weakest['score']:.1f})."

    return {
        "overall_score": _r(overall),
        "category_scores": category_rows,
        "task_scores": task_rows,
        "top_issues": top_issues,
        "summary": summary,
    }


def generate_report(review_id: int, low_score_threshold: float | None = None) -> dict:
    """Compute and store the report for ``review_id``.

    Args:
        review_id: Review to score.
        low_score_threshold: Scores strictly below this are top issues.
            Defaults to REPORT_LOW_SCORE_THRESHOLD.

    Returns:
        Serialized Report dict.

    Raises:
        NotFoundError: unknown review.
    """
    review = require_review(review_id)
    if low_score_threshold is None:
        low_score_threshold = current_app.config.get("REPORT_LOW_SCORE_THRESHOLD", 50.0)
    limit = current_app.config.get("REPORT_TOP_ISSUES_LIMIT", 10)
    weights = scoring_config_service.get_weights()

    content = _build_content(review, weights, float(low_score_threshold), limit)

    with key_lock(("report", review_id)):
        report = db.session.execute(
            select(Report).where(Report.review_id == review_id)
        ).scalar_one_or_none()
        if report is None:
            now = utcnow()
            report = Report(review_id=review_id, created_at=now, last_modified_at=now, **content)
            db.session.add(report)
            action = "created"
        elif report.content() != content:
            for name, value in content.items():
                setattr(report, name, value)
            report.last_modified_at = utcnow()
            action = "updated"
        else:
            action = "unchanged"
        db.session.commit()

    logger.info(
        "Report %s: overall=%.2f issues=%d", action, content["overall_score"],
        len(content["top_issues"]),
        extra={"review_id": review_id, "event_type": "report_generated"},
    )
    return report.to_dict()


def _check_note(name: str, value) -> None:
    if value is None:
        return
    if name in ("top_likes", "top_hates"):
        ok = isinstance(value, str)
    elif name == "benchmark_rank":
        ok = isinstance(value, int) and not isinstance(value, bool) and value >= 1
    else:
        ok = value in BENCHMARK_COMPARISONS
    if not ok:
        raise ValidationError(f"Invalid value for {name}.", details={name: value})


def update_report_notes(review_id: int, data: dict, modified_by: int | None = None) -> dict:
    """Set the reviewer-written notes on an existing report.

    ``data`` may carry any of top_likes, top_hates (text), benchmark_rank
    (integer >= 1) and benchmark_comparison ("better" or "worse"). A None
    value clears the field. Regenerating the report keeps these.

    Raises:
        NotFoundError: unknown review or no report generated yet.
        ValidationError: unknown field or bad value; nothing is written.
    """
    require_review(review_id)
    unknown = sorted(set(data) - set(REPORT_NOTE_FIELDS))
    if unknown:
        raise ValidationError(
            f"Unknown report field(s): {', '.join(unknown)}", details={"unknown": unknown},
        )
    for name, value in data.items():
        _check_note(name, value)

    with key_lock(("report", review_id)):
        report = db.session.execute(
            select(Report).where(Report.review_id == review_id)
        ).scalar_one_or_none()
        if report is None:
            raise NotFoundError(resource="Report", resource_id=review_id)
        for name, value in data.items():
            setattr(report, name, value)
        report.last_modified_at = utcnow()
        db.session.commit()

    logger.info(
        "Report notes updated: %s", ", ".join(sorted(data)) or "none",
        extra={"review_id": review_id, "user_id": modified_by, "event_type": "report_notes_updated"},
    )
    return report.to_dict()


def get_report(review_id: int) -> dict | None:
    """Return the stored report for a review, or None if never generated."""
    report = db.session.execute(
        select(Report).where(Report.review_id == review_id)
    ).scalar_one_or_none()
    return report.to_dict() if report else None


def report_view_for_role(review_id: int, role: str) -> dict:
    """Return the stored report as the given viewer role may see it.

    Internal roles see everything. External viewers only see reports of
    published, completed reviews, without top issues, top hates or the
    benchmark placement (top likes stay visible); anything else is
    reported as not found.

    Raises:
        ValidationError: unknown role.
        NotFoundError: no report, or not visible to an external viewer.
    """
    if role not in INTERNAL_ROLES | EXTERNAL_ROLES:
        raise ValidationError(f"Unknown viewer role '{role}'.", details={"role": role})

    review = require_review(review_id)
    report = get_report(review_id)
    if report is None:
        raise NotFoundError(resource="Report", resource_id=review_id)
    if role in INTERNAL_ROLES:
        return report
    if not (review.is_published and review.status == "completed"):
        raise NotFoundError(resource="Report", resource_id=review_id)
    return {**report, **EXTERNAL_REDACTED}
