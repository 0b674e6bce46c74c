"""
Evaluation Store — draft-friendly upserts of task and category evaluations.

Keys:
    TaskEvaluation      (review_id, task_id)
    CategoryEvaluation  (review_id, category_id)

Write contract (both kinds):
  - No record for the key → create it; created_at = last_modified_at = now.
  - Record exists → merge only the supplied fields (anything not supplied
    keeps its previous value) and bump last_modified_at; created_at never
    changes.
  - Writes for one key run under that key's lock. If another process wins
    the insert race, the unique constraint fires and the write is retried
    once as an update.
  - The first write to a not_started review moves it to in_progress.

Reads never raise for a missing evaluation: absence returns None / an empty
list, because drafts legitimately do not exist yet.
"""

from __future__ import annotations

import logging
import math

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from cuj_eval.core.exceptions import ConflictError, InvalidReferenceError, ValidationError
from cuj_eval.models import db, utcnow
from cuj_eval.models.evaluation import (
    CATEGORY_EVALUATION_FIELDS,
    CATEGORY_RATING_FIELDS,
    RATING_MAX,
    RATING_MIN,
    TASK_EVALUATION_FIELDS,
    TASK_RATING_FIELDS,
    CategoryEvaluation,
    TaskEvaluation,
)
from cuj_eval.models.taxonomy import CujCategory, Task
from cuj_eval.services.helpers.locking import key_lock
from cuj_eval.services.review_lifecycle import mark_in_progress, require_review, review_key

logger = logging.getLogger(__name__)

MEDIA_TYPES = frozenset({"image", "video"})
_MEDIA_KEYS = ("id", "type", "mime_type", "size", "duration", "url", "thumbnail_url")


# ── Field validation ────────────────────────────────────────────────────────


def _validate_media(items) -> list[dict]:
    """Check opaque media references and keep only the known keys.

    Raises:
        ValidationError: not a list, missing id/type, bad size/duration, or
            a video longer than MEDIA_MAX_VIDEO_SECONDS.
    """
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("media must be a list.", details={"media": "must be a list"})

    max_seconds = current_app.config.get("MEDIA_MAX_VIDEO_SECONDS", 120)
    cleaned = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or not str(item.get("id") or "").strip():
            raise ValidationError(f"media[{index}] needs an id.", details={"media": index})
        if item.get("type") not in MEDIA_TYPES:
            raise ValidationError(
                f"media[{index}].type must be one of: {', '.join(sorted(MEDIA_TYPES))}",
                details={"media": index},
            )
        for numeric in ("size", "duration"):
            value = item.get(numeric)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)) \
                    or not math.isfinite(value) or value < 0:
                raise ValidationError(
                    f"media[{index}].{numeric} must be a non-negative number.",
                    details={"media": index},
                )
        duration = item.get("duration")
        if item["type"] == "video" and duration is not None and duration > max_seconds:
            raise ValidationError(
                f"media[{index}] is {duration}s long; videos are limited to {max_seconds}s.",
                details={"media": index, "duration": duration},
            )
        cleaned.append({k: item[k] for k in _MEDIA_KEYS if item.get(k) is not None})
    return cleaned


def _validate_fields(fields: dict, allowed: tuple, ratings: tuple) -> dict:
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValidationError(
            f"Unknown evaluation field(s): {', '.join(unknown)}",
            details={name: "unknown field" for name in unknown},
        )

    cleaned = {}
    for name, value in fields.items():
        if name in ratings:
            if value is not None and (
                isinstance(value, bool) or not isinstance(value, int)
                or not RATING_MIN <= value <= RATING_MAX
            ):
                raise ValidationError(
                    f"{name} must be an integer between {RATING_MIN} and {RATING_MAX}.",
                    details={name: value},
                )
        elif name == "doable":
            if value is not None and not isinstance(value, bool):
                raise ValidationError("doable must be true, false or null.", details={name: value})
        elif name == "media":
            value = _validate_media(value)
        elif value is not None and not isinstance(value, str):
            raise ValidationError(f"{name} must be text.", details={name: value})
        cleaned[name] = value
    return cleaned


# ── Upsert core ─────────────────────────────────────────────────────────────


def _upsert(model, key: dict, fields: dict, review_id: int, modified_by: int | None):
    """Create-or-merge one evaluation row. Returns (record, created)."""
    for attempt in (1, 2):
        # The review row may change status here, so hold its lock as well
        with key_lock(review_key(review_id)):
            review = require_review(review_id)
            record = db.session.execute(select(model).filter_by(**key)).scalar_one_or_none()
            now = utcnow()
            created = record is None
            if created:
                record = model(**key, created_at=now)
                db.session.add(record)
            for name, value in fields.items():
                setattr(record, name, value)
            record.last_modified_at = now
            mark_in_progress(review, modified_by)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                if attempt == 2:
                    raise ConflictError(model.__name__, "key", repr(tuple(key.values()))) from None
                logger.warning("Lost insert race for %s %s; retrying as update",
                               model.__name__, key, extra={"review_id": review_id})
                continue
        return record, created


def write_task_evaluation(
    review_id: int,
    task_id: int,
    fields: dict,
    modified_by: int | None = None,
) -> TaskEvaluation:
    """Upsert the evaluation of ``task_id`` within ``review_id``.

    Raises:
        NotFoundError: unknown review.
        InvalidReferenceError: unknown task.
        ValidationError: unknown field, rating outside 1–4, bad media.
    """
    cleaned = _validate_fields(fields or {}, TASK_EVALUATION_FIELDS, TASK_RATING_FIELDS)
    with key_lock(("task_evaluation", review_id, task_id)):
        require_review(review_id)
        if db.session.get(Task, task_id) is None:
            raise InvalidReferenceError("TaskEvaluation", "task_id", task_id)
        record, created = _upsert(
            TaskEvaluation, {"review_id": review_id, "task_id": task_id},
            cleaned, review_id, modified_by,
        )

    logger.info(
        "%s task evaluation (%s)", "Created" if created else "Updated",
        ", ".join(sorted(cleaned)) or "no fields",
        extra={"review_id": review_id, "task_id": task_id},
    )
    return record


def write_category_evaluation(
    review_id: int,
    category_id: int,
    fields: dict,
    modified_by: int | None = None,
) -> CategoryEvaluation:
    """Upsert the category-level evaluation of ``category_id`` within ``review_id``.

    Raises:
        NotFoundError: unknown review.
        InvalidReferenceError: unknown category.
        ValidationError: unknown field, rating outside 1–4, bad media.
    """
    cleaned = _validate_fields(fields or {}, CATEGORY_EVALUATION_FIELDS, CATEGORY_RATING_FIELDS)
    with key_lock(("category_evaluation", review_id, category_id)):
        require_review(review_id)
        if db.session.get(CujCategory, category_id) is None:
            raise InvalidReferenceError("CategoryEvaluation", "category_id", category_id)
        record, created = _upsert(
            CategoryEvaluation, {"review_id": review_id, "category_id": category_id},
            cleaned, review_id, modified_by,
        )

    logger.info(
        "%s category evaluation (%s)", "Created" if created else "Updated",
        ", ".join(sorted(cleaned)) or "no fields",
        extra={"review_id": review_id, "category_id": category_id},
    )
    return record


# ── Reads ───────────────────────────────────────────────────────────────────


def get_task_evaluation(review_id: int, task_id: int) -> TaskEvaluation | None:
    return db.session.execute(
        select(TaskEvaluation).where(
            TaskEvaluation.review_id == review_id, TaskEvaluation.task_id == task_id,
        )
    ).scalar_one_or_none()


def get_category_evaluation(review_id: int, category_id: int) -> CategoryEvaluation | None:
    return db.session.execute(
        select(CategoryEvaluation).where(
            CategoryEvaluation.review_id == review_id,
            CategoryEvaluation.category_id == category_id,
        )
    ).scalar_one_or_none()


def task_evaluations_by_task(review_id: int) -> dict[int, TaskEvaluation]:
    """task_id → evaluation for one review."""
    rows = db.session.execute(
        select(TaskEvaluation).where(TaskEvaluation.review_id == review_id)
    ).scalars()
    return {row.task_id: row for row in rows}


def category_evaluations_by_category(review_id: int) -> dict[int, CategoryEvaluation]:
    """category_id → evaluation for one review."""
    rows = db.session.execute(
        select(CategoryEvaluation).where(CategoryEvaluation.review_id == review_id)
    ).scalars()
    return {row.category_id: row for row in rows}


def list_task_evaluations(review_id: int) -> list[dict]:
    """Task evaluations of a review joined with task → CUJ → category, task order."""
    rows = db.session.execute(
        select(TaskEvaluation)
        .where(TaskEvaluation.review_id == review_id)
        .order_by(TaskEvaluation.task_id)
    ).scalars()
    return [row.to_dict(include_task=True) for row in rows]


def list_category_evaluations(review_id: int) -> list[dict]:
    """Category evaluations of a review joined with their category, category order."""
    rows = db.session.execute(
        select(CategoryEvaluation)
        .where(CategoryEvaluation.review_id == review_id)
        .order_by(CategoryEvaluation.category_id)
    ).scalars()
    return [row.to_dict(include_category=True) for row in rows]


def completed_task_ids(review_id: int) -> list[int]:
    """Ids of tasks whose evaluation has every required field, ascending.

    Required: doable set, and when doable both usability_score and
    visuals_score set.
    """
    return sorted(
        task_id for task_id, ev in task_evaluations_by_task(review_id).items() if ev.is_complete
    )
