"""
Review Lifecycle Service — review creation, status and publish state.

States (forward only, see REVIEW_STATUS_TRANSITIONS):
    not_started → in_progress → completed

  - in_progress is entered automatically on the review's first evaluation
    write (mark_in_progress, called by evaluation_service).
  - completed is only ever set by an explicit update_review call.
  - A completed review still accepts evaluation writes; re-opening is
    implicit and not modelled as a state.
  - is_published is independent of status. While a review is published its
    status is frozen; the same call may unpublish and change status.
  - Every mutation stamps last_modified_by / last_modified_at.
  - cuj_database_version_id is bound once, at creation, to the active
    taxonomy version.

Usage:
    from cuj_eval.services.review_lifecycle import create_review, update_review

    review = create_review({"car_id": 1, "reviewer_id": 7}, created_by=1)
    update_review(review.id, modified_by=7, status="completed")
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select

from cuj_eval.core.exceptions import InvalidReferenceError, NotFoundError, ValidationError
from cuj_eval.models import db, utcnow
from cuj_eval.models.review import REVIEW_STATUS_TRANSITIONS, REVIEW_STATUSES, Car, Review
from cuj_eval.services import assignment_service, taxonomy_service
from cuj_eval.services.helpers.locking import key_lock

logger = logging.getLogger(__name__)


def review_key(review_id: int) -> tuple:
    return ("review", review_id)


def _parse_datetime(data: dict, field: str) -> datetime | None:
    value = data.get(field)
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(f"{field} must be an ISO-8601 datetime.", details={field: value})


# ── Read ────────────────────────────────────────────────────────────────────


def get_review(review_id: int) -> Review | None:
    return db.session.get(Review, review_id)


def require_review(review_id: int) -> Review:
    review = get_review(review_id)
    if review is None:
        raise NotFoundError(resource="Review", resource_id=review_id)
    return review


def list_reviews(reviewer_id: int | None = None, car_id: int | None = None) -> list[Review]:
    stmt = select(Review).order_by(Review.id)
    if reviewer_id is not None:
        stmt = stmt.where(Review.reviewer_id == reviewer_id)
    if car_id is not None:
        stmt = stmt.where(Review.car_id == car_id)
    return list(db.session.execute(stmt).scalars())


# ── Create / delete ─────────────────────────────────────────────────────────


def create_review(data: dict, created_by: int | None = None) -> Review:
    """Create a review bound to the currently active taxonomy version.

    Args:
        data: car_id, reviewer_id, optional start_date / end_date
              (datetime or ISO-8601 string).
        created_by: User id of the creator.

    Raises:
        InvalidReferenceError: car_id does not exist.
        ValidationError: reviewer_id missing, bad dates, end before start.
    """
    car_id = data.get("car_id")
    if car_id is None or db.session.get(Car, car_id) is None:
        raise InvalidReferenceError("Review", "car_id", car_id)
    reviewer_id = data.get("reviewer_id")
    if not isinstance(reviewer_id, int) or isinstance(reviewer_id, bool):
        raise ValidationError("reviewer_id is required.", details={"reviewer_id": reviewer_id})

    start_date = _parse_datetime(data, "start_date")
    end_date = _parse_datetime(data, "end_date")
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must not be before start_date.")

    active = taxonomy_service.get_active_version()
    now = utcnow()
    review = Review(
        car_id=car_id,
        reviewer_id=reviewer_id,
        status="not_started",
        is_published=False,
        start_date=start_date,
        end_date=end_date,
        cuj_database_version_id=active.id if active else None,
        created_by=created_by,
        created_at=now,
        last_modified_by=created_by,
        last_modified_at=now,
    )
    db.session.add(review)
    db.session.commit()

    logger.info(
        "Created review", extra={
            "review_id": review.id,
            "car_id": car_id,
            "reviewer_id": reviewer_id,
            "version_id": review.cuj_database_version_id,
        },
    )
    if active is None:
        logger.warning("Review created with no active taxonomy version",
                       extra={"review_id": review.id})
    return review


def delete_review(review_id: int) -> None:
    """Delete a review and everything it owns (evaluations, report)."""
    with key_lock(review_key(review_id)):
        review = require_review(review_id)
        db.session.delete(review)
        db.session.commit()
    logger.info("Deleted review", extra={"review_id": review_id})


# ── Status / publish ────────────────────────────────────────────────────────


def update_review(
    review_id: int,
    modified_by: int | None,
    status: str | None = None,
    is_published: bool | None = None,
) -> Review:
    """Change status and/or publish state.

    Raises:
        NotFoundError: unknown review.
        ValidationError: unknown status, backwards transition, or a status
            change on a review that stays published.
    """
    if status is not None and status not in REVIEW_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(REVIEW_STATUSES)}", details={"status": status},
        )

    with key_lock(review_key(review_id)):
        review = require_review(review_id)
        previous_status = review.status

        if status is not None and status != review.status:
            if review.is_published and is_published is not False:
                raise ValidationError(
                    f"Review {review_id} is published; unpublish it before changing status.",
                )
            if status not in REVIEW_STATUS_TRANSITIONS[review.status]:
                logger.warning(
                    "Rejected status transition %s -> %s", review.status, status,
                    extra={"review_id": review_id},
                )
                raise ValidationError(
                    f"Cannot move review {review_id} from '{review.status}' to '{status}'.",
                    details={"from": review.status, "to": status},
                )
            review.status = status

        if is_published is not None:
            review.is_published = bool(is_published)

        review.last_modified_by = modified_by
        review.last_modified_at = utcnow()
        db.session.commit()

    logger.info(
        "Updated review: status %s -> %s, published=%s",
        previous_status, review.status, review.is_published,
        extra={"review_id": review_id, "user_id": modified_by, "event_type": "review_updated"},
    )
    return review


def update_status(review_id: int, status: str, modified_by: int | None) -> Review:
    return update_review(review_id, modified_by, status=status)


def set_published(review_id: int, is_published: bool, modified_by: int | None) -> Review:
    return update_review(review_id, modified_by, is_published=is_published)


def mark_in_progress(review: Review, modified_by: int | None = None) -> bool:
    """Move a not_started review to in_progress. Caller commits.

    Returns:
        True when the status changed.
    """
    if review.status != "not_started":
        return False
    review.status = "in_progress"
    review.last_modified_by = modified_by if modified_by is not None else review.reviewer_id
    review.last_modified_at = utcnow()
    logger.info("Review started", extra={"review_id": review.id, "event_type": "review_started"})
    return True


# ── Progress ────────────────────────────────────────────────────────────────


def review_progress(review_id: int) -> dict:
    """Completion summary for a review.

    When the review's reviewer holds assignments on the car, only tasks in
    those categories count; otherwise every task in the bound taxonomy
    version counts.

    Returns:
        {"review_id", "status", "assigned_category_ids", "total_tasks",
         "completed_tasks", "completion_ratio"}
    """
    from cuj_eval.services.evaluation_service import completed_task_ids

    review = require_review(review_id)
    assigned = assignment_service.assigned_category_ids(review.reviewer_id, review.car_id)
    tasks = taxonomy_service.tasks_for_version(review.cuj_database_version_id)
    if assigned:
        tasks = [t for t in tasks if t.category_id in assigned]
    task_ids = {t.id for t in tasks}
    done = [tid for tid in completed_task_ids(review_id) if tid in task_ids]
    total = len(task_ids)
    return {
        "review_id": review_id,
        "status": review.status,
        "assigned_category_ids": assigned,
        "total_tasks": total,
        "completed_tasks": len(done),
        "completion_ratio": round(len(done) / total, 4) if total else 0.0,
    }
