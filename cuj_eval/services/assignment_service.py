"""
Assignment Registry — which reviewer owns which category on which car.

The lock is per (car_id, category_id), not per reviewer: once a category on
a car is assigned, every further assign() for that pair fails with
ConflictError, even for the same reviewer. The uq_assignment_car_category
constraint backs the check across processes.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from cuj_eval.core.exceptions import ConflictError, InvalidReferenceError, NotFoundError
from cuj_eval.models import db
from cuj_eval.models.review import Car, ReviewerAssignment
from cuj_eval.models.taxonomy import CujCategory
from cuj_eval.services.helpers.locking import key_lock

logger = logging.getLogger(__name__)


def get_assignment_for(car_id: int, category_id: int) -> ReviewerAssignment | None:
    return db.session.execute(
        select(ReviewerAssignment).where(
            ReviewerAssignment.car_id == car_id,
            ReviewerAssignment.category_id == category_id,
        )
    ).scalar_one_or_none()


def assign(reviewer_id: int, car_id: int, category_id: int) -> ReviewerAssignment:
    """Assign ``reviewer_id`` to a category on a car.

    Raises:
        InvalidReferenceError: car or category does not exist.
        ConflictError: the (car, category) pair already has a reviewer.
    """
    if db.session.get(Car, car_id) is None:
        raise InvalidReferenceError("ReviewerAssignment", "car_id", car_id)
    if db.session.get(CujCategory, category_id) is None:
        raise InvalidReferenceError("ReviewerAssignment", "category_id", category_id)

    pair = f"{car_id}/{category_id}"
    with key_lock(("assignment", car_id, category_id)):
        existing = get_assignment_for(car_id, category_id)
        if existing is not None:
            logger.warning(
                "Assignment rejected: car/category already held by reviewer %s",
                existing.reviewer_id,
                extra={"car_id": car_id, "category_id": category_id, "reviewer_id": reviewer_id},
            )
            raise ConflictError("ReviewerAssignment", "car_id/category_id", pair)

        assignment = ReviewerAssignment(
            reviewer_id=reviewer_id, car_id=car_id, category_id=category_id,
        )
        db.session.add(assignment)
        try:
            db.session.commit()
        except IntegrityError:
            # Another process won the insert between our check and commit
            db.session.rollback()
            raise ConflictError("ReviewerAssignment", "car_id/category_id", pair) from None

    logger.info(
        "Assigned reviewer %s", reviewer_id,
        extra={"car_id": car_id, "category_id": category_id, "assignment_id": assignment.id},
    )
    return assignment


def get_assignment(assignment_id: int) -> ReviewerAssignment | None:
    return db.session.get(ReviewerAssignment, assignment_id)


def list_for_reviewer(reviewer_id: int) -> list[ReviewerAssignment]:
    return list(db.session.execute(
        select(ReviewerAssignment)
        .where(ReviewerAssignment.reviewer_id == reviewer_id)
        .order_by(ReviewerAssignment.id)
    ).scalars())


def list_for_car(car_id: int) -> list[ReviewerAssignment]:
    return list(db.session.execute(
        select(ReviewerAssignment)
        .where(ReviewerAssignment.car_id == car_id)
        .order_by(ReviewerAssignment.id)
    ).scalars())


def list_for_category(category_id: int) -> list[ReviewerAssignment]:
    return list(db.session.execute(
        select(ReviewerAssignment)
        .where(ReviewerAssignment.category_id == category_id)
        .order_by(ReviewerAssignment.id)
    ).scalars())


def assigned_category_ids(reviewer_id: int, car_id: int) -> list[int]:
    """Category ids on ``car_id`` held by ``reviewer_id``, ascending."""
    return sorted(
        a.category_id for a in list_for_car(car_id) if a.reviewer_id == reviewer_id
    )


def unassign(assignment_id: int) -> None:
    """Remove an assignment, freeing its (car, category) pair.

    Raises:
        NotFoundError: unknown assignment id, or the row was removed by a
            concurrent unassign before the pair lock was taken.
    """
    assignment = get_assignment(assignment_id)
    if assignment is None:
        raise NotFoundError(resource="ReviewerAssignment", resource_id=assignment_id)
    car_id, category_id = assignment.car_id, assignment.category_id
    with key_lock(("assignment", car_id, category_id)):
        # Re-read from the database; the identity map may hold a deleted row
        current = get_assignment_for(car_id, category_id)
        if current is None or current.id != assignment_id:
            raise NotFoundError(resource="ReviewerAssignment", resource_id=assignment_id)
        db.session.delete(current)
        db.session.commit()
    logger.info(
        "Removed assignment", extra={
            "assignment_id": assignment_id, "car_id": car_id, "category_id": category_id,
        },
    )
