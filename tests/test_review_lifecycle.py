"""
State-machine and publish-gate tests for reviews.

Review (REVIEW_STATUS_TRANSITIONS), forward only:
    - not_started -> in_progress | completed
    - in_progress -> completed
    - completed -> (terminal; evaluation writes still allowed)

Also covered:
    - version binding at creation
    - last_modified_by / last_modified_at stamping on every mutation
    - published reviews keep their status until unpublished
    - review_progress respects reviewer assignments
"""

from datetime import datetime

import pytest

from cuj_eval.core.exceptions import InvalidReferenceError, NotFoundError, ValidationError
from cuj_eval.models import db
from cuj_eval.models.evaluation import TaskEvaluation
from cuj_eval.models.review import REVIEW_STATUS_TRANSITIONS, REVIEW_STATUSES, Review
from cuj_eval.services import assignment_service, evaluation_service, taxonomy_service
from cuj_eval.services import review_lifecycle as rl

INVALID_TRANSITIONS = [
    (src, dst)
    for src in REVIEW_STATUSES
    for dst in REVIEW_STATUSES
    if dst not in REVIEW_STATUS_TRANSITIONS[src]
]
VALID_TRANSITIONS = [
    (src, dst)
    for src in REVIEW_STATUSES
    for dst in sorted(REVIEW_STATUS_TRANSITIONS[src])
    if src != dst
]


def _review_at(review: Review, status: str) -> Review:
    """Force a review into ``status`` (bypasses the guards)."""
    review.status = status
    db.session.commit()
    return review


# ═════════════════════════════════════════════════════════════════════════════
# Creation
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateReview:
    def test_binds_active_version(self, review, taxonomy):
        assert review.cuj_database_version_id == taxonomy["version"]
        assert review.status == "not_started"
        assert review.is_published is False
        assert review.created_by == 1
        assert review.last_modified_by == 1

    def test_binding_survives_later_activation(self, review, taxonomy):
        newer = taxonomy_service.create_version("2024.2", activate=True)
        assert rl.get_review(review.id).cuj_database_version_id == taxonomy["version"]
        assert newer.id != taxonomy["version"]

    def test_without_any_version(self, car):
        review = rl.create_review({"car_id": car.id, "reviewer_id": 3})
        assert review.cuj_database_version_id is None

    def test_unknown_car(self):
        with pytest.raises(InvalidReferenceError):
            rl.create_review({"car_id": 404, "reviewer_id": 3})

    def test_reviewer_required(self, car):
        with pytest.raises(ValidationError):
            rl.create_review({"car_id": car.id})

    def test_dates(self, car):
        review = rl.create_review({
            "car_id": car.id, "reviewer_id": 3,
            "start_date": "2024-06-01T09:00:00", "end_date": datetime(2024, 6, 3, 17, 0),
        })
        assert rl.get_review(review.id).start_date == datetime(2024, 6, 1, 9, 0)

    def test_end_before_start(self, car):
        with pytest.raises(ValidationError):
            rl.create_review({
                "car_id": car.id, "reviewer_id": 3,
                "start_date": "2024-06-03T09:00:00", "end_date": "2024-06-01T09:00:00",
            })

    def test_bad_date(self, car):
        with pytest.raises(ValidationError):
            rl.create_review({"car_id": car.id, "reviewer_id": 3, "start_date": "next week"})

    def test_list_filters(self, car, review):
        other = rl.create_review({"car_id": car.id, "reviewer_id": 99})
        assert [r.id for r in rl.list_reviews(reviewer_id=99)] == [other.id]
        assert [r.id for r in rl.list_reviews(car_id=car.id)] == [review.id, other.id]


# ═════════════════════════════════════════════════════════════════════════════
# Status transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestStatusTransitions:
    @pytest.mark.parametrize("src,dst", VALID_TRANSITIONS)
    def test_valid(self, review, src, dst):
        _review_at(review, src)
        updated = rl.update_status(review.id, dst, modified_by=5)
        assert updated.status == dst
        assert updated.last_modified_by == 5

    @pytest.mark.parametrize("src,dst", INVALID_TRANSITIONS)
    def test_backwards_rejected(self, review, src, dst):
        _review_at(review, src)
        with pytest.raises(ValidationError):
            rl.update_status(review.id, dst, modified_by=5)
        assert rl.get_review(review.id).status == src

    def test_same_status_is_noop_but_stamped(self, review):
        _review_at(review, "in_progress")
        updated = rl.update_status(review.id, "in_progress", modified_by=8)
        assert updated.status == "in_progress"
        assert updated.last_modified_by == 8

    def test_unknown_status(self, review):
        with pytest.raises(ValidationError):
            rl.update_status(review.id, "archived", modified_by=5)

    def test_unknown_review(self):
        with pytest.raises(NotFoundError):
            rl.update_status(999, "completed", modified_by=5)
        with pytest.raises(NotFoundError):
            rl.set_published(999, True, modified_by=5)

    def test_completion_is_never_inferred(self, review, taxonomy):
        for task_id in taxonomy["tasks"]:
            evaluation_service.write_task_evaluation(review.id, task_id, {"doable": False})
        assert rl.get_review(review.id).status == "in_progress"


# ═════════════════════════════════════════════════════════════════════════════
# Publish gate
# ═════════════════════════════════════════════════════════════════════════════


class TestPublish:
    def test_publish_stamps_modifier(self, review):
        updated = rl.set_published(review.id, True, modified_by=2)
        assert updated.is_published is True
        assert updated.last_modified_by == 2
        assert updated.status == "not_started"

    def test_status_frozen_while_published(self, review):
        rl.set_published(review.id, True, modified_by=2)
        with pytest.raises(ValidationError):
            rl.update_status(review.id, "completed", modified_by=2)
        assert rl.get_review(review.id).status == "not_started"

    def test_unpublish_and_change_status_together(self, review):
        rl.set_published(review.id, True, modified_by=2)
        updated = rl.update_review(review.id, modified_by=2, status="completed", is_published=False)
        assert updated.status == "completed"
        assert updated.is_published is False

    def test_complete_and_publish_together(self, review):
        updated = rl.update_review(review.id, modified_by=2, status="completed", is_published=True)
        assert updated.status == "completed"
        assert updated.is_published is True


# ═════════════════════════════════════════════════════════════════════════════
# Delete / progress
# ═════════════════════════════════════════════════════════════════════════════


class TestDeleteReview:
    def test_cascades_to_evaluations(self, review, taxonomy):
        evaluation_service.write_task_evaluation(review.id, taxonomy["tasks"][0], {"doable": True})
        rl.delete_review(review.id)
        assert rl.get_review(review.id) is None
        assert TaskEvaluation.query.count() == 0

    def test_unknown(self):
        with pytest.raises(NotFoundError):
            rl.delete_review(31337)


class TestReviewProgress:
    def test_all_tasks_without_assignments(self, review, taxonomy):
        t1 = taxonomy["tasks"][0]
        evaluation_service.write_task_evaluation(review.id, t1, {"doable": False})
        progress = rl.review_progress(review.id)
        assert progress["total_tasks"] == 4
        assert progress["completed_tasks"] == 1
        assert progress["completion_ratio"] == 0.25
        assert progress["assigned_category_ids"] == []

    def test_scoped_to_assigned_categories(self, review, taxonomy, car):
        media = taxonomy["categories"]["media"]
        assignment_service.assign(review.reviewer_id, car.id, media)
        evaluation_service.write_task_evaluation(review.id, taxonomy["tasks"][3], {"doable": False})
        progress = rl.review_progress(review.id)
        assert progress["assigned_category_ids"] == [media]
        assert progress["total_tasks"] == 1
        assert progress["completion_ratio"] == 1.0

    def test_empty_taxonomy(self, car):
        review = rl.create_review({"car_id": car.id, "reviewer_id": 3})
        assert rl.review_progress(review.id)["completion_ratio"] == 0.0
