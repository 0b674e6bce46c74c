"""Tests for reviewer assignments — the (car, category) exclusivity lock."""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from cuj_eval.core.exceptions import ConflictError, InvalidReferenceError, NotFoundError
from cuj_eval.models import db
from cuj_eval.models.review import ReviewerAssignment
from cuj_eval.services import assignment_service as asg
from cuj_eval.services import car_service, taxonomy_service

REVIEWER_X = 11
REVIEWER_Y = 12


def _make_category(name: str) -> int:
    return taxonomy_service.create_category({"name": name}).id


class TestAssign:
    def test_same_pair_conflicts_for_any_reviewer(self, car):
        nav = _make_category("Navigation")
        media = _make_category("Media")

        asg.assign(REVIEWER_X, car.id, nav)
        with pytest.raises(ConflictError):
            asg.assign(REVIEWER_Y, car.id, nav)
        with pytest.raises(ConflictError):
            asg.assign(REVIEWER_X, car.id, nav)

        other = asg.assign(REVIEWER_X, car.id, media)
        assert other.category_id == media
        assert ReviewerAssignment.query.count() == 2

    def test_same_category_on_another_car(self, car):
        nav = _make_category("Navigation")
        second_car = car_service.create_car({
            "make": "Volvo", "model": "EX30", "year": 2025, "android_version": "14",
            "build_fingerprint": "volvo/ex30/14", "location": "Lab B",
        })
        asg.assign(REVIEWER_X, car.id, nav)
        assert asg.assign(REVIEWER_Y, second_car.id, nav).reviewer_id == REVIEWER_Y

    def test_unknown_car(self):
        nav = _make_category("Navigation")
        with pytest.raises(InvalidReferenceError):
            asg.assign(REVIEWER_X, 999, nav)

    def test_unknown_category(self, car):
        with pytest.raises(InvalidReferenceError):
            asg.assign(REVIEWER_X, car.id, 999)

    def test_database_constraint_backs_the_check(self, car):
        nav = _make_category("Navigation")
        asg.assign(REVIEWER_X, car.id, nav)
        db.session.add(ReviewerAssignment(reviewer_id=REVIEWER_Y, car_id=car.id, category_id=nav))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_lost_insert_race_surfaces_as_conflict(self, car):
        nav = _make_category("Navigation")
        asg.assign(REVIEWER_X, car.id, nav)
        # Simulate another process inserting between the check and the commit
        with patch.object(asg, "get_assignment_for", return_value=None):
            with pytest.raises(ConflictError):
                asg.assign(REVIEWER_Y, car.id, nav)
        assert asg.get_assignment_for(car.id, nav).reviewer_id == REVIEWER_X


class TestLookups:
    def test_by_reviewer_car_and_category(self, car):
        nav = _make_category("Navigation")
        media = _make_category("Media")
        a1 = asg.assign(REVIEWER_X, car.id, nav)
        a2 = asg.assign(REVIEWER_Y, car.id, media)

        assert [a.id for a in asg.list_for_reviewer(REVIEWER_X)] == [a1.id]
        assert [a.id for a in asg.list_for_car(car.id)] == [a1.id, a2.id]
        assert [a.id for a in asg.list_for_category(media)] == [a2.id]
        assert asg.get_assignment_for(car.id, nav).reviewer_id == REVIEWER_X
        assert asg.assigned_category_ids(REVIEWER_X, car.id) == [nav]


class TestUnassign:
    def test_frees_the_pair(self, car):
        nav = _make_category("Navigation")
        assignment = asg.assign(REVIEWER_X, car.id, nav)
        asg.unassign(assignment.id)

        assert asg.get_assignment(assignment.id) is None
        assert asg.assign(REVIEWER_Y, car.id, nav).reviewer_id == REVIEWER_Y

    def test_unknown_id(self):
        with pytest.raises(NotFoundError):
            asg.unassign(4242)

    def test_row_gone_once_lock_is_taken(self, car):
        nav = _make_category("Navigation")
        assignment = asg.assign(REVIEWER_X, car.id, nav)
        # Another unassign removed the row between the lookup and the lock
        with patch.object(asg, "get_assignment_for", return_value=None):
            with pytest.raises(NotFoundError):
                asg.unassign(assignment.id)
        assert asg.get_assignment(assignment.id) is not None

    def test_pair_reassigned_once_lock_is_taken(self, car):
        nav = _make_category("Navigation")
        first = asg.assign(REVIEWER_X, car.id, nav)
        replacement = ReviewerAssignment(id=first.id + 100, reviewer_id=REVIEWER_Y,
                                         car_id=car.id, category_id=nav)
        with patch.object(asg, "get_assignment_for", return_value=replacement):
            with pytest.raises(NotFoundError):
                asg.unassign(first.id)
        assert asg.get_assignment(first.id).reviewer_id == REVIEWER_X
