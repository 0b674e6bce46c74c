"""
Shared pytest fixtures for the CUJ evaluation engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - car: Pre-created Car entity
    - taxonomy: Active version with two categories, three CUJs, four tasks
    - review: not_started Review on ``car`` bound to the taxonomy version
"""

import pytest

from cuj_eval import create_app
from cuj_eval.models import db as _db
from cuj_eval.services import car_service, review_lifecycle, taxonomy_service
from cuj_eval.services.helpers.locking import reset_locks

REVIEWER_ID = 7
ADMIN_ID = 1


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Tables are recreated per test and ids are reused; drop key locks too
        reset_locks()
        yield
        reset_locks()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


# ── Convenience fixtures ─────────────────────────────────────────────────


def make_car(**overrides):
    """Register a car with sensible defaults."""
    data = {
        "make": "Polestar",
        "model": "2",
        "year": 2024,
        "android_version": "14",
        "build_fingerprint": "polestar/ps2/14:UQ1A.240105.002",
        "location": "Gothenburg lab",
    }
    data.update(overrides)
    return car_service.create_car(data)


@pytest.fixture()
def car():
    return make_car()


@pytest.fixture()
def taxonomy():
    """Active version with Navigation (2 CUJs, 3 tasks) and Media (1 CUJ, 1 task).

    Returns a dict of ids: version, categories, cujs, tasks.
    """
    version = taxonomy_service.create_version("2024.1", created_by=ADMIN_ID)
    nav = taxonomy_service.create_category(
        {"name": "Navigation", "icon": "map", "version_id": version.id},
    )
    media = taxonomy_service.create_category({"name": "Media", "version_id": version.id})

    route = taxonomy_service.create_cuj(
        {"category_id": nav.id, "name": "Route to a destination", "version_id": version.id},
    )
    poi = taxonomy_service.create_cuj(
        {"category_id": nav.id, "name": "Find a charger", "version_id": version.id},
    )
    play = taxonomy_service.create_cuj(
        {"category_id": media.id, "name": "Play music", "version_id": version.id},
    )

    def _task(cuj, name):
        return taxonomy_service.create_task({
            "cuj_id": cuj.id,
            "name": name,
            "expected_outcome": f"{name} succeeds",
            "version_id": version.id,
        })

    tasks = [
        _task(route, "Enter address by voice"),
        _task(route, "Start guidance"),
        _task(poi, "Search nearby chargers"),
        _task(play, "Resume last playlist"),
    ]
    return {
        "version": version.id,
        "categories": {"navigation": nav.id, "media": media.id},
        "cujs": {"route": route.id, "poi": poi.id, "play": play.id},
        "tasks": [t.id for t in tasks],
    }


@pytest.fixture()
def review(car, taxonomy):
    return review_lifecycle.create_review(
        {"car_id": car.id, "reviewer_id": REVIEWER_ID}, created_by=ADMIN_ID,
    )
