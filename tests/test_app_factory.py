"""Tests for the app factory, configuration, structured logging and key locks."""

import json
import logging
import threading
import time

import pytest

from cuj_eval.config import ProductionConfig, config
from cuj_eval.middleware.logging_config import JSONFormatter, ReadableFormatter
from cuj_eval.services.helpers import locking
from cuj_eval.services.helpers.locking import key_lock


class TestConfig:
    def test_testing_app(self, app):
        assert app.config["TESTING"] is True
        assert app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite")
        assert app.config["REPORT_LOW_SCORE_THRESHOLD"] == 50
        assert app.config["MEDIA_MAX_VIDEO_SECONDS"] == 120

    def test_config_mapping(self):
        assert set(config) == {"development", "testing", "production", "default"}

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError):
            ProductionConfig()

    def test_production_does_not_need_secret_key(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "postgresql://db/cuj")
        monkeypatch.delenv("SECRET_KEY", raising=False)
        assert ProductionConfig().SQLALCHEMY_DATABASE_URI == "postgresql://db/cuj"
        assert not hasattr(ProductionConfig, "SECRET_KEY")

    def test_tables_created(self, app):
        from cuj_eval.models import db
        tables = set(db.metadata.tables)
        assert {"cuj_database_versions", "cuj_categories", "cujs", "tasks", "cars",
                "reviewer_assignments", "reviews", "task_evaluations",
                "category_evaluations", "scoring_config", "reports"} <= tables


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("cuj_eval.test", logging.INFO, __file__, 10,
                               "Report %s", ("created",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogging:
    def test_json_formatter_carries_context(self):
        line = JSONFormatter().format(_record(review_id=4, event_type="report_generated"))
        payload = json.loads(line)
        assert payload["message"] == "Report created"
        assert payload["review_id"] == 4
        assert payload["event_type"] == "report_generated"
        assert "task_id" not in payload

    def test_readable_formatter_appends_context(self):
        line = ReadableFormatter().format(_record(car_id=2))
        assert "Report created" in line
        assert "[car_id=2]" in line


class TestKeyLock:
    def test_reentrant(self):
        with key_lock(("review", 1)):
            with key_lock(("review", 1)):
                pass

    def test_serializes_same_key(self):
        events = []
        inside = threading.Event()
        release = threading.Event()

        def _holder():
            with key_lock(("review", 9)):
                inside.set()
                release.wait(timeout=5)
                events.append("holder")

        def _waiter():
            inside.wait(timeout=5)
            with key_lock(("review", 9)):
                events.append("waiter")

        holder = threading.Thread(target=_holder)
        waiter = threading.Thread(target=_waiter)
        holder.start()
        waiter.start()
        inside.wait(timeout=5)
        release.set()
        holder.join()
        waiter.join()
        assert events == ["holder", "waiter"]

    def test_other_keys_do_not_block(self):
        acquired = threading.Event()

        def _other():
            with key_lock(("review", 2)):
                acquired.set()

        with key_lock(("review", 1)):
            thread = threading.Thread(target=_other)
            thread.start()
            assert acquired.wait(timeout=5)
            thread.join()

    def test_registry_holds_only_keys_in_use(self):
        for review_id in range(200):
            with key_lock(("review", review_id)):
                assert locking.registered_keys() == [("review", review_id)]
        assert locking.registered_keys() == []

    def test_nested_entry_released_after_outer_exit(self):
        with key_lock(("review", 1)):
            with key_lock(("review", 1)):
                pass
            assert ("review", 1) in locking.registered_keys()
        assert locking.registered_keys() == []

    def test_released_when_block_raises(self):
        with pytest.raises(ValueError):
            with key_lock(("review", 3)):
                raise ValueError("boom")
        assert locking.registered_keys() == []

    def test_waiter_keeps_entry_alive(self):
        inside = threading.Event()
        release = threading.Event()
        seen = []

        def _holder():
            with key_lock(("review", 5)):
                inside.set()
                release.wait(timeout=5)
                seen.append(locking._locks[("review", 5)][0])

        def _waiter():
            with key_lock(("review", 5)):
                seen.append(locking._locks[("review", 5)][0])

        holder = threading.Thread(target=_holder)
        holder.start()
        inside.wait(timeout=5)
        waiter = threading.Thread(target=_waiter)
        waiter.start()
        # Wait until the waiter has registered behind the holder
        deadline = time.monotonic() + 5
        while locking._locks[("review", 5)][1] < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        release.set()
        holder.join()
        waiter.join()
        assert len(seen) == 2
        assert seen[0] is seen[1]
        assert locking.registered_keys() == []
