"""
CUJ Evaluation & Scoring Engine
Flask Application Factory.

Usage:
    from cuj_eval import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from cuj_eval.config import config
from cuj_eval.middleware.logging_config import configure_logging
from cuj_eval.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)

    # ── Import all models so create_all() sees the full schema ───────────
    from cuj_eval.models import taxonomy as _taxonomy_models      # noqa: F401
    from cuj_eval.models import review as _review_models          # noqa: F401
    from cuj_eval.models import evaluation as _evaluation_models  # noqa: F401
    from cuj_eval.models import scoring as _scoring_models        # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()
        app.logger.debug("db.create_all() completed")

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("generate-report")
    @click.argument("review_id", type=int)
    def generate_report_cmd(review_id):
        """Regenerate the score report for REVIEW_ID."""
        from cuj_eval.services.report_generator import generate_report
        report = generate_report(review_id)
        logger.info("Report regenerated for review %s: overall=%.2f",
                    review_id, report["overall_score"])

    return app
