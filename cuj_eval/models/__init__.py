"""
Database models for the CUJ evaluation engine.

All models share the single Flask-SQLAlchemy instance defined here; model
modules import ``db`` from this package and the app factory imports every
module so ``db.create_all()`` sees the full schema.
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(value):
    """Serialize a datetime column value (or None) for to_dict()."""
    return value.isoformat() if value else None
