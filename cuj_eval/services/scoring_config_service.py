"""
Scoring Config Service — the single process-wide weight record.

The row is created with defaults on first read. The task and category weight
groups are updated independently; each update merges only the supplied keys.
Callers that score should take ``get_weights()`` once and pass the value
object into the scoring engine.
"""

from __future__ import annotations

import logging
import math

from cuj_eval.core.exceptions import ValidationError
from cuj_eval.models import db, utcnow
from cuj_eval.models.scoring import SCORING_CONFIG_ID, ScoringConfig
from cuj_eval.services.helpers.locking import key_lock
from cuj_eval.services.scoring_engine import ScoringWeights

logger = logging.getLogger(__name__)

_CONFIG_KEY = ("scoring_config", SCORING_CONFIG_ID)

# Public key → column
TASK_WEIGHT_COLUMNS = {
    "doable": "task_doable_weight",
    "usability": "task_usability_weight",
    "interaction": "task_interaction_weight",
    "visuals": "task_visuals_weight",
}
CATEGORY_WEIGHT_COLUMNS = {
    "task_average": "category_task_average_weight",
    "responsiveness": "category_responsiveness_weight",
    "writing": "category_writing_weight",
    "emotional": "category_emotional_weight",
}


def _load_or_create() -> ScoringConfig:
    config = db.session.get(ScoringConfig, SCORING_CONFIG_ID)
    if config is None:
        config = ScoringConfig(id=SCORING_CONFIG_ID)
        db.session.add(config)
        db.session.commit()
        logger.info("Initialised scoring config with defaults")
    return config


def get_config() -> ScoringConfig:
    """Return the scoring config row, creating it with defaults if absent."""
    with key_lock(_CONFIG_KEY):
        return _load_or_create()


def get_weights() -> ScoringWeights:
    """Snapshot the stored weights as an immutable value object."""
    config = get_config()
    return ScoringWeights.from_dicts(config.task_weights(), config.category_weights())


def _validated_weights(data: dict, columns: dict[str, str]) -> dict[str, float]:
    """Pick the known weight keys from ``data`` and validate each value.

    Unknown keys are ignored. Every rejected value is reported at once.
    """
    accepted: dict[str, float] = {}
    errors: dict[str, str] = {}
    for key, column in columns.items():
        if key not in data:
            continue
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors[key] = "must be a number"
            continue
        if not math.isfinite(value):
            errors[key] = "must be finite"
            continue
        if value < 0:
            errors[key] = "must not be negative"
            continue
        accepted[column] = float(value)
    if errors:
        raise ValidationError("Invalid scoring weights.", details=errors)
    return accepted


def _apply(data: dict, columns: dict[str, str], group: str, updated_by: int | None) -> ScoringConfig:
    updates = _validated_weights(data or {}, columns)
    with key_lock(_CONFIG_KEY):
        config = _load_or_create()
        for column, value in updates.items():
            setattr(config, column, value)
        config.updated_at = utcnow()
        if updated_by is not None:
            config.updated_by = updated_by
        db.session.commit()

    logger.info(
        "Updated %s scoring weights: %s", group,
        ", ".join(sorted(updates)) or "no changes",
        extra={"user_id": updated_by, "event_type": "scoring_config_updated"},
    )
    return config


def update_task_weights(data: dict, updated_by: int | None = None) -> ScoringConfig:
    """Merge task-level weights (doable, usability, interaction, visuals).

    Raises:
        ValidationError: a supplied weight is negative or not a number.
    """
    return _apply(data, TASK_WEIGHT_COLUMNS, "task", updated_by)


def update_category_weights(data: dict, updated_by: int | None = None) -> ScoringConfig:
    """Merge category-level weights (task_average, responsiveness, writing, emotional).

    Raises:
        ValidationError: a supplied weight is negative or not a number.
    """
    return _apply(data, CATEGORY_WEIGHT_COLUMNS, "category", updated_by)
