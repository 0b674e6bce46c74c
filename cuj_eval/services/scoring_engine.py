"""
Scoring Engine — pure rollup arithmetic (task → category → overall).

No I/O, no shared state: weights are passed in explicitly as value objects,
so callers (and tests) can score against any weight set without touching the
stored ScoringConfig.

Missing-value rule:
    Any rating that is None, missing, non-numeric or not finite contributes
    0 to its component. This is the only place that rule lives; callers pass
    raw values through untouched. The engine therefore never raises for
    well-typed input.

Weight sums:
    Weight groups are NOT normalised. A task weight set summing to 120 can
    produce task scores above 100. Scores are never clamped.

Scales:
    Reviewers enter 1–4 ratings. ``normalize_rating`` maps them onto the
    0–100 scale every scoring function works in (rating / 4 * 100).
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

RATING_SCALE_MAX = 4


# ═════════════════════════════════════════════════════════════════════════════
# Weight value objects
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TaskWeights:
    """Task-level weights, percentages of a 0–100 task score."""
    doable: float = 43.75
    usability: float = 18.75
    interaction: float = 18.75
    visuals: float = 18.75


@dataclass(frozen=True)
class CategoryWeights:
    """Category-level weights, percentages of a 0–100 category score."""
    task_average: float = 60.0
    responsiveness: float = 15.0
    writing: float = 15.0
    emotional: float = 10.0


@dataclass(frozen=True)
class ScoringWeights:
    task: TaskWeights = field(default_factory=TaskWeights)
    category: CategoryWeights = field(default_factory=CategoryWeights)

    @classmethod
    def from_dicts(cls, task: Mapping[str, float], category: Mapping[str, float]) -> "ScoringWeights":
        return cls(task=TaskWeights(**task), category=CategoryWeights(**category))


# ═════════════════════════════════════════════════════════════════════════════
# Rating inputs
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TaskRatings:
    """Normalised (0–100) inputs for ``task_score``."""
    doable: bool | None = None
    usability: float | None = None
    interaction: float | None = None
    visuals: float | None = None

    @classmethod
    def from_evaluation(cls, evaluation: Any) -> "TaskRatings":
        """Build from a stored TaskEvaluation (1–4 ratings).

        Reviewers rate usability and interaction with a single
        "usability & interaction" score, so both components read it.
        """
        if evaluation is None:
            return cls()
        usability = normalize_rating(evaluation.usability_score)
        return cls(
            doable=evaluation.doable,
            usability=usability,
            interaction=usability,
            visuals=normalize_rating(evaluation.visuals_score),
        )


@dataclass(frozen=True)
class CategoryRatings:
    """Normalised (0–100) category-level ratings."""
    responsiveness: float | None = None
    writing: float | None = None
    emotional: float | None = None

    @classmethod
    def from_evaluation(cls, evaluation: Any) -> "CategoryRatings":
        if evaluation is None:
            return cls()
        return cls(
            responsiveness=normalize_rating(evaluation.responsiveness_score),
            writing=normalize_rating(evaluation.writing_score),
            emotional=normalize_rating(evaluation.emotional_score),
        )


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════

def _number(value: Any) -> float:
    """Coerce a rating or weight to float; anything unusable becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _read(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _weighted(rating: Any, weight: Any) -> float:
    return _number(rating) * _number(weight) / 100


def normalize_rating(rating: Any, scale_max: int = RATING_SCALE_MAX) -> float | None:
    """Map a 1..scale_max reviewer rating onto 0–100. None stays None."""
    if rating is None or isinstance(rating, bool):
        return None
    return _number(rating) / scale_max * 100


# ═════════════════════════════════════════════════════════════════════════════
# Rollup
# ═════════════════════════════════════════════════════════════════════════════

def task_score(evaluation: Any, weights: TaskWeights) -> float:
    """Score one task on 0–100 (given weights summing to 100).

    ``evaluation`` is a TaskRatings, a mapping or any object exposing
    ``doable``, ``usability``, ``interaction`` and ``visuals`` (0–100).

    - doable true  → the full doable weight; false or unset → 0.
    - each rating contributes rating * weight / 100; missing → 0.
    """
    doable = _read(evaluation, "doable") is True
    score = _number(_read(weights, "doable")) if doable else 0.0
    for component in ("usability", "interaction", "visuals"):
        score += _weighted(_read(evaluation, component), _read(weights, component))
    return score


def category_score(task_scores: list[float]) -> float:
    """Unweighted mean of task scores; 0 for an empty list."""
    values = [_number(s) for s in task_scores or []]
    if not values:
        return 0.0
    return sum(values) / len(values)


def category_rollup_score(
    task_average: float,
    ratings: Any,
    weights: CategoryWeights,
) -> float:
    """Combine a category's task average with its category-level ratings.

    ``ratings`` is a CategoryRatings, a mapping or None (all components 0).
    """
    score = _weighted(task_average, _read(weights, "task_average"))
    for component in ("responsiveness", "writing", "emotional"):
        score += _weighted(_read(ratings, component), _read(weights, component))
    return score


def overall_score(
    category_scores: Mapping[int, float],
    weights: Mapping[int, float] | None = None,
) -> float:
    """Roll category scores (category_id → score) into one overall score.

    Without ``weights`` every category counts equally (arithmetic mean).
    With weights (category_id → percentage) the result is
    Σ score * weight / 100; a category missing from ``weights`` contributes
    0. Weights are assumed caller-normalised and are not rescaled.
    Empty input → 0.
    """
    if not category_scores:
        return 0.0
    if weights is None:
        return category_score(list(category_scores.values()))
    return sum(
        _weighted(score, weights.get(category_id))
        for category_id, score in category_scores.items()
    )
