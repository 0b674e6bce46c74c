"""
Scoring configuration and report snapshots.

ScoringConfig is a single-row table (id=1) holding the weight groups for the
task-level and category-level rollups. Weights are percentages; no rule
forces a group to sum to 100.

Report is a derived, recomputable projection of a Review — one row per
review, overwritten on every regeneration.
"""

from cuj_eval.models import db, iso, utcnow

SCORING_CONFIG_ID = 1

DEFAULT_TASK_WEIGHTS = {
    "doable": 43.75,
    "usability": 18.75,
    "interaction": 18.75,
    "visuals": 18.75,
}

DEFAULT_CATEGORY_WEIGHTS = {
    "task_average": 60.0,
    "responsiveness": 15.0,
    "writing": 15.0,
    "emotional": 10.0,
}


class ScoringConfig(db.Model):
    """Process-wide rollup weights."""

    __tablename__ = "scoring_config"

    id = db.Column(db.Integer, primary_key=True)

    # Task level weights
    task_doable_weight = db.Column(db.Float, nullable=False, default=DEFAULT_TASK_WEIGHTS["doable"])
    task_usability_weight = db.Column(db.Float, nullable=False, default=DEFAULT_TASK_WEIGHTS["usability"])
    task_interaction_weight = db.Column(db.Float, nullable=False, default=DEFAULT_TASK_WEIGHTS["interaction"])
    task_visuals_weight = db.Column(db.Float, nullable=False, default=DEFAULT_TASK_WEIGHTS["visuals"])

    # Category level weights
    category_task_average_weight = db.Column(
        db.Float, nullable=False, default=DEFAULT_CATEGORY_WEIGHTS["task_average"])
    category_responsiveness_weight = db.Column(
        db.Float, nullable=False, default=DEFAULT_CATEGORY_WEIGHTS["responsiveness"])
    category_writing_weight = db.Column(
        db.Float, nullable=False, default=DEFAULT_CATEGORY_WEIGHTS["writing"])
    category_emotional_weight = db.Column(
        db.Float, nullable=False, default=DEFAULT_CATEGORY_WEIGHTS["emotional"])

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_by = db.Column(db.Integer, nullable=True)

    def task_weights(self) -> dict:
        return {
            "doable": self.task_doable_weight,
            "usability": self.task_usability_weight,
            "interaction": self.task_interaction_weight,
            "visuals": self.task_visuals_weight,
        }

    def category_weights(self) -> dict:
        return {
            "task_average": self.category_task_average_weight,
            "responsiveness": self.category_responsiveness_weight,
            "writing": self.category_writing_weight,
            "emotional": self.category_emotional_weight,
        }

    def to_dict(self) -> dict:
        return {
            "task": self.task_weights(),
            "category": self.category_weights(),
            "updated_at": iso(self.updated_at),
            "updated_by": self.updated_by,
        }


BENCHMARK_COMPARISONS = ("better", "worse")
REPORT_NOTE_FIELDS = ("top_likes", "top_hates", "benchmark_rank", "benchmark_comparison")


class Report(db.Model):
    """Cached score snapshot for a review. Never an independent source of truth."""

    __tablename__ = "reports"

    id = db.Column(db.Integer, primary_key=True)
    review_id = db.Column(
        db.Integer, db.ForeignKey("reviews.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    overall_score = db.Column(db.Float, nullable=False, default=0.0)
    category_scores = db.Column(db.JSON, nullable=False, default=list)
    task_scores = db.Column(db.JSON, nullable=False, default=list)
    top_issues = db.Column(db.JSON, nullable=False, default=list)
    summary = db.Column(db.Text, nullable=True)

    # Reviewer-written notes; kept across regeneration
    top_likes = db.Column(db.Text, nullable=True)
    top_hates = db.Column(db.Text, nullable=True)
    benchmark_rank = db.Column(db.Integer, nullable=True, comment="1 = best in benchmark set")
    benchmark_comparison = db.Column(db.String(20), nullable=True, comment="better | worse")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_modified_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    review = db.relationship("Review", back_populates="report")

    def content(self) -> dict:
        """Score payload without bookkeeping columns."""
        return {
            "overall_score": self.overall_score,
            "category_scores": self.category_scores or [],
            "task_scores": self.task_scores or [],
            "top_issues": self.top_issues or [],
            "summary": self.summary,
        }

    def notes(self) -> dict:
        return {name: getattr(self, name) for name in REPORT_NOTE_FIELDS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "review_id": self.review_id,
            **self.content(),
            **self.notes(),
            "created_at": iso(self.created_at),
            "last_modified_at": iso(self.last_modified_at),
        }

    def __repr__(self) -> str:
        return f"<Report review={self.review_id} overall={self.overall_score}>"
