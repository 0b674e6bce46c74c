"""
Reviewer-entered evaluations.

TaskEvaluation is keyed by (review_id, task_id), CategoryEvaluation by
(review_id, category_id). Both are upserted field-by-field so reviewers can
save drafts: a row may exist with only a subset of fields populated.

Ratings are stored on the reviewer's 1–4 scale (see RATING_SCALE_LABELS);
the scoring engine normalises them to 0–100.
"""

from cuj_eval.models import db, iso, utcnow

RATING_MIN = 1
RATING_MAX = 4

RATING_SCALE_LABELS = {
    "usability": {1: "Very difficult", 2: "Somewhat difficult", 3: "Generally easy", 4: "Very easy"},
    "visuals": {1: "Very poor", 2: "Somewhat poor", 3: "Good", 4: "Excellent"},
    "responsiveness": {1: "Very poor", 2: "Somewhat poor", 3: "Good", 4: "Excellent"},
    "writing": {1: "Very poor", 2: "Somewhat poor", 3: "Reasonably clear", 4: "Excellent"},
    "emotional": {1: "Negative", 2: "Neutral", 3: "Positive", 4: "Strongly positive"},
}

TASK_EVALUATION_FIELDS = (
    "doable",
    "undoable_reason",
    "usability_score",
    "usability_feedback",
    "visuals_score",
    "visuals_feedback",
    "media",
)
TASK_RATING_FIELDS = ("usability_score", "visuals_score")

CATEGORY_EVALUATION_FIELDS = (
    "responsiveness_score",
    "responsiveness_feedback",
    "writing_score",
    "writing_feedback",
    "emotional_score",
    "emotional_feedback",
    "media",
)
CATEGORY_RATING_FIELDS = ("responsiveness_score", "writing_score", "emotional_score")


class TaskEvaluation(db.Model):
    """A reviewer's rating of one task within one review."""

    __tablename__ = "task_evaluations"

    id = db.Column(db.Integer, primary_key=True)
    review_id = db.Column(
        db.Integer, db.ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False,
    )
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id"), nullable=False)

    doable = db.Column(db.Boolean, nullable=True, comment="NULL while the draft is incomplete")
    undoable_reason = db.Column(db.Text, nullable=True)
    usability_score = db.Column(db.Integer, nullable=True, comment="1-4")
    usability_feedback = db.Column(db.Text, nullable=True)
    visuals_score = db.Column(db.Integer, nullable=True, comment="1-4")
    visuals_feedback = db.Column(db.Text, nullable=True)
    media = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_modified_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    review = db.relationship("Review", back_populates="task_evaluations")
    task = db.relationship("Task")

    __table_args__ = (
        db.UniqueConstraint("review_id", "task_id", name="uq_task_evaluation_review_task"),
    )

    @property
    def is_complete(self) -> bool:
        """Doable is set and, for doable tasks, both ratings are present."""
        if self.doable is None:
            return False
        if self.doable:
            return self.usability_score is not None and self.visuals_score is not None
        return True

    def to_dict(self, include_task: bool = False) -> dict:
        d = {
            "id": self.id,
            "review_id": self.review_id,
            "task_id": self.task_id,
            "doable": self.doable,
            "undoable_reason": self.undoable_reason,
            "usability_score": self.usability_score,
            "usability_feedback": self.usability_feedback,
            "visuals_score": self.visuals_score,
            "visuals_feedback": self.visuals_feedback,
            "media": list(self.media or []),
            "is_complete": self.is_complete,
            "created_at": iso(self.created_at),
            "last_modified_at": iso(self.last_modified_at),
        }
        if include_task and self.task is not None:
            d["task"] = self.task.to_dict(include_cuj=True)
        return d

    def __repr__(self) -> str:
        return f"<TaskEvaluation review={self.review_id} task={self.task_id}>"


class CategoryEvaluation(db.Model):
    """A reviewer's category-wide ratings (responsiveness, writing, emotional)."""

    __tablename__ = "category_evaluations"

    id = db.Column(db.Integer, primary_key=True)
    review_id = db.Column(
        db.Integer, db.ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False,
    )
    category_id = db.Column(db.Integer, db.ForeignKey("cuj_categories.id"), nullable=False)

    responsiveness_score = db.Column(db.Integer, nullable=True, comment="1-4")
    responsiveness_feedback = db.Column(db.Text, nullable=True)
    writing_score = db.Column(db.Integer, nullable=True, comment="1-4")
    writing_feedback = db.Column(db.Text, nullable=True)
    emotional_score = db.Column(db.Integer, nullable=True, comment="1-4")
    emotional_feedback = db.Column(db.Text, nullable=True)
    media = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_modified_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    review = db.relationship("Review", back_populates="category_evaluations")
    category = db.relationship("CujCategory")

    __table_args__ = (
        db.UniqueConstraint("review_id", "category_id", name="uq_category_evaluation_review_category"),
    )

    def to_dict(self, include_category: bool = False) -> dict:
        d = {
            "id": self.id,
            "review_id": self.review_id,
            "category_id": self.category_id,
            "responsiveness_score": self.responsiveness_score,
            "responsiveness_feedback": self.responsiveness_feedback,
            "writing_score": self.writing_score,
            "writing_feedback": self.writing_feedback,
            "emotional_score": self.emotional_score,
            "emotional_feedback": self.emotional_feedback,
            "media": list(self.media or []),
            "created_at": iso(self.created_at),
            "last_modified_at": iso(self.last_modified_at),
        }
        if include_category and self.category is not None:
            d["category"] = self.category.to_dict()
        return d

    def __repr__(self) -> str:
        return f"<CategoryEvaluation review={self.review_id} category={self.category_id}>"
