"""
Cars under evaluation, reviewer assignments and reviews.

A Review owns its task evaluations, category evaluations and (at most one)
Report; deleting a Review cascades to all of them.
"""

from cuj_eval.models import db, iso, utcnow

REVIEW_STATUSES = ("not_started", "in_progress", "completed")

# Forward-only status graph. Re-setting the current status is allowed and
# treated as a no-op transition.
REVIEW_STATUS_TRANSITIONS = {
    "not_started": {"not_started", "in_progress", "completed"},
    "in_progress": {"in_progress", "completed"},
    "completed": {"completed"},
}


class Car(db.Model):
    """A vehicle build whose infotainment system is being evaluated."""

    __tablename__ = "cars"

    id = db.Column(db.Integer, primary_key=True)
    make = db.Column(db.String(100), nullable=False)
    model = db.Column(db.String(100), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    android_version = db.Column(db.String(50), nullable=False)
    build_fingerprint = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(200), nullable=False)
    image_url = db.Column(db.String(500), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "make": self.make,
            "model": self.model,
            "year": self.year,
            "android_version": self.android_version,
            "build_fingerprint": self.build_fingerprint,
            "location": self.location,
            "image_url": self.image_url,
        }

    def __repr__(self) -> str:
        return f"<Car #{self.id} {self.year} {self.make} {self.model}>"


class ReviewerAssignment(db.Model):
    """
    Car + category exclusivity lock: exactly one reviewer per
    (car_id, category_id), independent of how many reviewers exist.
    """

    __tablename__ = "reviewer_assignments"

    id = db.Column(db.Integer, primary_key=True)
    reviewer_id = db.Column(db.Integer, nullable=False, index=True,
                            comment="User id from the identity service")
    car_id = db.Column(
        db.Integer, db.ForeignKey("cars.id", ondelete="CASCADE"), nullable=False,
    )
    category_id = db.Column(
        db.Integer, db.ForeignKey("cuj_categories.id", ondelete="CASCADE"), nullable=False,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("car_id", "category_id", name="uq_assignment_car_category"),
        db.Index("ix_reviewer_assignments_category", "category_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reviewer_id": self.reviewer_id,
            "car_id": self.car_id,
            "category_id": self.category_id,
            "created_at": iso(self.created_at),
        }

    def __repr__(self) -> str:
        return (f"<ReviewerAssignment #{self.id} reviewer={self.reviewer_id} "
                f"car={self.car_id} category={self.category_id}>")


class Review(db.Model):
    """
    One reviewer's evaluation of one car.

    Business rules:
    - status moves forward only: not_started → in_progress → completed.
    - is_published is independent of status.
    - cuj_database_version_id is set at creation and never changed.
    - Every mutation stamps last_modified_by / last_modified_at.
    """

    __tablename__ = "reviews"

    id = db.Column(db.Integer, primary_key=True)
    car_id = db.Column(db.Integer, db.ForeignKey("cars.id"), nullable=False, index=True)
    reviewer_id = db.Column(db.Integer, nullable=False, index=True,
                            comment="User id from the identity service")
    status = db.Column(db.String(20), nullable=False, default="not_started",
                       comment="not_started | in_progress | completed")
    is_published = db.Column(db.Boolean, nullable=False, default=False)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cuj_database_version_id = db.Column(
        db.Integer, db.ForeignKey("cuj_database_versions.id"), nullable=True,
    )

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_modified_by = db.Column(db.Integer, nullable=True)
    last_modified_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    car = db.relationship("Car")
    cuj_database_version = db.relationship("CujDatabaseVersion")
    task_evaluations = db.relationship(
        "TaskEvaluation", back_populates="review",
        lazy="dynamic", cascade="all, delete-orphan",
    )
    category_evaluations = db.relationship(
        "CategoryEvaluation", back_populates="review",
        lazy="dynamic", cascade="all, delete-orphan",
    )
    report = db.relationship(
        "Report", back_populates="review", uselist=False, cascade="all, delete-orphan",
    )

    def to_dict(self, include_car: bool = False) -> dict:
        d = {
            "id": self.id,
            "car_id": self.car_id,
            "reviewer_id": self.reviewer_id,
            "status": self.status,
            "is_published": self.is_published,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "cuj_database_version_id": self.cuj_database_version_id,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "last_modified_by": self.last_modified_by,
            "last_modified_at": iso(self.last_modified_at),
        }
        if include_car and self.car is not None:
            d["car"] = self.car.to_dict()
        return d

    def __repr__(self) -> str:
        return f"<Review #{self.id} car={self.car_id} {self.status}>"
