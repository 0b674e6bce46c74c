"""
CUJ taxonomy models — categories, critical user journeys, tasks and the
taxonomy version markers reviews bind to.

Hierarchy:
    CujCategory 1──N Cuj 1──N Task

Versioning:
    CujDatabaseVersion rows are snapshot markers. Exactly one row is active
    once any version exists. Taxonomy rows carry an optional version_id: a
    review bound to version V sees rows stamped with V plus unversioned rows.
"""

from cuj_eval.models import db, iso, utcnow

VALID_SOURCE_TYPES = frozenset({"manual", "spreadsheet"})


class CujDatabaseVersion(db.Model):
    """Activatable taxonomy snapshot marker."""

    __tablename__ = "cuj_database_versions"

    id = db.Column(db.Integer, primary_key=True)
    label = db.Column(db.String(100), nullable=False)
    source_type = db.Column(db.String(20), nullable=False, default="manual")
    source_file_name = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_by = db.Column(db.Integer, nullable=True, comment="User id from the identity service")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "source_type": self.source_type,
            "source_file_name": self.source_file_name,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
        }

    def __repr__(self) -> str:
        flag = " active" if self.is_active else ""
        return f"<CujDatabaseVersion #{self.id} {self.label}{flag}>"


class CujCategory(db.Model):
    """Top-level grouping of CUJs (e.g. Navigation, Media, Phone)."""

    __tablename__ = "cuj_categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    icon = db.Column(db.String(50), nullable=False, default="category")
    version_id = db.Column(
        db.Integer,
        db.ForeignKey("cuj_database_versions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    cujs = db.relationship(
        "Cuj", back_populates="category", lazy="dynamic", order_by="Cuj.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "version_id": self.version_id,
        }

    def __repr__(self) -> str:
        return f"<CujCategory #{self.id} {self.name}>"


class Cuj(db.Model):
    """Critical User Journey: a named user goal composed of tasks."""

    __tablename__ = "cujs"

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("cuj_categories.id"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    version_id = db.Column(
        db.Integer,
        db.ForeignKey("cuj_database_versions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    category = db.relationship("CujCategory", back_populates="cujs")
    tasks = db.relationship(
        "Task", back_populates="cuj", lazy="dynamic", order_by="Task.id",
    )

    def to_dict(self, include_category: bool = False) -> dict:
        d = {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "description": self.description,
            "version_id": self.version_id,
        }
        if include_category and self.category is not None:
            d["category"] = self.category.to_dict()
        return d

    def __repr__(self) -> str:
        return f"<Cuj #{self.id} {self.name}>"


class Task(db.Model):
    """A single step a reviewer attempts on the car (rated per review)."""

    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    cuj_id = db.Column(db.Integer, db.ForeignKey("cujs.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    prerequisites = db.Column(db.Text, nullable=True)
    expected_outcome = db.Column(db.Text, nullable=False)
    version_id = db.Column(
        db.Integer,
        db.ForeignKey("cuj_database_versions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    cuj = db.relationship("Cuj", back_populates="tasks")

    @property
    def category_id(self) -> int | None:
        return self.cuj.category_id if self.cuj else None

    def to_dict(self, include_cuj: bool = False) -> dict:
        d = {
            "id": self.id,
            "cuj_id": self.cuj_id,
            "name": self.name,
            "prerequisites": self.prerequisites,
            "expected_outcome": self.expected_outcome,
            "version_id": self.version_id,
        }
        if include_cuj and self.cuj is not None:
            d["cuj"] = self.cuj.to_dict(include_category=True)
        return d

    def __repr__(self) -> str:
        return f"<Task #{self.id} {self.name[:40]}>"
