"""
Taxonomy Service — categories, CUJs, tasks and taxonomy versions.

Rules:
  - A declared parent id that does not resolve raises InvalidReferenceError.
  - A category referenced by at least one CUJ is immutable.
  - Exactly one CujDatabaseVersion is active once any exists. Activation is a
    single UPDATE statement (is_active = id == target) executed under the
    version lock, so no reader observes zero or two active versions.
  - db.session.commit() happens only in service modules.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select, update

from cuj_eval.core.exceptions import InvalidReferenceError, NotFoundError, ValidationError
from cuj_eval.models import db
from cuj_eval.models.taxonomy import (
    VALID_SOURCE_TYPES,
    Cuj,
    CujCategory,
    CujDatabaseVersion,
    Task,
)
from cuj_eval.services.helpers.locking import key_lock

logger = logging.getLogger(__name__)

_ACTIVE_VERSION_KEY = ("cuj_database_version", "active")

SYNC_REQUIRED_COLUMNS = ("category", "cuj", "task", "expected_outcome")
SYNC_OPTIONAL_COLUMNS = ("category_description", "icon", "cuj_description", "prerequisites")


def _text(data: dict, field: str) -> str:
    value = data.get(field)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text.", details={field: "must be text"})
    return value.strip()


def _required_text(data: dict, field: str) -> str:
    value = _text(data, field)
    if not value:
        raise ValidationError(f"{field} is required.", details={field: "required"})
    return value


def _optional_text(data: dict, field: str) -> str | None:
    return _text(data, field) or None


def _check_version(resource: str, version_id) -> None:
    if version_id is not None and get_version(version_id) is None:
        raise InvalidReferenceError(resource, "version_id", version_id)


def _check_same_version(resource: str, version_id, parent) -> None:
    """A child row of a versioned parent must carry the parent's version."""
    if parent.version_id is not None and version_id != parent.version_id:
        raise ValidationError(
            f"{resource}.version_id must match its parent's version {parent.version_id}.",
            details={"version_id": version_id},
        )


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_category(category_id: int) -> CujCategory | None:
    return db.session.get(CujCategory, category_id)


def get_cuj(cuj_id: int) -> Cuj | None:
    return db.session.get(Cuj, cuj_id)


def get_task(task_id: int) -> Task | None:
    return db.session.get(Task, task_id)


def require_category(category_id: int) -> CujCategory:
    category = get_category(category_id)
    if category is None:
        raise NotFoundError(resource="CujCategory", resource_id=category_id)
    return category


def require_cuj(cuj_id: int) -> Cuj:
    cuj = get_cuj(cuj_id)
    if cuj is None:
        raise NotFoundError(resource="Cuj", resource_id=cuj_id)
    return cuj


def require_task(task_id: int) -> Task:
    task = get_task(task_id)
    if task is None:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return task


def _version_filter(model, version_id: int | None):
    """Rows visible to ``version_id``: stamped with it, or unversioned."""
    if version_id is None:
        return model.version_id.is_(None)
    return or_(model.version_id == version_id, model.version_id.is_(None))


def list_categories() -> list[CujCategory]:
    """Every category regardless of version, id order."""
    return list(db.session.execute(select(CujCategory).order_by(CujCategory.id)).scalars())


def categories_for_version(version_id: int | None) -> list[CujCategory]:
    """Categories a review bound to ``version_id`` is scored against, id order."""
    stmt = (
        select(CujCategory)
        .where(_version_filter(CujCategory, version_id))
        .order_by(CujCategory.id)
    )
    return list(db.session.execute(stmt).scalars())


def list_cujs_for_category(category_id: int) -> list[Cuj]:
    return list(db.session.execute(
        select(Cuj).where(Cuj.category_id == category_id).order_by(Cuj.id)
    ).scalars())


def list_tasks_for_cuj(cuj_id: int) -> list[Task]:
    return list(db.session.execute(
        select(Task).where(Task.cuj_id == cuj_id).order_by(Task.id)
    ).scalars())


def tasks_for_version(version_id: int | None) -> list[Task]:
    """All tasks a review bound to ``version_id`` is scored against, id order."""
    stmt = select(Task).where(_version_filter(Task, version_id)).order_by(Task.id)
    return list(db.session.execute(stmt).scalars())


def tasks_for_category(category_id: int, version_id: int | None = None) -> list[Task]:
    stmt = (
        select(Task)
        .join(Cuj, Task.cuj_id == Cuj.id)
        .where(Cuj.category_id == category_id, _version_filter(Task, version_id))
        .order_by(Task.id)
    )
    return list(db.session.execute(stmt).scalars())


# ── Create / update ─────────────────────────────────────────────────────────


def create_category(data: dict, commit: bool = True) -> CujCategory:
    """Create a CUJ category.

    Raises:
        ValidationError: name missing, or a text field that is not text.
        InvalidReferenceError: version_id given but unknown.
    """
    version_id = data.get("version_id")
    _check_version("CujCategory", version_id)
    category = CujCategory(
        name=_required_text(data, "name"),
        description=_optional_text(data, "description"),
        icon=_optional_text(data, "icon") or "category",
        version_id=version_id,
    )
    db.session.add(category)
    if commit:
        db.session.commit()
        logger.info("Created CUJ category %s", category.name, extra={"category_id": category.id})
    else:
        db.session.flush()
    return category


def update_category(category_id: int, data: dict) -> CujCategory:
    """Update name/description/icon of a category no CUJ references yet.

    Every supplied field is validated before any is applied.

    Raises:
        NotFoundError: unknown category.
        ValidationError: the category is already referenced by a CUJ, or a
            supplied field is invalid.
    """
    category = require_category(category_id)
    if category.cujs.first() is not None:
        raise ValidationError(
            f"CujCategory {category_id} is referenced by CUJs and can no longer change.",
        )
    changes = {}
    if "name" in data:
        changes["name"] = _required_text(data, "name")
    if "description" in data:
        changes["description"] = _optional_text(data, "description")
    if "icon" in data:
        changes["icon"] = _optional_text(data, "icon") or "category"

    for field, value in changes.items():
        setattr(category, field, value)
    db.session.commit()
    logger.info("Updated CUJ category %s", category.name, extra={"category_id": category.id})
    return category


def create_cuj(data: dict, commit: bool = True) -> Cuj:
    """Create a CUJ under an existing category.

    Raises:
        InvalidReferenceError: category_id or version_id does not exist.
        ValidationError: name missing, or version differs from the category's.
    """
    category_id = data.get("category_id")
    category = get_category(category_id) if category_id is not None else None
    if category is None:
        raise InvalidReferenceError("Cuj", "category_id", category_id)
    version_id = data.get("version_id")
    _check_version("Cuj", version_id)
    _check_same_version("Cuj", version_id, category)
    cuj = Cuj(
        category_id=category_id,
        name=_required_text(data, "name"),
        description=_optional_text(data, "description"),
        version_id=version_id,
    )
    db.session.add(cuj)
    if commit:
        db.session.commit()
        logger.info("Created CUJ %s", cuj.name, extra={"category_id": category_id})
    else:
        db.session.flush()
    return cuj


def create_task(data: dict, commit: bool = True) -> Task:
    """Create a task under an existing CUJ.

    Raises:
        InvalidReferenceError: cuj_id or version_id does not exist.
        ValidationError: name or expected_outcome missing, or version differs
            from the CUJ's.
    """
    cuj_id = data.get("cuj_id")
    cuj = get_cuj(cuj_id) if cuj_id is not None else None
    if cuj is None:
        raise InvalidReferenceError("Task", "cuj_id", cuj_id)
    version_id = data.get("version_id")
    _check_version("Task", version_id)
    _check_same_version("Task", version_id, cuj)
    task = Task(
        cuj_id=cuj_id,
        name=_required_text(data, "name"),
        prerequisites=_optional_text(data, "prerequisites"),
        expected_outcome=_required_text(data, "expected_outcome"),
        version_id=version_id,
    )
    db.session.add(task)
    if commit:
        db.session.commit()
        logger.info("Created task %s", task.name, extra={"task_id": task.id})
    else:
        db.session.flush()
    return task


# ── Versions ────────────────────────────────────────────────────────────────


def get_version(version_id: int) -> CujDatabaseVersion | None:
    return db.session.get(CujDatabaseVersion, version_id)


def list_versions() -> list[CujDatabaseVersion]:
    return list(db.session.execute(
        select(CujDatabaseVersion).order_by(CujDatabaseVersion.id)
    ).scalars())


def get_active_version() -> CujDatabaseVersion | None:
    return db.session.execute(
        select(CujDatabaseVersion).where(CujDatabaseVersion.is_active.is_(True))
    ).scalar_one_or_none()


def _activate_locked(version_id: int) -> None:
    # One statement flips every row, so the switch is atomic at the DB level too
    db.session.execute(
        update(CujDatabaseVersion)
        .values(is_active=(CujDatabaseVersion.id == version_id))
        .execution_options(synchronize_session=False)
    )


def create_version(
    label: str,
    created_by: int | None = None,
    activate: bool = False,
    source_type: str = "manual",
    source_file_name: str | None = None,
) -> CujDatabaseVersion:
    """Create a taxonomy version marker.

    The first version ever created becomes active regardless of ``activate``
    so exactly one version is active from then on.
    """
    label = _required_text({"label": label}, "label")
    if source_type not in VALID_SOURCE_TYPES:
        raise ValidationError(
            f"source_type must be one of: {', '.join(sorted(VALID_SOURCE_TYPES))}",
        )

    with key_lock(_ACTIVE_VERSION_KEY):
        is_first = db.session.execute(select(CujDatabaseVersion.id).limit(1)).first() is None
        version = CujDatabaseVersion(
            label=label,
            created_by=created_by,
            is_active=False,
            source_type=source_type,
            source_file_name=source_file_name,
        )
        db.session.add(version)
        db.session.flush()
        if activate or is_first:
            _activate_locked(version.id)
        db.session.commit()

    logger.info(
        "Created taxonomy version %s", label,
        extra={"version_id": version.id, "event_type": "taxonomy_version_created"},
    )
    return version


def activate_version(version_id: int) -> CujDatabaseVersion:
    """Make ``version_id`` the single active taxonomy version.

    Raises:
        NotFoundError: unknown version id.
    """
    with key_lock(_ACTIVE_VERSION_KEY):
        if db.session.get(CujDatabaseVersion, version_id) is None:
            raise NotFoundError(resource="CujDatabaseVersion", resource_id=version_id)
        _activate_locked(version_id)
        db.session.commit()
        # The bulk UPDATE bypasses the identity map
        db.session.expire_all()
        version = db.session.get(CujDatabaseVersion, version_id)

    logger.info(
        "Activated taxonomy version %s", version.label,
        extra={"version_id": version_id, "event_type": "taxonomy_version_activated"},
    )
    return version


# ── Spreadsheet sync ────────────────────────────────────────────────────────


def _validate_sync_row(index: int, row) -> None:
    if not isinstance(row, dict):
        raise ValidationError(f"Row {index} is not a mapping.", details={"row": index})
    bad = [
        c for c in SYNC_REQUIRED_COLUMNS + SYNC_OPTIONAL_COLUMNS
        if row.get(c) is not None and not isinstance(row[c], str)
    ]
    if bad:
        raise ValidationError(
            f"Row {index} has non-text value(s) in: {', '.join(bad)}",
            details={"row": index, "invalid": bad},
        )
    missing = [c for c in SYNC_REQUIRED_COLUMNS if not (row.get(c) or "").strip()]
    if missing:
        raise ValidationError(
            f"Row {index} is missing required column(s): {', '.join(missing)}",
            details={"row": index, "missing": missing},
        )


def sync_taxonomy(
    rows: list[dict],
    label: str,
    created_by: int | None = None,
    source_file_name: str | None = None,
) -> dict:
    """Import spreadsheet rows as a new, active taxonomy version.

    Each row names a category, a CUJ and a task (plus expected_outcome and
    optional prerequisites / descriptions / icon). Categories and CUJs are
    deduplicated by name within the import; all rows are stamped with the
    new version id, so reviews bound to older versions keep their taxonomy.

    Returns:
        {"version_id", "label", "categories", "cujs", "tasks"}

    Raises:
        ValidationError: empty import, a row missing a required column, or a
            cell that is not text. Nothing is written in that case.
    """
    if not rows:
        raise ValidationError("Taxonomy import contains no rows.")
    for index, row in enumerate(rows, start=1):
        _validate_sync_row(index, row)
    label = _required_text({"label": label}, "label")

    categories: dict[str, CujCategory] = {}
    cujs: dict[tuple[str, str], Cuj] = {}
    task_count = 0

    # Version row, taxonomy rows and activation share one transaction
    with key_lock(_ACTIVE_VERSION_KEY):
        try:
            version = CujDatabaseVersion(
                label=label,
                created_by=created_by,
                is_active=False,
                source_type="spreadsheet",
                source_file_name=source_file_name,
            )
            db.session.add(version)
            db.session.flush()

            for row in rows:
                category_name = row["category"].strip()
                category = categories.get(category_name)
                if category is None:
                    category = create_category({
                        "name": category_name,
                        "description": row.get("category_description"),
                        "icon": row.get("icon"),
                        "version_id": version.id,
                    }, commit=False)
                    categories[category_name] = category

                cuj_key = (category_name, row["cuj"].strip())
                cuj = cujs.get(cuj_key)
                if cuj is None:
                    cuj = create_cuj({
                        "category_id": category.id,
                        "name": cuj_key[1],
                        "description": row.get("cuj_description"),
                        "version_id": version.id,
                    }, commit=False)
                    cujs[cuj_key] = cuj

                create_task({
                    "cuj_id": cuj.id,
                    "name": row["task"],
                    "prerequisites": row.get("prerequisites"),
                    "expected_outcome": row["expected_outcome"],
                    "version_id": version.id,
                }, commit=False)
                task_count += 1

            _activate_locked(version.id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.warning("Taxonomy import '%s' rolled back", label,
                           extra={"event_type": "taxonomy_sync_failed"})
            raise
        db.session.expire_all()

    logger.info(
        "Synced taxonomy: %d categories, %d CUJs, %d tasks",
        len(categories), len(cujs), task_count,
        extra={"version_id": version.id, "event_type": "taxonomy_synced"},
    )
    return {
        "version_id": version.id,
        "label": version.label,
        "categories": len(categories),
        "cujs": len(cujs),
        "tasks": task_count,
    }
