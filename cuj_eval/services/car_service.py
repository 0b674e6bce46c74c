"""
Car registry — the vehicle builds reviews and assignments point at.
"""

import logging

from cuj_eval.core.exceptions import NotFoundError, ValidationError
from cuj_eval.models import db
from cuj_eval.models.review import Car

logger = logging.getLogger(__name__)

_REQUIRED_TEXT = ("make", "model", "android_version", "build_fingerprint", "location")


def create_car(data):
    """Register a car build."""
    missing = [f for f in _REQUIRED_TEXT if not (data.get(f) or "").strip()]
    year = data.get("year")
    if not isinstance(year, int) or isinstance(year, bool):
        missing.append("year")
    if missing:
        raise ValidationError(
            f"Missing or invalid field(s): {', '.join(missing)}",
            details={f: "required" for f in missing},
        )
    car = Car(
        make=data["make"].strip(),
        model=data["model"].strip(),
        year=year,
        android_version=data["android_version"].strip(),
        build_fingerprint=data["build_fingerprint"].strip(),
        location=data["location"].strip(),
        image_url=data.get("image_url"),
    )
    db.session.add(car)
    db.session.commit()
    logger.info("Registered car %s %s %s", car.year, car.make, car.model, extra={"car_id": car.id})
    return car


def get_car(car_id):
    return db.session.get(Car, car_id)


def require_car(car_id):
    car = get_car(car_id)
    if car is None:
        raise NotFoundError(resource="Car", resource_id=car_id)
    return car


def list_cars():
    return Car.query.order_by(Car.id).all()
