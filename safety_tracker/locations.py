# safety_tracker/locations.py
import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from . import validation
from .errors import ValidationError, get_or_404
from .models import Establishment, Location

logger = logging.getLogger(__name__)

ESTABLISHMENT_FIELDS = (
    "name", "street_address", "city", "state", "zip_code",
    "industry_description", "naics_code",
)
LOCATION_FIELDS = ("name", "address", "city", "state", "is_active")


def _apply(obj, data: Dict[str, Any], fields):
    for key in fields:
        if key in data and data[key] is not None:
            setattr(obj, key, data[key])


# ---------- Establishments ----------

def create_establishment(db: Session, data: Dict[str, Any]) -> Establishment:
    validation.validate_not_empty(data.get("name"), "Establishment name")
    validation.validate_length(data["name"], validation.MAX_NAME_LENGTH, "Establishment name")
    est = Establishment()
    _apply(est, data, ESTABLISHMENT_FIELDS)
    db.add(est)
    db.commit()
    db.refresh(est)
    logger.info("Created establishment %s (%s)", est.id, est.name)
    return est


def get_establishment(db: Session, establishment_id: int) -> Establishment:
    return get_or_404(db, Establishment, establishment_id, "Establishment")


def list_establishments(db: Session) -> List[Establishment]:
    return db.query(Establishment).order_by(Establishment.name).all()


def update_establishment(db: Session, establishment_id: int, data: Dict[str, Any]) -> Establishment:
    est = get_establishment(db, establishment_id)
    if "name" in data:
        validation.validate_not_empty(data["name"], "Establishment name")
    _apply(est, data, ESTABLISHMENT_FIELDS)
    db.commit()
    db.refresh(est)
    return est


def delete_establishment(db: Session, establishment_id: int) -> None:
    """Delete an establishment together with everything scoped beneath it."""
    est = get_establishment(db, establishment_id)
    db.delete(est)
    db.commit()
    logger.info("Deleted establishment %s", establishment_id)


# ---------- Locations ----------

def create_location(db: Session, establishment_id: int, data: Dict[str, Any]) -> Location:
    get_establishment(db, establishment_id)
    validation.validate_not_empty(data.get("name"), "Location name")
    loc = Location(establishment_id=establishment_id)
    _apply(loc, data, LOCATION_FIELDS)
    db.add(loc)
    db.commit()
    db.refresh(loc)
    return loc


def get_location(db: Session, location_id: int) -> Location:
    return get_or_404(db, Location, location_id, "Location")


def check_location(db: Session, establishment_id: int, location_id) -> None:
    """Reject a location that belongs to a different establishment; None is allowed."""
    if location_id is None:
        return
    loc = get_location(db, location_id)
    if loc.establishment_id != establishment_id:
        raise ValidationError(
            f"Location {location_id} does not belong to establishment {establishment_id}"
        )


def list_locations(db: Session, establishment_id: int, active_only: bool = False) -> List[Location]:
    get_establishment(db, establishment_id)
    q = db.query(Location).filter(Location.establishment_id == establishment_id)
    if active_only:
        q = q.filter(Location.is_active.is_(True))
    return q.order_by(Location.name).all()


def update_location(db: Session, location_id: int, data: Dict[str, Any]) -> Location:
    loc = get_location(db, location_id)
    if "name" in data:
        validation.validate_not_empty(data["name"], "Location name")
    _apply(loc, data, LOCATION_FIELDS)
    db.commit()
    db.refresh(loc)
    return loc


def delete_location(db: Session, location_id: int) -> None:
    loc = get_location(db, location_id)
    db.delete(loc)
    db.commit()


def establishment_to_dict(est: Establishment) -> Dict[str, Any]:
    d = {"id": est.id}
    d.update({k: getattr(est, k) for k in ESTABLISHMENT_FIELDS})
    return d


def location_to_dict(loc: Location) -> Dict[str, Any]:
    d = {"id": loc.id, "establishment_id": loc.establishment_id}
    d.update({k: getattr(loc, k) for k in LOCATION_FIELDS})
    return d
