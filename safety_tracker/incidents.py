# safety_tracker/incidents.py
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from . import validation
from .errors import ValidationError, get_or_404
from .locations import check_location
from .models import (
    Establishment, Incident,
    OUTCOME_SEVERITY_LABELS, INJURY_TYPE_LABELS, INCIDENT_STATUSES,
)

logger = logging.getLogger(__name__)

# Columns a caller may set on create/update. case_number is never among them.
EDITABLE_FIELDS = (
    "location_id",
    "employee_name", "employee_job_title", "employee_address", "employee_city",
    "employee_state", "employee_zip", "employee_dob", "employee_hire_date",
    "employee_gender", "is_privacy_case",
    "incident_date", "incident_time", "work_start_time", "where_occurred",
    "description", "activity_before_incident", "how_injury_occurred",
    "injury_description", "object_substance",
    "physician_name", "treatment_facility", "facility_address",
    "facility_city_state_zip", "treated_in_er", "hospitalized_overnight",
    "outcome_severity", "days_away_count", "days_restricted_count",
    "date_of_death", "injury_illness_type", "is_recordable",
    "status", "completed_by", "completed_by_title", "completed_by_phone",
    "completed_date",
)

INT_FIELDS = {
    "days_away_count": "Days away from work",
    "days_restricted_count": "Days of restricted work",
    "location_id": "Location",
}
FLAG_FIELDS = {
    "is_privacy_case": "Privacy case",
    "is_recordable": "Recordable",
    "treated_in_er": "Treated in emergency room",
    "hospitalized_overnight": "Hospitalized overnight",
}

CREATE_DEFAULTS = {
    "outcome_severity": "other_recordable",
    "injury_illness_type": "injury",
    "is_recordable": True,
    "is_privacy_case": False,
    "days_away_count": 0,
    "days_restricted_count": 0,
    "status": "open",
}


def normalize_day_counts(severity: str, days_away: int, days_restricted: int):
    """Day counts only survive for outcomes that imply lost or restricted time."""
    if severity == "days_away":
        return days_away or 0, days_restricted or 0
    if severity == "job_transfer_restriction":
        return 0, days_restricted or 0
    return 0, 0


def _coerce(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalise JSON-typed day counts and flags in place, rejecting unusable values."""
    for key, name in INT_FIELDS.items():
        if data.get(key) is not None:
            data[key] = validation.validate_int(data[key], name)
    for key, name in FLAG_FIELDS.items():
        if data.get(key) is not None:
            data[key] = validation.validate_flag(data[key], name)
    return data


def _validate(data: Dict[str, Any], creating: bool):
    if creating or "employee_name" in data:
        validation.validate_not_empty(data.get("employee_name"), "Employee name")
        validation.validate_length(
            data["employee_name"], validation.MAX_NAME_LENGTH, "Employee name"
        )
    if creating or "description" in data:
        validation.validate_not_empty(data.get("description"), "Description")
        validation.validate_length(
            data["description"], validation.MAX_DESCRIPTION_LENGTH, "Description"
        )
    if creating or "incident_date" in data:
        validation.validate_date(data.get("incident_date"), "Incident date")

    if data.get("outcome_severity") is not None:
        validation.validate_choice(
            data["outcome_severity"], tuple(OUTCOME_SEVERITY_LABELS), "Outcome severity"
        )
    if data.get("injury_illness_type") is not None:
        validation.validate_choice(
            data["injury_illness_type"], tuple(INJURY_TYPE_LABELS), "Injury/illness type"
        )
    if data.get("status") is not None:
        validation.validate_choice(data["status"], INCIDENT_STATUSES, "Status")
    if data.get("days_away_count") is not None:
        validation.validate_days_count(data["days_away_count"], "Days away from work")
    if data.get("days_restricted_count") is not None:
        validation.validate_days_count(
            data["days_restricted_count"], "Days of restricted work"
        )


def next_case_number(db: Session, establishment_id: int, year: int) -> int:
    current = (
        db.query(func.max(Incident.case_number))
        .filter(Incident.establishment_id == establishment_id, Incident.case_year == year)
        .scalar()
    )
    return (current or 0) + 1


def create_incident(db: Session, establishment_id: int, data: Dict[str, Any]) -> Incident:
    get_or_404(db, Establishment, establishment_id, "Establishment")

    values = dict(CREATE_DEFAULTS)
    values.update({k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None})
    _coerce(values)
    _validate(values, creating=True)
    check_location(db, establishment_id, values.get("location_id"))

    values["days_away_count"], values["days_restricted_count"] = normalize_day_counts(
        values["outcome_severity"], values["days_away_count"], values["days_restricted_count"]
    )

    year = int(values["incident_date"][:4])
    incident = Incident(
        establishment_id=establishment_id,
        case_year=year,
        case_number=next_case_number(db, establishment_id, year),
        **values,
    )
    db.add(incident)
    db.commit()
    db.refresh(incident)
    logger.info(
        "Created incident %s (case %s/%s) for establishment %s",
        incident.id, year, incident.case_number, establishment_id,
    )
    return incident


def get_incident(db: Session, incident_id: int) -> Incident:
    return get_or_404(db, Incident, incident_id, "Incident")


def list_incidents(
    db: Session,
    establishment_id: int,
    location_id: Optional[int] = None,
    status: Optional[str] = None,
    outcome_severity: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Incident]:
    q = db.query(Incident).filter(Incident.establishment_id == establishment_id)
    if location_id is not None:
        q = q.filter(Incident.location_id == location_id)
    if status:
        q = q.filter(Incident.status == status)
    if outcome_severity:
        q = q.filter(Incident.outcome_severity == outcome_severity)
    if date_from:
        q = q.filter(Incident.incident_date >= date_from)
    if date_to:
        q = q.filter(Incident.incident_date <= date_to)
    if search:
        pat = f"%{search}%"
        # Privacy cases are only matched on description.
        q = q.filter(
            or_(
                Incident.description.ilike(pat),
                (Incident.employee_name.ilike(pat)) & (Incident.is_privacy_case.is_(False)),
            )
        )
    return q.order_by(Incident.incident_date.desc(), Incident.id.desc()).all()


def update_incident(db: Session, incident_id: int, data: Dict[str, Any]) -> Incident:
    incident = get_incident(db, incident_id)
    if "case_number" in data and data["case_number"] != incident.case_number:
        raise ValidationError("Case number cannot be changed once assigned")

    # None on a defaulted column means "leave as is"
    changes = {
        k: v for k, v in data.items()
        if k in EDITABLE_FIELDS and not (v is None and k in CREATE_DEFAULTS)
    }
    _coerce(changes)
    _validate(changes, creating=False)
    if "location_id" in changes:
        check_location(db, incident.establishment_id, changes["location_id"])

    for key, value in changes.items():
        setattr(incident, key, value)
    incident.days_away_count, incident.days_restricted_count = normalize_day_counts(
        incident.outcome_severity, incident.days_away_count, incident.days_restricted_count
    )
    db.commit()
    db.refresh(incident)
    return incident


def delete_incident(db: Session, incident_id: int) -> None:
    incident = get_incident(db, incident_id)
    db.delete(incident)
    db.commit()
    logger.info("Deleted incident %s", incident_id)


def incident_to_dict(incident: Incident, redact: bool = True) -> Dict[str, Any]:
    """Serialize an incident; list views pass redact=True to hide privacy-case names."""
    d = {
        "id": incident.id,
        "case_number": incident.case_number,
        "establishment_id": incident.establishment_id,
    }
    for key in EDITABLE_FIELDS:
        d[key] = getattr(incident, key)
    if redact:
        d["employee_name"] = incident.display_name
    d["created_at"] = incident.created_at.isoformat() if incident.created_at else None
    d["updated_at"] = incident.updated_at.isoformat() if incident.updated_at else None
    return d
