# safety_tracker/osha.py
"""
OSHA record-keeping reports.

Builds the Form 300 log (one row per recordable case), the Form 300A annual
summary, and the Form 301 individual incident report from stored incidents,
and manages the per-year headcount/hours figures the summary and incident
rate depend on.
"""
import csv
import logging
from collections import Counter
from typing import Dict, List, Optional, TypedDict

from sqlalchemy.orm import Session

from . import validation
from .errors import ValidationError, get_or_404
from .models import (
    AnnualStats, Establishment, Incident,
    OUTCOME_SEVERITY_LABELS, INJURY_TYPE_LABELS,
)

logger = logging.getLogger(__name__)

# OSHA normalises rates to 100 full-time workers (50 weeks x 40 hours).
RATE_BASE_HOURS = 200_000

# Flag name on a log row -> outcome_severity / injury_illness_type key.
OUTCOME_FLAGS = {
    "outcome_death": "death",
    "outcome_days_away": "days_away",
    "outcome_job_transfer": "job_transfer_restriction",
    "outcome_other_recordable": "other_recordable",
}
TYPE_FLAGS = {
    "type_injury": "injury",
    "type_skin_disorder": "skin_disorder",
    "type_respiratory": "respiratory",
    "type_poisoning": "poisoning",
    "type_hearing_loss": "hearing_loss",
    "type_other_illness": "other_illness",
}

OSHA_300_CSV_HEADERS = [
    "Case No.", "Employee Name", "Job Title", "Date of Injury/Illness",
    "Where Event Occurred", "Description of Injury/Illness",
    "Death", "Days Away From Work", "Job Transfer or Restriction",
    "Other Recordable Cases", "Days Away From Work (Count)",
    "Days of Restricted Work (Count)",
    "Injury", "Skin Disorder", "Respiratory Condition", "Poisoning",
    "Hearing Loss", "All Other Illnesses",
]


class Osha300Row(TypedDict):
    case_number: int
    employee_name: str
    job_title: str
    incident_date: str
    where_occurred: str
    description: str
    outcome_death: bool
    outcome_days_away: bool
    outcome_job_transfer: bool
    outcome_other_recordable: bool
    days_away_count: int
    days_restricted_count: int
    type_injury: bool
    type_skin_disorder: bool
    type_respiratory: bool
    type_poisoning: bool
    type_hearing_loss: bool
    type_other_illness: bool


def incident_rate(total_recordable: int, total_hours_worked: Optional[int]) -> Optional[float]:
    """Recordable incident rate per 200,000 hours; None without usable hours."""
    if not total_hours_worked or total_hours_worked <= 0:
        return None
    return (total_recordable * RATE_BASE_HOURS) / total_hours_worked


def incidents_for_year(db: Session, establishment_id: int, year: int,
                       recordable_only: bool = False) -> List[Incident]:
    q = db.query(Incident).filter(
        Incident.establishment_id == establishment_id,
        Incident.incident_date.like(f"{year:04d}-%"),
    )
    if recordable_only:
        q = q.filter(Incident.is_recordable.is_(True))
    return q.order_by(Incident.case_number, Incident.id).all()


def load_report_scope(db: Session, establishment_id: int, year: int) -> Establishment:
    validation.validate_year(year)
    return get_or_404(db, Establishment, establishment_id, "Establishment")


def log_row(incident: Incident) -> Osha300Row:
    row = {
        "case_number": incident.case_number,
        "employee_name": incident.display_name,
        "job_title": incident.employee_job_title or "",
        "incident_date": incident.incident_date,
        "where_occurred": incident.where_occurred
        or (incident.location.name if incident.location else ""),
        "description": incident.description,
    }
    # A single enumerated value drives each flag group, so exactly one is set.
    for flag, key in OUTCOME_FLAGS.items():
        row[flag] = incident.outcome_severity == key
    row["days_away_count"] = incident.days_away_count or 0
    row["days_restricted_count"] = incident.days_restricted_count or 0
    for flag, key in TYPE_FLAGS.items():
        row[flag] = incident.injury_illness_type == key
    return row


def get_osha_300_log(db: Session, establishment_id: int, year: int) -> List[Osha300Row]:
    load_report_scope(db, establishment_id, year)
    return [
        log_row(i) for i in incidents_for_year(db, establishment_id, year, recordable_only=True)
    ]


def get_osha_300a_summary(db: Session, establishment_id: int, year: int) -> Dict:
    est = load_report_scope(db, establishment_id, year)
    incidents = incidents_for_year(db, establishment_id, year, recordable_only=True)

    outcomes = Counter(i.outcome_severity for i in incidents)
    types = Counter(i.injury_illness_type for i in incidents)
    stats = get_annual_stats(db, establishment_id, year)

    return {
        "year": year,
        "establishment_name": est.name,
        "street_address": est.street_address or "",
        "city": est.city or "",
        "state": est.state or "",
        "zip_code": est.zip_code or "",
        "industry_description": est.industry_description or "",
        "naics_code": est.naics_code or "",

        "total_deaths": outcomes["death"],
        "total_days_away_cases": outcomes["days_away"],
        "total_transfer_restriction_cases": outcomes["job_transfer_restriction"],
        "total_other_recordable_cases": outcomes["other_recordable"],
        "total_days_away": sum(i.days_away_count or 0 for i in incidents),
        "total_days_restricted": sum(i.days_restricted_count or 0 for i in incidents),

        "total_injuries": types["injury"],
        "total_skin_disorders": types["skin_disorder"],
        "total_respiratory": types["respiratory"],
        "total_poisonings": types["poisoning"],
        "total_hearing_loss": types["hearing_loss"],
        "total_other_illnesses": types["other_illness"],

        "avg_employees": stats.avg_employees if stats else None,
        "total_hours_worked": stats.total_hours_worked if stats else None,
        "certifier_name": stats.certifier_name if stats else None,
        "certifier_title": stats.certifier_title if stats else None,
        "certifier_phone": stats.certifier_phone if stats else None,
        "certification_date": stats.certification_date if stats else None,
    }


def get_osha_301_report(db: Session, incident_id: int) -> Dict:
    i = get_or_404(db, Incident, incident_id, "Incident")
    return {
        "case_number": i.case_number,
        # Section A - employee
        "employee_name": i.display_name,
        "employee_address": i.employee_address or "",
        "employee_city": i.employee_city or "",
        "employee_state": i.employee_state or "",
        "employee_zip": i.employee_zip or "",
        "employee_dob": i.employee_dob or "",
        "employee_hire_date": i.employee_hire_date or "",
        "employee_gender": i.employee_gender or "",
        # Section B - healthcare
        "physician_name": i.physician_name or "",
        "treatment_facility": i.treatment_facility or "",
        "facility_address": i.facility_address or "",
        "facility_city_state_zip": i.facility_city_state_zip or "",
        "treated_in_er": bool(i.treated_in_er),
        "hospitalized_overnight": bool(i.hospitalized_overnight),
        # Section C - case
        "incident_date": i.incident_date,
        "incident_time": i.incident_time or "",
        "work_start_time": i.work_start_time or "",
        "where_occurred": i.where_occurred or "",
        "activity_before_incident": i.activity_before_incident or "",
        "how_injury_occurred": i.how_injury_occurred or "",
        "injury_description": i.injury_description or "",
        "object_substance": i.object_substance or "",
        "date_of_death": i.date_of_death or "",
        "outcome": OUTCOME_SEVERITY_LABELS.get(i.outcome_severity, ""),
        "injury_illness_type": INJURY_TYPE_LABELS.get(i.injury_illness_type, ""),
        # Section D - completed by
        "completed_by": i.completed_by or "",
        "completed_by_title": i.completed_by_title or "",
        "completed_by_phone": i.completed_by_phone or "",
        "completed_date": i.completed_date or "",
    }


def _x(flag: bool) -> str:
    return "X" if flag else ""


def write_osha_300_csv(rows: List[Osha300Row], f) -> None:
    writer = csv.writer(f)
    writer.writerow(OSHA_300_CSV_HEADERS)
    for r in rows:
        writer.writerow([
            r["case_number"], r["employee_name"], r["job_title"], r["incident_date"],
            r["where_occurred"], r["description"],
            _x(r["outcome_death"]), _x(r["outcome_days_away"]),
            _x(r["outcome_job_transfer"]), _x(r["outcome_other_recordable"]),
            r["days_away_count"], r["days_restricted_count"],
            _x(r["type_injury"]), _x(r["type_skin_disorder"]), _x(r["type_respiratory"]),
            _x(r["type_poisoning"]), _x(r["type_hearing_loss"]), _x(r["type_other_illness"]),
        ])


def export_osha_300_csv(db: Session, establishment_id: int, year: int, path: str) -> str:
    rows = get_osha_300_log(db, establishment_id, year)
    with open(path, "w", encoding="utf-8", newline="") as f:
        write_osha_300_csv(rows, f)
    logger.info("Exported %d OSHA 300 rows for establishment %s/%s to %s",
                len(rows), establishment_id, year, path)
    return path


# ---------- Annual stats ----------

def get_annual_stats(db: Session, establishment_id: int, year: int) -> Optional[AnnualStats]:
    return (
        db.query(AnnualStats)
        .filter(AnnualStats.establishment_id == establishment_id, AnnualStats.year == year)
        .first()
    )


def upsert_annual_stats(db: Session, establishment_id: int, year: int, data: Dict) -> AnnualStats:
    """Create or overwrite the headcount/hours record for an establishment and year."""
    load_report_scope(db, establishment_id, year)
    try:
        avg_employees = int(data["avg_employees"])
        hours = int(data["total_hours_worked"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("avg_employees and total_hours_worked are required integers")
    validation.validate_employee_count(avg_employees)
    validation.validate_hours_worked(hours)

    stats = get_annual_stats(db, establishment_id, year)
    if stats is None:
        stats = AnnualStats(establishment_id=establishment_id, year=year)
        db.add(stats)
    stats.avg_employees = avg_employees
    stats.total_hours_worked = hours
    stats.certifier_name = data.get("certifier_name")
    stats.certifier_title = data.get("certifier_title")
    stats.certifier_phone = data.get("certifier_phone")
    stats.certification_date = data.get("certification_date")
    db.commit()
    db.refresh(stats)
    return stats


def annual_stats_to_dict(stats: AnnualStats) -> Dict:
    return {
        "id": stats.id,
        "establishment_id": stats.establishment_id,
        "year": stats.year,
        "avg_employees": stats.avg_employees,
        "total_hours_worked": stats.total_hours_worked,
        "certifier_name": stats.certifier_name,
        "certifier_title": stats.certifier_title,
        "certifier_phone": stats.certifier_phone,
        "certification_date": stats.certification_date,
    }
