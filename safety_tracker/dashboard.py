# safety_tracker/dashboard.py
from collections import Counter
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .errors import get_or_404
from .models import CorrectiveAction, Establishment, Incident
from .osha import load_report_scope, get_annual_stats, incident_rate, incidents_for_year


def get_dashboard_summary(db: Session, establishment_id: int, year: int,
                          today: Optional[date] = None) -> Dict:
    load_report_scope(db, establishment_id, year)
    incidents = incidents_for_year(db, establishment_id, year)
    recordable = sum(1 for i in incidents if i.is_recordable)

    # Measured against the latest incident of any year.
    last_date = (
        db.query(func.max(Incident.incident_date))
        .filter(Incident.establishment_id == establishment_id)
        .scalar()
    )
    days_since = None
    if last_date:
        today = today or date.today()
        days_since = (today - date.fromisoformat(last_date)).days

    stats = get_annual_stats(db, establishment_id, year)
    return {
        "total_incidents": len(incidents),
        "open_incidents": sum(1 for i in incidents if i.status == "open"),
        "total_recordable": recordable,
        "days_since_last_incident": days_since,
        "trir": incident_rate(recordable, stats.total_hours_worked if stats else None),
    }


def get_incidents_by_month(db: Session, establishment_id: int, year: int) -> List[Dict]:
    load_report_scope(db, establishment_id, year)
    counts = Counter(i.incident_date[:7] for i in incidents_for_year(db, establishment_id, year))
    return [{"month": m, "count": counts[m]} for m in sorted(counts)]


def get_incidents_by_severity(db: Session, establishment_id: int, year: int) -> List[Dict]:
    load_report_scope(db, establishment_id, year)
    counts = Counter(
        i.outcome_severity
        for i in incidents_for_year(db, establishment_id, year, recordable_only=True)
    )
    return [{"severity": k, "count": v} for k, v in sorted(counts.items())]


def get_incidents_by_type(db: Session, establishment_id: int, year: int) -> List[Dict]:
    load_report_scope(db, establishment_id, year)
    counts = Counter(
        i.injury_illness_type
        for i in incidents_for_year(db, establishment_id, year, recordable_only=True)
    )
    return [{"injury_type": k, "count": v} for k, v in sorted(counts.items())]


def get_incidents_by_location(db: Session, establishment_id: int, year: int) -> List[Dict]:
    load_report_scope(db, establishment_id, year)
    counts = Counter(
        i.location.name if i.location else "Unassigned"
        for i in incidents_for_year(db, establishment_id, year)
    )
    return [{"location_name": k, "count": v} for k, v in sorted(counts.items())]


def get_corrective_action_summary(db: Session, establishment_id: int,
                                  today: Optional[date] = None) -> Dict:
    """Bucket actions by effective status; overdue actions are not also counted as open."""
    get_or_404(db, Establishment, establishment_id, "Establishment")
    actions = (
        db.query(CorrectiveAction)
        .join(Incident, CorrectiveAction.incident_id == Incident.id)
        .filter(Incident.establishment_id == establishment_id)
        .all()
    )
    counts = Counter(a.effective_status(today) for a in actions)
    return {
        "open": counts["open"],
        "in_progress": counts["in_progress"],
        "completed": counts["completed"],
        "overdue": counts["overdue"],
    }
