from datetime import date

import pytest

from safety_tracker.dashboard import (
    get_corrective_action_summary,
    get_dashboard_summary,
    get_incidents_by_location,
    get_incidents_by_month,
    get_incidents_by_severity,
    get_incidents_by_type,
)
from safety_tracker.errors import NotFoundError
from safety_tracker.incidents import create_incident
from safety_tracker.osha import upsert_annual_stats
from safety_tracker.rca import create_corrective_action, update_corrective_action


@pytest.fixture
def seeded(db, establishment, location):
    def add(**kw):
        data = {"employee_name": "Lee", "description": "Strain"}
        data.update(kw)
        return create_incident(db, establishment.id, data)

    add(incident_date="2024-01-10", outcome_severity="death", location_id=location.id)
    add(incident_date="2024-01-20", injury_illness_type="respiratory")
    add(incident_date="2024-03-05", status="closed", location_id=location.id)
    add(incident_date="2024-06-30", is_recordable=False)
    add(incident_date="2023-11-11")
    return establishment


def test_summary(db, seeded):
    upsert_annual_stats(db, seeded.id, 2024, {"avg_employees": 30, "total_hours_worked": 600000})
    s = get_dashboard_summary(db, seeded.id, 2024, today=date(2024, 7, 10))
    assert s == {
        "total_incidents": 4,
        "open_incidents": 3,
        "total_recordable": 3,
        "days_since_last_incident": 10,
        "trir": 1.0,
    }


def test_summary_without_stats_or_incidents(db, establishment):
    s = get_dashboard_summary(db, establishment.id, 2024)
    assert s["total_incidents"] == 0
    assert s["days_since_last_incident"] is None
    assert s["trir"] is None


def test_breakdowns(db, seeded):
    assert get_incidents_by_month(db, seeded.id, 2024) == [
        {"month": "2024-01", "count": 2},
        {"month": "2024-03", "count": 1},
        {"month": "2024-06", "count": 1},
    ]
    assert get_incidents_by_severity(db, seeded.id, 2024) == [
        {"severity": "death", "count": 1},
        {"severity": "other_recordable", "count": 2},
    ]
    assert get_incidents_by_type(db, seeded.id, 2024) == [
        {"injury_type": "injury", "count": 2},
        {"injury_type": "respiratory", "count": 1},
    ]
    assert get_incidents_by_location(db, seeded.id, 2024) == [
        {"location_name": "Shop Floor", "count": 2},
        {"location_name": "Unassigned", "count": 2},
    ]


def test_breakdowns_unknown_establishment(db):
    with pytest.raises(NotFoundError):
        get_incidents_by_month(db, 5, 2024)


def test_corrective_action_summary(db, establishment):
    inc = create_incident(db, establishment.id, {
        "employee_name": "Lee", "incident_date": "2024-01-10", "description": "Strain",
    })
    create_corrective_action(db, inc.id, {"description": "Retrain", "due_date": "2030-01-01"})
    create_corrective_action(db, inc.id, {"description": "Late fix", "due_date": "2024-02-01"})
    started = create_corrective_action(db, inc.id, {"description": "New hoist"})
    update_corrective_action(db, started.id, {"status": "in_progress"})
    done = create_corrective_action(db, inc.id, {"description": "Guard", "due_date": "2024-02-01"})
    update_corrective_action(db, done.id, {"status": "completed"})

    summary = get_corrective_action_summary(db, establishment.id, today=date(2024, 6, 1))
    assert summary == {"open": 1, "in_progress": 1, "completed": 1, "overdue": 1}
