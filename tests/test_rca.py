from datetime import date

import pytest

from safety_tracker.errors import NotFoundError, ValidationError
from safety_tracker.incidents import create_incident
from safety_tracker.models import FishboneCause
from safety_tracker.rca import (
    action_to_dict,
    add_fishbone_category,
    add_fishbone_cause,
    add_five_whys_step,
    category_to_dict,
    complete_rca_session,
    create_corrective_action,
    create_rca_session,
    delete_fishbone_cause,
    delete_rca_session,
    list_corrective_actions,
    list_five_whys_steps,
    list_rca_sessions,
    update_corrective_action,
    update_fishbone_cause,
    update_five_whys_step,
)


@pytest.fixture
def incident(db, establishment):
    return create_incident(db, establishment.id, {
        "employee_name": "Kai", "incident_date": "2024-02-02", "description": "Pinch point",
    })


# ============================================================================
# Sessions
# ============================================================================

def test_session_lifecycle(db, incident):
    s = create_rca_session(db, incident.id, "five_whys")
    assert s.status == "in_progress"
    done = complete_rca_session(db, s.id, "Guard removed during maintenance")
    assert done.status == "completed"
    assert done.root_cause_summary == "Guard removed during maintenance"
    assert [x.id for x in list_rca_sessions(db, incident.id)] == [s.id]


def test_session_rejects_unknown_method(db, incident):
    with pytest.raises(ValidationError):
        create_rca_session(db, incident.id, "tarot")


def test_session_for_unknown_incident(db):
    with pytest.raises(NotFoundError):
        create_rca_session(db, 1, "fishbone")


def test_complete_requires_summary(db, incident):
    s = create_rca_session(db, incident.id, "fishbone")
    with pytest.raises(ValidationError):
        complete_rca_session(db, s.id, "  ")


# ============================================================================
# Five whys & fishbone
# ============================================================================

def test_five_whys_steps_ordered(db, incident):
    s = create_rca_session(db, incident.id, "five_whys")
    add_five_whys_step(db, s.id, 2, "Why was the guard off?", "Maintenance")
    first = add_five_whys_step(db, s.id, 1, "Why was the hand caught?", "No guard")
    update_five_whys_step(db, first.id, "Why was the hand caught?", "Guard missing")
    steps = list_five_whys_steps(db, s.id)
    assert [st.step_number for st in steps] == [1, 2]
    assert steps[0].answer == "Guard missing"


def test_five_whys_partial_update_keeps_question(db, incident):
    s = create_rca_session(db, incident.id, "five_whys")
    step = add_five_whys_step(db, s.id, 1, "Why was the floor wet?", "")
    update_five_whys_step(db, step.id, answer="Leaking valve")
    assert (step.question, step.answer) == ("Why was the floor wet?", "Leaking valve")
    with pytest.raises(ValidationError):
        update_five_whys_step(db, step.id, question="  ")
    db.rollback()
    assert list_five_whys_steps(db, s.id)[0].question == "Why was the floor wet?"


def test_five_whys_step_needs_five_whys_session(db, incident):
    s = create_rca_session(db, incident.id, "fishbone")
    with pytest.raises(ValidationError):
        add_five_whys_step(db, s.id, 1, "Why?", "Because")


def test_fishbone_categories_and_causes(db, incident):
    s = create_rca_session(db, incident.id, "fishbone")
    cat = add_fishbone_category(db, s.id, "machinery", sort_order=1)
    cause = add_fishbone_cause(db, cat.id, "Worn clutch")
    update_fishbone_cause(db, cause.id, is_root_cause=True)
    other = add_fishbone_cause(db, cat.id, "Loose bolt", sort_order=1)
    delete_fishbone_cause(db, other.id)

    db.refresh(cat)
    d = category_to_dict(cat)
    assert d["category"] == "machinery"
    assert [(c["cause_text"], c["is_root_cause"]) for c in d["causes"]] == [("Worn clutch", True)]


def test_fishbone_rejects_unknown_category(db, incident):
    s = create_rca_session(db, incident.id, "fishbone")
    with pytest.raises(ValidationError):
        add_fishbone_category(db, s.id, "luck")


def test_delete_session_removes_children(db, incident):
    s = create_rca_session(db, incident.id, "fishbone")
    cat = add_fishbone_category(db, s.id, "methods")
    add_fishbone_cause(db, cat.id, "No procedure")
    delete_rca_session(db, s.id)
    assert db.query(FishboneCause).count() == 0


# ============================================================================
# Corrective actions
# ============================================================================

def test_overdue_is_derived(db, incident):
    action = create_corrective_action(db, incident.id, {
        "description": "Install guard", "due_date": "2024-03-01",
    })
    assert action.status == "open"
    assert action.effective_status(date(2024, 2, 1)) == "open"
    assert action.effective_status(date(2024, 3, 2)) == "overdue"
    assert action_to_dict(action, date(2024, 3, 2))["status"] == "overdue"


def test_overdue_cannot_be_assigned(db, incident):
    action = create_corrective_action(db, incident.id, {"description": "Install guard"})
    with pytest.raises(ValidationError):
        update_corrective_action(db, action.id, {"status": "overdue"})


def test_completion_stamps_date(db, incident):
    action = create_corrective_action(db, incident.id, {
        "description": "Install guard", "due_date": "2024-03-01",
    })
    done = update_corrective_action(db, action.id, {"status": "completed"}, today=date(2024, 4, 1))
    assert done.completed_date == "2024-04-01"
    assert done.effective_status(date(2025, 1, 1)) == "completed"

    reopened = update_corrective_action(db, action.id, {"status": "open"})
    assert reopened.completed_date is None


def test_completion_keeps_given_date(db, incident):
    action = create_corrective_action(db, incident.id, {"description": "Install guard"})
    done = update_corrective_action(db, action.id, {
        "status": "completed", "completed_date": "2024-05-05",
    })
    assert done.completed_date == "2024-05-05"


def test_action_session_must_match_incident(db, establishment, incident):
    other = create_incident(db, establishment.id, {
        "employee_name": "Ola", "incident_date": "2024-02-03", "description": "Burn",
    })
    s = create_rca_session(db, other.id, "five_whys")
    with pytest.raises(ValidationError):
        create_corrective_action(db, incident.id, {"description": "x", "rca_session_id": s.id})


def test_action_requires_description(db, incident):
    with pytest.raises(ValidationError):
        create_corrective_action(db, incident.id, {"description": ""})
    assert list_corrective_actions(db, incident.id) == []
