import pytest

from safety_tracker.errors import NotFoundError, ValidationError
from safety_tracker.locations import create_establishment, create_location
from safety_tracker.models import JsaTemplate, ToolboxTalkAttendee
from safety_tracker.workflows import (
    add_attendee,
    add_jsa_hazard,
    add_jsa_step,
    approve_jsa,
    complete_jsa_step,
    complete_talk,
    create_jsa,
    create_talk,
    create_topic,
    delete_attendee,
    get_talk,
    jsa_to_dict,
    list_jsas,
    list_talks,
    list_templates,
    list_topics,
    sign_attendee,
    talk_to_dict,
)


# ============================================================================
# Toolbox talks
# ============================================================================

def test_talk_takes_title_from_topic(db, establishment):
    topic = create_topic(db, {"title": "Ladder Safety", "content": "Three points of contact"})
    talk = create_talk(db, establishment.id, {
        "topic_id": topic.id, "date": "2024-05-01", "conducted_by": "Supervisor Sue",
    })
    assert talk.title == "Ladder Safety"
    assert talk.status == "scheduled"
    assert [t.id for t in list_talks(db, establishment.id)] == [talk.id]
    assert [t.title for t in list_topics(db)] == ["Ladder Safety"]


def test_talk_requires_fields(db, establishment):
    with pytest.raises(ValidationError):
        create_talk(db, establishment.id, {"date": "2024-05-01", "conducted_by": "Sue"})
    with pytest.raises(ValidationError):
        create_talk(db, establishment.id, {"title": "Heat", "date": "May 1", "conducted_by": "Sue"})


def test_talk_unknown_topic(db, establishment):
    with pytest.raises(NotFoundError):
        create_talk(db, establishment.id, {
            "topic_id": 9, "date": "2024-05-01", "conducted_by": "Sue",
        })


def test_talk_location_must_belong_to_establishment(db, establishment, location):
    other = create_establishment(db, {"name": "Yard Two"})
    foreign = create_location(db, other.id, {"name": "Gate"})
    with pytest.raises(ValidationError):
        create_talk(db, establishment.id, {
            "title": "Forklifts", "date": "2024-05-01", "conducted_by": "Sue",
            "location_id": foreign.id,
        })
    talk = create_talk(db, establishment.id, {
        "title": "Forklifts", "date": "2024-05-01", "conducted_by": "Sue",
        "location_id": location.id,
    })
    assert talk.location_id == location.id


def test_attendance_and_signing(db, establishment):
    talk = create_talk(db, establishment.id, {
        "title": "Heat Stress", "date": "2024-07-01", "conducted_by": "Sue",
    })
    signer = add_attendee(db, talk.id, "Ana", "E100")
    absent = add_attendee(db, talk.id, "Bo")
    sign_attendee(db, signer.id, "data:image/png;base64,AAAA")
    delete_attendee(db, absent.id)
    complete_talk(db, talk.id)

    d = talk_to_dict(get_talk(db, talk.id))
    assert d["status"] == "completed"
    assert [(a["employee_name"], a["signed"]) for a in d["attendees"]] == [("Ana", True)]


def test_signing_requires_signature(db, establishment):
    talk = create_talk(db, establishment.id, {
        "title": "Heat Stress", "date": "2024-07-01", "conducted_by": "Sue",
    })
    attendee = add_attendee(db, talk.id, "Ana")
    with pytest.raises(ValidationError):
        sign_attendee(db, attendee.id, "")
    assert db.get(ToolboxTalkAttendee, attendee.id).signed_at is None


# ============================================================================
# Job safety analysis
# ============================================================================

def test_jsa_flow(db, establishment):
    db.add(JsaTemplate(name="Hot Work", trade="Welding"))
    db.commit()
    template = list_templates(db)[0]

    jsa = create_jsa(db, establishment.id, {
        "template_id": template.id, "job_name": "Repair rail", "job_date": "2024-08-01",
        "prepared_by": "Lead Lou",
    })
    step = add_jsa_step(db, jsa.id, 1, "Set up welding screen")
    add_jsa_hazard(db, step.id, "Arc flash", "Screens and PPE")
    complete_jsa_step(db, step.id)
    approved = approve_jsa(db, jsa.id, "Safety Sam", "Manager Mo")

    d = jsa_to_dict(approved)
    assert d["status"] == "approved"
    assert d["approved_by"] == "Manager Mo"
    assert d["steps"][0]["is_completed"] is True
    assert d["steps"][0]["hazards"][0]["hazard_description"] == "Arc flash"
    assert [j.id for j in list_jsas(db, establishment.id)] == [jsa.id]


def test_jsa_cannot_be_approved_without_steps(db, establishment):
    jsa = create_jsa(db, establishment.id, {
        "job_name": "Paint tank", "job_date": "2024-08-01", "prepared_by": "Lou",
    })
    with pytest.raises(ValidationError):
        approve_jsa(db, jsa.id, "Sam", "Mo")


def test_jsa_requires_job_name(db, establishment):
    with pytest.raises(ValidationError):
        create_jsa(db, establishment.id, {"job_date": "2024-08-01", "prepared_by": "Lou"})


def test_jsa_location_must_belong_to_establishment(db, establishment):
    other = create_establishment(db, {"name": "Yard Two"})
    foreign = create_location(db, other.id, {"name": "Gate"})
    with pytest.raises(ValidationError):
        create_jsa(db, establishment.id, {
            "job_name": "Paint tank", "job_date": "2024-08-01", "prepared_by": "Lou",
            "location_id": foreign.id,
        })
    assert list_jsas(db, establishment.id) == []
