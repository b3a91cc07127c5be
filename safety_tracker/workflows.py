# safety_tracker/workflows.py
# Toolbox talks and job safety analyses.
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from . import validation
from .errors import ValidationError, get_or_404
from .locations import check_location
from .models import (
    Establishment, JsaHazard, JsaInstance, JsaStep, JsaTemplate,
    ToolboxTalk, ToolboxTalkAttendee, ToolboxTalkTopic,
)


# ---------- Toolbox talks ----------

def list_topics(db: Session, include_inactive: bool = False) -> List[ToolboxTalkTopic]:
    q = db.query(ToolboxTalkTopic)
    if not include_inactive:
        q = q.filter(ToolboxTalkTopic.is_active.is_(True))
    return q.order_by(ToolboxTalkTopic.category, ToolboxTalkTopic.title).all()


def create_topic(db: Session, data: Dict[str, Any]) -> ToolboxTalkTopic:
    validation.validate_not_empty(data.get("title"), "Title")
    validation.validate_not_empty(data.get("content"), "Content")
    topic = ToolboxTalkTopic(
        title=data["title"],
        description=data.get("description"),
        content=data["content"],
        category=data.get("category"),
        duration_minutes=data.get("duration_minutes") or 15,
    )
    db.add(topic)
    db.commit()
    db.refresh(topic)
    return topic


def create_talk(db: Session, establishment_id: int, data: Dict[str, Any]) -> ToolboxTalk:
    get_or_404(db, Establishment, establishment_id, "Establishment")
    topic_id = data.get("topic_id")
    title = data.get("title")
    if topic_id is not None:
        topic = get_or_404(db, ToolboxTalkTopic, topic_id, "Toolbox talk topic")
        title = title or topic.title
    validation.validate_not_empty(title, "Title")
    validation.validate_date(data.get("date"), "Date")
    validation.validate_not_empty(data.get("conducted_by"), "Conducted by")
    check_location(db, establishment_id, data.get("location_id"))

    talk = ToolboxTalk(
        establishment_id=establishment_id,
        topic_id=topic_id,
        location_id=data.get("location_id"),
        title=title,
        date=data["date"],
        conducted_by=data["conducted_by"],
        notes=data.get("notes"),
    )
    db.add(talk)
    db.commit()
    db.refresh(talk)
    return talk


def get_talk(db: Session, talk_id: int) -> ToolboxTalk:
    return get_or_404(db, ToolboxTalk, talk_id, "Toolbox talk")


def list_talks(db: Session, establishment_id: int) -> List[ToolboxTalk]:
    get_or_404(db, Establishment, establishment_id, "Establishment")
    return (
        db.query(ToolboxTalk)
        .filter(ToolboxTalk.establishment_id == establishment_id)
        .order_by(ToolboxTalk.date.desc())
        .all()
    )


def complete_talk(db: Session, talk_id: int) -> ToolboxTalk:
    talk = get_talk(db, talk_id)
    talk.status = "completed"
    db.commit()
    db.refresh(talk)
    return talk


def add_attendee(db: Session, talk_id: int, employee_name: str,
                 employee_id: Optional[str] = None) -> ToolboxTalkAttendee:
    get_talk(db, talk_id)
    validation.validate_not_empty(employee_name, "Employee name")
    attendee = ToolboxTalkAttendee(
        talk_id=talk_id, employee_name=employee_name, employee_id=employee_id,
    )
    db.add(attendee)
    db.commit()
    db.refresh(attendee)
    return attendee


def sign_attendee(db: Session, attendee_id: int, signature_data: str) -> ToolboxTalkAttendee:
    attendee = get_or_404(db, ToolboxTalkAttendee, attendee_id, "Attendee")
    validation.validate_not_empty(signature_data, "Signature")
    attendee.signature_data = signature_data
    attendee.signed_at = datetime.utcnow()
    db.commit()
    db.refresh(attendee)
    return attendee


def delete_attendee(db: Session, attendee_id: int) -> None:
    db.delete(get_or_404(db, ToolboxTalkAttendee, attendee_id, "Attendee"))
    db.commit()


def talk_to_dict(t: ToolboxTalk) -> Dict[str, Any]:
    return {
        "id": t.id,
        "topic_id": t.topic_id,
        "establishment_id": t.establishment_id,
        "location_id": t.location_id,
        "title": t.title,
        "date": t.date,
        "conducted_by": t.conducted_by,
        "notes": t.notes,
        "status": t.status,
        "attendees": [
            {
                "id": a.id,
                "employee_name": a.employee_name,
                "employee_id": a.employee_id,
                "signed": a.signed_at is not None,
                "signed_at": a.signed_at.isoformat() if a.signed_at else None,
            }
            for a in t.attendees
        ],
    }


# ---------- Job safety analysis ----------

def list_templates(db: Session) -> List[JsaTemplate]:
    return (
        db.query(JsaTemplate)
        .filter(JsaTemplate.is_active.is_(True))
        .order_by(JsaTemplate.name)
        .all()
    )


def create_jsa(db: Session, establishment_id: int, data: Dict[str, Any]) -> JsaInstance:
    get_or_404(db, Establishment, establishment_id, "Establishment")
    if data.get("template_id") is not None:
        get_or_404(db, JsaTemplate, data["template_id"], "JSA template")
    validation.validate_not_empty(data.get("job_name"), "Job name")
    validation.validate_date(data.get("job_date"), "Job date")
    validation.validate_not_empty(data.get("prepared_by"), "Prepared by")
    check_location(db, establishment_id, data.get("location_id"))

    jsa = JsaInstance(
        establishment_id=establishment_id,
        template_id=data.get("template_id"),
        location_id=data.get("location_id"),
        job_name=data["job_name"],
        job_date=data["job_date"],
        prepared_by=data["prepared_by"],
    )
    db.add(jsa)
    db.commit()
    db.refresh(jsa)
    return jsa


def get_jsa(db: Session, jsa_id: int) -> JsaInstance:
    return get_or_404(db, JsaInstance, jsa_id, "JSA")


def list_jsas(db: Session, establishment_id: int) -> List[JsaInstance]:
    get_or_404(db, Establishment, establishment_id, "Establishment")
    return (
        db.query(JsaInstance)
        .filter(JsaInstance.establishment_id == establishment_id)
        .order_by(JsaInstance.job_date.desc())
        .all()
    )


def add_jsa_step(db: Session, jsa_id: int, step_number: int, task_description: str) -> JsaStep:
    get_jsa(db, jsa_id)
    validation.validate_not_empty(task_description, "Task description")
    step = JsaStep(jsa_instance_id=jsa_id, step_number=step_number,
                   task_description=task_description)
    db.add(step)
    db.commit()
    db.refresh(step)
    return step


def add_jsa_hazard(db: Session, step_id: int, hazard_description: str,
                   control_measure: Optional[str] = None) -> JsaHazard:
    get_or_404(db, JsaStep, step_id, "JSA step")
    validation.validate_not_empty(hazard_description, "Hazard")
    hazard = JsaHazard(step_id=step_id, hazard_description=hazard_description,
                       control_measure=control_measure)
    db.add(hazard)
    db.commit()
    db.refresh(hazard)
    return hazard


def complete_jsa_step(db: Session, step_id: int, is_completed: bool = True) -> JsaStep:
    step = get_or_404(db, JsaStep, step_id, "JSA step")
    step.is_completed = is_completed
    db.commit()
    db.refresh(step)
    return step


def approve_jsa(db: Session, jsa_id: int, reviewed_by: str, approved_by: str) -> JsaInstance:
    jsa = get_jsa(db, jsa_id)
    validation.validate_not_empty(approved_by, "Approved by")
    if not jsa.steps:
        raise ValidationError(f"JSA {jsa_id} has no steps to approve")
    jsa.reviewed_by = reviewed_by
    jsa.approved_by = approved_by
    jsa.status = "approved"
    db.commit()
    db.refresh(jsa)
    return jsa


def jsa_to_dict(j: JsaInstance) -> Dict[str, Any]:
    return {
        "id": j.id,
        "template_id": j.template_id,
        "establishment_id": j.establishment_id,
        "location_id": j.location_id,
        "job_name": j.job_name,
        "job_date": j.job_date,
        "prepared_by": j.prepared_by,
        "reviewed_by": j.reviewed_by,
        "approved_by": j.approved_by,
        "status": j.status,
        "steps": [
            {
                "id": s.id,
                "step_number": s.step_number,
                "task_description": s.task_description,
                "is_completed": s.is_completed,
                "hazards": [
                    {"id": h.id, "hazard_description": h.hazard_description,
                     "control_measure": h.control_measure}
                    for h in s.hazards
                ],
            }
            for s in j.steps
        ],
    }
