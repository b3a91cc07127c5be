# safety_tracker/rca.py
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from . import validation
from .errors import ValidationError, get_or_404
from .models import (
    CorrectiveAction, FishboneCategory, FishboneCause, FiveWhysStep, Incident,
    RcaSession, CORRECTIVE_ACTION_STATUSES, FISHBONE_CATEGORIES, RCA_METHODS,
)

logger = logging.getLogger(__name__)


# ---------- Sessions ----------

def create_rca_session(db: Session, incident_id: int, method: str) -> RcaSession:
    get_or_404(db, Incident, incident_id, "Incident")
    validation.validate_choice(method, RCA_METHODS, "RCA method")
    session = RcaSession(incident_id=incident_id, method=method)
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info("Started %s RCA session %s for incident %s", method, session.id, incident_id)
    return session


def get_rca_session(db: Session, session_id: int) -> RcaSession:
    return get_or_404(db, RcaSession, session_id, "RCA session")


def list_rca_sessions(db: Session, incident_id: int) -> List[RcaSession]:
    get_or_404(db, Incident, incident_id, "Incident")
    return (
        db.query(RcaSession)
        .filter(RcaSession.incident_id == incident_id)
        .order_by(RcaSession.created_at.desc(), RcaSession.id.desc())
        .all()
    )


def complete_rca_session(db: Session, session_id: int, root_cause_summary: str) -> RcaSession:
    session = get_rca_session(db, session_id)
    validation.validate_not_empty(root_cause_summary, "Root cause summary")
    session.status = "completed"
    session.root_cause_summary = root_cause_summary
    db.commit()
    db.refresh(session)
    return session


def delete_rca_session(db: Session, session_id: int) -> None:
    db.delete(get_rca_session(db, session_id))
    db.commit()


# ---------- Five whys ----------

def add_five_whys_step(db: Session, session_id: int, step_number: int,
                       question: str, answer: str) -> FiveWhysStep:
    session = get_rca_session(db, session_id)
    if session.method != "five_whys":
        raise ValidationError(f"RCA session {session_id} is not a five whys analysis")
    validation.validate_not_empty(question, "Question")
    step = FiveWhysStep(
        rca_session_id=session_id, step_number=step_number,
        question=question, answer=answer or "",
    )
    db.add(step)
    db.commit()
    db.refresh(step)
    return step


def list_five_whys_steps(db: Session, session_id: int) -> List[FiveWhysStep]:
    return list(get_rca_session(db, session_id).five_whys_steps)


def update_five_whys_step(db: Session, step_id: int, question: Optional[str] = None,
                          answer: Optional[str] = None) -> FiveWhysStep:
    step = get_or_404(db, FiveWhysStep, step_id, "Five Whys step")
    if question is not None:
        validation.validate_not_empty(question, "Question")
        step.question = question
    if answer is not None:
        step.answer = answer
    db.commit()
    db.refresh(step)
    return step


# ---------- Fishbone ----------

def add_fishbone_category(db: Session, session_id: int, category: str,
                          sort_order: int = 0) -> FishboneCategory:
    session = get_rca_session(db, session_id)
    if session.method != "fishbone":
        raise ValidationError(f"RCA session {session_id} is not a fishbone analysis")
    validation.validate_choice(category, FISHBONE_CATEGORIES, "Fishbone category")
    cat = FishboneCategory(rca_session_id=session_id, category=category, sort_order=sort_order)
    db.add(cat)
    db.commit()
    db.refresh(cat)
    return cat


def list_fishbone_categories(db: Session, session_id: int) -> List[FishboneCategory]:
    return list(get_rca_session(db, session_id).fishbone_categories)


def add_fishbone_cause(db: Session, category_id: int, cause_text: str,
                       is_root_cause: bool = False, sort_order: int = 0) -> FishboneCause:
    get_or_404(db, FishboneCategory, category_id, "Fishbone category")
    validation.validate_not_empty(cause_text, "Cause")
    cause = FishboneCause(
        category_id=category_id, cause_text=cause_text,
        is_root_cause=is_root_cause, sort_order=sort_order,
    )
    db.add(cause)
    db.commit()
    db.refresh(cause)
    return cause


def update_fishbone_cause(db: Session, cause_id: int, cause_text: Optional[str] = None,
                          is_root_cause: Optional[bool] = None) -> FishboneCause:
    cause = get_or_404(db, FishboneCause, cause_id, "Fishbone cause")
    if cause_text is not None:
        cause.cause_text = cause_text
    if is_root_cause is not None:
        cause.is_root_cause = is_root_cause
    db.commit()
    db.refresh(cause)
    return cause


def delete_fishbone_cause(db: Session, cause_id: int) -> None:
    db.delete(get_or_404(db, FishboneCause, cause_id, "Fishbone cause"))
    db.commit()


# ---------- Corrective actions ----------

def create_corrective_action(db: Session, incident_id: int, data: Dict[str, Any]) -> CorrectiveAction:
    get_or_404(db, Incident, incident_id, "Incident")
    validation.validate_not_empty(data.get("description"), "Description")
    session_id = data.get("rca_session_id")
    if session_id is not None:
        session = get_rca_session(db, session_id)
        if session.incident_id != incident_id:
            raise ValidationError(
                f"RCA session {session_id} does not belong to incident {incident_id}"
            )
    if data.get("due_date"):
        validation.validate_date(data["due_date"], "Due date")

    action = CorrectiveAction(
        incident_id=incident_id,
        rca_session_id=session_id,
        description=data["description"],
        assigned_to=data.get("assigned_to"),
        due_date=data.get("due_date"),
    )
    db.add(action)
    db.commit()
    db.refresh(action)
    return action


def get_corrective_action(db: Session, action_id: int) -> CorrectiveAction:
    return get_or_404(db, CorrectiveAction, action_id, "Corrective action")


def list_corrective_actions(db: Session, incident_id: int) -> List[CorrectiveAction]:
    get_or_404(db, Incident, incident_id, "Incident")
    return (
        db.query(CorrectiveAction)
        .filter(CorrectiveAction.incident_id == incident_id)
        .order_by(CorrectiveAction.created_at, CorrectiveAction.id)
        .all()
    )


def update_corrective_action(db: Session, action_id: int, data: Dict[str, Any],
                             today: Optional[date] = None) -> CorrectiveAction:
    """Apply edits to an action. Overdue is derived from the due date and cannot be set."""
    action = get_corrective_action(db, action_id)

    status = data.get("status")
    if status == "overdue":
        raise ValidationError("Status 'overdue' is derived from the due date and cannot be set")
    if status is not None:
        validation.validate_choice(status, CORRECTIVE_ACTION_STATUSES, "Status")
    if data.get("due_date"):
        validation.validate_date(data["due_date"], "Due date")
    if data.get("completed_date"):
        validation.validate_date(data["completed_date"], "Completed date")

    for key in ("description", "assigned_to", "due_date", "status", "completed_date", "notes"):
        if data.get(key) is not None:
            setattr(action, key, data[key])

    if action.status == "completed" and not action.completed_date:
        action.completed_date = (today or date.today()).isoformat()
    elif action.status != "completed":
        action.completed_date = None

    db.commit()
    db.refresh(action)
    return action


def delete_corrective_action(db: Session, action_id: int) -> None:
    db.delete(get_corrective_action(db, action_id))
    db.commit()


# ---------- Serialisation ----------

def session_to_dict(s: RcaSession) -> Dict[str, Any]:
    return {
        "id": s.id,
        "incident_id": s.incident_id,
        "method": s.method,
        "status": s.status,
        "root_cause_summary": s.root_cause_summary,
    }


def step_to_dict(s: FiveWhysStep) -> Dict[str, Any]:
    return {
        "id": s.id,
        "rca_session_id": s.rca_session_id,
        "step_number": s.step_number,
        "question": s.question,
        "answer": s.answer,
    }


def category_to_dict(c: FishboneCategory) -> Dict[str, Any]:
    return {
        "id": c.id,
        "rca_session_id": c.rca_session_id,
        "category": c.category,
        "sort_order": c.sort_order,
        "causes": [cause_to_dict(x) for x in c.causes],
    }


def cause_to_dict(c: FishboneCause) -> Dict[str, Any]:
    return {
        "id": c.id,
        "category_id": c.category_id,
        "cause_text": c.cause_text,
        "is_root_cause": c.is_root_cause,
        "sort_order": c.sort_order,
    }


def action_to_dict(a: CorrectiveAction, today: Optional[date] = None) -> Dict[str, Any]:
    return {
        "id": a.id,
        "incident_id": a.incident_id,
        "rca_session_id": a.rca_session_id,
        "description": a.description,
        "assigned_to": a.assigned_to,
        "due_date": a.due_date,
        "status": a.effective_status(today),
        "completed_date": a.completed_date,
        "notes": a.notes,
    }
