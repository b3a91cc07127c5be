# safety_tracker/models.py
from datetime import date, datetime

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from .db import Base


# Classification keys and their regulatory display labels.
OUTCOME_SEVERITY_LABELS = {
    "death": "Death",
    "days_away": "Days Away From Work",
    "job_transfer_restriction": "Job Transfer or Restriction",
    "other_recordable": "Other Recordable Cases",
}

INJURY_TYPE_LABELS = {
    "injury": "Injury",
    "skin_disorder": "Skin Disorder",
    "respiratory": "Respiratory Condition",
    "poisoning": "Poisoning",
    "hearing_loss": "Hearing Loss",
    "other_illness": "All Other Illnesses",
}

INCIDENT_STATUSES = ("open", "in_review", "closed")
CORRECTIVE_ACTION_STATUSES = ("open", "in_progress", "completed")
RCA_METHODS = ("five_whys", "fishbone")
FISHBONE_CATEGORIES = (
    "manpower", "methods", "materials", "machinery", "environment", "management",
)

PRIVACY_PLACEHOLDER = "Privacy Case"


def _now():
    return datetime.utcnow()


class Establishment(Base):
    __tablename__ = "establishments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    street_address = Column(String(255))
    city = Column(String(120))
    state = Column(String(2))
    zip_code = Column(String(10))
    industry_description = Column(String(255))
    naics_code = Column(String(6))
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    locations = relationship(
        "Location", back_populates="establishment", cascade="all, delete-orphan",
        passive_deletes=True,
    )
    incidents = relationship(
        "Incident", back_populates="establishment", cascade="all, delete-orphan",
        passive_deletes=True,
    )
    annual_stats = relationship(
        "AnnualStats", cascade="all, delete-orphan", passive_deletes=True,
    )
    toolbox_talks = relationship(
        "ToolboxTalk", cascade="all, delete-orphan", passive_deletes=True,
    )
    jsa_instances = relationship(
        "JsaInstance", cascade="all, delete-orphan", passive_deletes=True,
    )


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    establishment_id = Column(
        Integer, ForeignKey("establishments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = Column(String(255), nullable=False)
    address = Column(String(255))
    city = Column(String(120))
    state = Column(String(2))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    establishment = relationship("Establishment", back_populates="locations")


class Incident(Base):
    __tablename__ = "incidents"
    __table_args__ = (
        UniqueConstraint("establishment_id", "case_year", "case_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # Sequential per establishment per calendar year; never rewritten.
    case_number = Column(Integer, nullable=False)
    case_year = Column(Integer, nullable=False)
    establishment_id = Column(
        Integer, ForeignKey("establishments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True,
    )

    # Employee (OSHA 301 section A)
    employee_name = Column(String(255), nullable=False)
    employee_job_title = Column(String(255))
    employee_address = Column(String(255))
    employee_city = Column(String(120))
    employee_state = Column(String(2))
    employee_zip = Column(String(10))
    employee_dob = Column(String(10))
    employee_hire_date = Column(String(10))
    employee_gender = Column(String(20))
    is_privacy_case = Column(Boolean, default=False, nullable=False)

    # Incident details (section C)
    incident_date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    incident_time = Column(String(8))
    work_start_time = Column(String(8))
    where_occurred = Column(String(255))
    description = Column(Text, nullable=False)
    activity_before_incident = Column(Text)
    how_injury_occurred = Column(Text)
    injury_description = Column(Text)
    object_substance = Column(Text)

    # Healthcare (section B)
    physician_name = Column(String(255))
    treatment_facility = Column(String(255))
    facility_address = Column(String(255))
    facility_city_state_zip = Column(String(255))
    treated_in_er = Column(Boolean)
    hospitalized_overnight = Column(Boolean)

    # "death" | "days_away" | "job_transfer_restriction" | "other_recordable"
    outcome_severity = Column(String(32), default="other_recordable", nullable=False)
    days_away_count = Column(Integer, default=0, nullable=False)
    days_restricted_count = Column(Integer, default=0, nullable=False)
    date_of_death = Column(String(10))
    # "injury" | "skin_disorder" | "respiratory" | "poisoning" | "hearing_loss" | "other_illness"
    injury_illness_type = Column(String(32), default="injury", nullable=False)

    is_recordable = Column(Boolean, default=True, nullable=False)
    # "open" | "in_review" | "closed"
    status = Column(String(20), default="open", nullable=False)

    # Completed by (section D)
    completed_by = Column(String(255))
    completed_by_title = Column(String(255))
    completed_by_phone = Column(String(30))
    completed_date = Column(String(10))

    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    establishment = relationship("Establishment", back_populates="incidents")
    location = relationship("Location")
    rca_sessions = relationship(
        "RcaSession", back_populates="incident", cascade="all, delete-orphan",
        passive_deletes=True,
    )
    corrective_actions = relationship(
        "CorrectiveAction", back_populates="incident", cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def display_name(self) -> str:
        return PRIVACY_PLACEHOLDER if self.is_privacy_case else self.employee_name


class AnnualStats(Base):
    __tablename__ = "annual_stats"
    __table_args__ = (UniqueConstraint("establishment_id", "year"),)

    id = Column(Integer, primary_key=True, index=True)
    establishment_id = Column(
        Integer, ForeignKey("establishments.id", ondelete="CASCADE"), nullable=False,
    )
    year = Column(Integer, nullable=False)
    avg_employees = Column(Integer, nullable=False)
    total_hours_worked = Column(Integer, nullable=False)
    certifier_name = Column(String(255))
    certifier_title = Column(String(255))
    certifier_phone = Column(String(30))
    certification_date = Column(String(10))


# ---------- Root cause analysis ----------

class RcaSession(Base):
    __tablename__ = "rca_sessions"

    id = Column(Integer, primary_key=True, index=True)
    incident_id = Column(
        Integer, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False,
    )
    method = Column(String(20), nullable=False)  # "five_whys" | "fishbone"
    status = Column(String(20), default="in_progress", nullable=False)
    root_cause_summary = Column(Text)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    incident = relationship("Incident", back_populates="rca_sessions")
    five_whys_steps = relationship(
        "FiveWhysStep", cascade="all, delete-orphan", passive_deletes=True,
        order_by="FiveWhysStep.step_number",
    )
    fishbone_categories = relationship(
        "FishboneCategory", cascade="all, delete-orphan", passive_deletes=True,
        order_by="FishboneCategory.sort_order",
    )


class FiveWhysStep(Base):
    __tablename__ = "five_whys_steps"

    id = Column(Integer, primary_key=True, index=True)
    rca_session_id = Column(
        Integer, ForeignKey("rca_sessions.id", ondelete="CASCADE"), nullable=False,
    )
    step_number = Column(Integer, nullable=False)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)


class FishboneCategory(Base):
    __tablename__ = "fishbone_categories"

    id = Column(Integer, primary_key=True, index=True)
    rca_session_id = Column(
        Integer, ForeignKey("rca_sessions.id", ondelete="CASCADE"), nullable=False,
    )
    category = Column(String(20), nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)

    causes = relationship(
        "FishboneCause", cascade="all, delete-orphan", passive_deletes=True,
        order_by="FishboneCause.sort_order",
    )


class FishboneCause(Base):
    __tablename__ = "fishbone_causes"

    id = Column(Integer, primary_key=True, index=True)
    category_id = Column(
        Integer, ForeignKey("fishbone_categories.id", ondelete="CASCADE"),
        nullable=False,
    )
    cause_text = Column(Text, nullable=False)
    is_root_cause = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)


class CorrectiveAction(Base):
    __tablename__ = "corrective_actions"

    id = Column(Integer, primary_key=True, index=True)
    incident_id = Column(
        Integer, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False,
    )
    rca_session_id = Column(
        Integer, ForeignKey("rca_sessions.id", ondelete="SET NULL"), nullable=True,
    )
    description = Column(Text, nullable=False)
    assigned_to = Column(String(255))
    due_date = Column(String(10))
    # Stored: "open" | "in_progress" | "completed". "overdue" is derived.
    status = Column(String(20), default="open", nullable=False)
    completed_date = Column(String(10))
    notes = Column(Text)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    incident = relationship("Incident", back_populates="corrective_actions")

    def is_overdue(self, today: date = None) -> bool:
        if self.status == "completed" or not self.due_date:
            return False
        today = today or date.today()
        return self.due_date < today.isoformat()

    def effective_status(self, today: date = None) -> str:
        return "overdue" if self.is_overdue(today) else self.status


# ---------- Toolbox talks ----------

class ToolboxTalkTopic(Base):
    __tablename__ = "toolbox_talk_topics"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    content = Column(Text, nullable=False)
    category = Column(String(60))
    duration_minutes = Column(Integer, default=15, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class ToolboxTalk(Base):
    __tablename__ = "toolbox_talks"

    id = Column(Integer, primary_key=True, index=True)
    topic_id = Column(
        Integer, ForeignKey("toolbox_talk_topics.id", ondelete="SET NULL"),
        nullable=True,
    )
    establishment_id = Column(
        Integer, ForeignKey("establishments.id", ondelete="CASCADE"), nullable=False,
    )
    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True,
    )
    title = Column(String(255), nullable=False)
    date = Column(String(10), nullable=False)
    conducted_by = Column(String(255), nullable=False)
    notes = Column(Text)
    status = Column(String(20), default="scheduled", nullable=False)

    attendees = relationship(
        "ToolboxTalkAttendee", cascade="all, delete-orphan", passive_deletes=True,
        order_by="ToolboxTalkAttendee.employee_name",
    )


class ToolboxTalkAttendee(Base):
    __tablename__ = "toolbox_talk_attendees"

    id = Column(Integer, primary_key=True, index=True)
    talk_id = Column(
        Integer, ForeignKey("toolbox_talks.id", ondelete="CASCADE"), nullable=False,
    )
    employee_name = Column(String(255), nullable=False)
    employee_id = Column(String(60))
    signature_data = Column(Text)
    signed_at = Column(DateTime)


# ---------- Job safety analysis ----------

class JsaTemplate(Base):
    __tablename__ = "jsa_templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    trade = Column(String(120))
    is_active = Column(Boolean, default=True, nullable=False)


class JsaInstance(Base):
    __tablename__ = "jsa_instances"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(
        Integer, ForeignKey("jsa_templates.id", ondelete="SET NULL"), nullable=True,
    )
    establishment_id = Column(
        Integer, ForeignKey("establishments.id", ondelete="CASCADE"), nullable=False,
    )
    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True,
    )
    job_name = Column(String(255), nullable=False)
    job_date = Column(String(10), nullable=False)
    prepared_by = Column(String(255), nullable=False)
    reviewed_by = Column(String(255))
    approved_by = Column(String(255))
    # "draft" | "approved"
    status = Column(String(20), default="draft", nullable=False)

    steps = relationship(
        "JsaStep", cascade="all, delete-orphan", passive_deletes=True,
        order_by="JsaStep.step_number",
    )


class JsaStep(Base):
    __tablename__ = "jsa_steps"

    id = Column(Integer, primary_key=True, index=True)
    jsa_instance_id = Column(
        Integer, ForeignKey("jsa_instances.id", ondelete="CASCADE"), nullable=False,
    )
    step_number = Column(Integer, nullable=False)
    task_description = Column(Text, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)

    hazards = relationship(
        "JsaHazard", cascade="all, delete-orphan", passive_deletes=True,
    )


class JsaHazard(Base):
    __tablename__ = "jsa_hazards"

    id = Column(Integer, primary_key=True, index=True)
    step_id = Column(
        Integer, ForeignKey("jsa_steps.id", ondelete="CASCADE"), nullable=False,
    )
    hazard_description = Column(Text, nullable=False)
    control_measure = Column(Text)
