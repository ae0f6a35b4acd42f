"""
SQLAlchemy ORM models for the consultation triage service.
"""
import random
import string
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Time, Float,
    Numeric, ForeignKey, Enum, JSON, UniqueConstraint, Index, event, inspect
)
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func
import enum

from app.db.session import Base


# ============= ENUMS =============

class UserRole(str, enum.Enum):
    USER = "user"
    CONSULTANT = "consultant"
    ADMIN = "admin"


class RiskLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConsultantLevel(str, enum.Enum):
    JUNIOR = "junior"
    SENIOR = "senior"
    EXPERT = "expert"


class TicketStatus(str, enum.Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REFERRED = "referred"
    REJECTED = "rejected"


ACTIVE_TICKET_STATUSES = (TicketStatus.WAITING.value, TicketStatus.IN_PROGRESS.value)


class TicketType(str, enum.Enum):
    INITIAL_FREE = "initial_free"
    PAID_PROGRAM = "paid_program"


class AssignedByType(str, enum.Enum):
    SYSTEM = "system"
    ADMIN = "admin"


class TeamRole(str, enum.Enum):
    PRIMARY = "primary"
    COLLABORATOR = "collaborator"
    REFERRED = "referred"


class FieldType(str, enum.Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    NUMBER = "number"
    DATE = "date"


CHOICE_FIELD_TYPES = (FieldType.SELECT.value, FieldType.RADIO.value, FieldType.CHECKBOX.value)


class DreamClassification(str, enum.Enum):
    KHAYALI_NAFSANI = "khayali_nafsani"
    EMOTIONAL = "emotional"
    SENSITIVE_INDICATION = "sensitive_indication"
    NEEDS_CONSULTATION = "needs_consultation"


class CrisisAlertType(str, enum.Enum):
    KEYWORD_DETECTION = "keyword_detection"
    SYSTEM_ASSESSMENT = "system_assessment"
    PANIC_BUTTON = "panic_button"


class CrisisAlertStatus(str, enum.Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


# Using values_callable semantics: enum values (lowercase) are stored, not names
def enum_values(enum_cls):
    return [e.value for e in enum_cls]


UserRoleType = Enum(*enum_values(UserRole), name='userrole')
RiskLevelType = Enum(*enum_values(RiskLevel), name='risklevel')
ConsultantLevelType = Enum(*enum_values(ConsultantLevel), name='consultantlevel')
TicketStatusType = Enum(*enum_values(TicketStatus), name='ticketstatus')
TicketTypeType = Enum(*enum_values(TicketType), name='tickettype')
AssignedByTypeType = Enum(*enum_values(AssignedByType), name='assignedbytype')
TeamRoleType = Enum(*enum_values(TeamRole), name='teamrole')
FieldTypeType = Enum(*enum_values(FieldType), name='fieldtype')
CrisisAlertTypeType = Enum(*enum_values(CrisisAlertType), name='crisisalerttype')
CrisisAlertStatusType = Enum(*enum_values(CrisisAlertStatus), name='crisisalertstatus')


# ============= USERS & AUDIT =============

class User(Base):
    """End users, consultants and admins (identity is owned by the auth service)."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255))
    role = Column(UserRoleType, default=UserRole.USER.value)
    city = Column(String(100))
    province = Column(String(100))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    consultant = relationship("Consultant", back_populates="user", uselist=False)


class AuditLog(Base):
    """Compliance-grade audit log."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), index=True)
    entity_id = Column(Integer)
    details = Column(JSON)
    ip_address = Column(String(50))


# ============= CONSULTANTS =============

class ConsultationCategory(Base):
    """Consultation specialisations (also the consultant specialist category)."""
    __tablename__ = "consultation_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    is_active = Column(Boolean, default=True)


class Consultant(Base):
    """Provider profile used by the routing engine."""
    __tablename__ = "consultants"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    specialist_category_id = Column(Integer, ForeignKey("consultation_categories.id"), nullable=True, index=True)
    level = Column(ConsultantLevelType, default=ConsultantLevel.JUNIOR.value, index=True)
    city = Column(String(100))
    province = Column(String(100))
    is_active = Column(Boolean, default=True)
    is_verified = Column(Boolean, default=False)
    verified_at = Column(DateTime(timezone=True))
    bio = Column(Text)
    rating_average = Column(Numeric(3, 2, asdecimal=False), default=0)
    total_ratings = Column(Integer, default=0)
    total_cases = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    deleted_at = Column(DateTime(timezone=True))

    user = relationship("User", back_populates="consultant")
    schedules = relationship(
        "ConsultantSchedule",
        back_populates="consultant",
        cascade="all, delete-orphan",
        order_by="ConsultantSchedule.day_of_week",
    )
    ratings = relationship("Rating", back_populates="consultant")

    @property
    def name(self) -> str:
        return self.user.full_name if self.user else f"Consultant #{self.id}"


class ConsultantSchedule(Base):
    """Weekly availability window. day_of_week: 0 = Sunday ... 6 = Saturday."""
    __tablename__ = "consultant_schedules"

    id = Column(Integer, primary_key=True, index=True)
    consultant_id = Column(Integer, ForeignKey("consultants.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True)

    consultant = relationship("Consultant", back_populates="schedules")


class Rating(Base):
    """End-user rating of a consultant."""
    __tablename__ = "ratings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    consultant_id = Column(Integer, ForeignKey("consultants.id"), nullable=False, index=True)
    ticket_id = Column(Integer, ForeignKey("consultation_tickets.id"), nullable=True)
    rating = Column(Integer, nullable=False)
    review = Column(Text)
    communication_rating = Column(Integer)
    professionalism_rating = Column(Integer)
    knowledge_rating = Column(Integer)
    helpfulness_rating = Column(Integer)
    is_anonymous = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    consultant = relationship("Consultant", back_populates="ratings")

    @property
    def average_detail_rating(self) -> float:
        details = [
            r for r in (
                self.communication_rating,
                self.professionalism_rating,
                self.knowledge_rating,
                self.helpfulness_rating,
            ) if r
        ]
        return round(sum(details) / len(details), 1) if details else 0.0


# ============= DYNAMIC FORMS =============

class FormTemplate(Base):
    """Versioned screening questionnaire definition."""
    __tablename__ = "form_templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    description = Column(Text)
    type = Column(String(50), default="screening")
    category_id = Column(Integer, ForeignKey("consultation_categories.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=False)
    is_default = Column(Boolean, default=False)
    version = Column(Integer, default=1)
    settings = Column(JSON, default=dict)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True))

    fields = relationship(
        "FormField",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="FormField.order",
    )
    submissions = relationship("FormSubmission", back_populates="template")


class FormField(Base):
    """A question in a template; risk_weight is added whenever it is answered."""
    __tablename__ = "form_fields"

    id = Column(Integer, primary_key=True, index=True)
    form_template_id = Column(Integer, ForeignKey("form_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    field_key = Column(String(100), nullable=False)
    label = Column(String(500), nullable=False)
    help_text = Column(Text)
    field_type = Column(FieldTypeType, nullable=False, default=FieldType.TEXT.value)
    validation_rules = Column(JSON, default=list)
    is_required = Column(Boolean, default=False)
    is_core_field = Column(Boolean, default=False)
    order = Column(Integer, default=0)
    risk_weight = Column(Integer, default=0)
    conditional_logic = Column(JSON, nullable=True)  # {"field_key", "operator", "value"}

    template = relationship("FormTemplate", back_populates="fields")
    options = relationship(
        "FormFieldOption",
        back_populates="field",
        cascade="all, delete-orphan",
        order_by="FormFieldOption.order",
    )
    answers = relationship("FormSubmissionAnswer", back_populates="field")

    __table_args__ = (
        UniqueConstraint('form_template_id', 'field_key', name='uq_form_field_template_key'),
    )

    @property
    def has_options(self) -> bool:
        return self.field_type in CHOICE_FIELD_TYPES


class FormFieldOption(Base):
    """Selectable answer carrying its own risk score (0-10)."""
    __tablename__ = "form_field_options"

    id = Column(Integer, primary_key=True, index=True)
    form_field_id = Column(Integer, ForeignKey("form_fields.id", ondelete="CASCADE"), nullable=False, index=True)
    label = Column(String(500), nullable=False)
    value = Column(String(255), nullable=False)
    risk_score = Column(Integer, default=0)
    order = Column(Integer, default=0)
    requires_explanation = Column(Boolean, default=False)
    extra_data = Column("metadata", JSON, default=dict)

    field = relationship("FormField", back_populates="options")


class FormSubmission(Base):
    """One completed instance of a template."""
    __tablename__ = "form_submissions"

    id = Column(Integer, primary_key=True, index=True)
    form_template_id = Column(Integer, ForeignKey("form_templates.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    consultation_ticket_id = Column(Integer, ForeignKey("consultation_tickets.id"), nullable=True)
    total_risk_score = Column(Integer, default=0)
    risk_level = Column(RiskLevelType, default=RiskLevel.LOW.value, index=True)
    submitted_at = Column(DateTime(timezone=True))

    template = relationship("FormTemplate", back_populates="submissions")
    answers = relationship(
        "FormSubmissionAnswer",
        back_populates="submission",
        cascade="all, delete-orphan",
    )

    def is_critical(self) -> bool:
        return self.risk_level == RiskLevel.CRITICAL.value

    def needs_expert(self) -> bool:
        return self.risk_level in (RiskLevel.CRITICAL.value, RiskLevel.HIGH.value)


class FormSubmissionAnswer(Base):
    """Answer to one field; answer_value may be a scalar or a list."""
    __tablename__ = "form_submission_answers"

    id = Column(Integer, primary_key=True, index=True)
    form_submission_id = Column(Integer, ForeignKey("form_submissions.id", ondelete="CASCADE"), nullable=False, index=True)
    form_field_id = Column(Integer, ForeignKey("form_fields.id"), nullable=False)
    answer_value = Column(JSON)
    risk_score = Column(Integer, default=0)
    explanation = Column(Text)

    submission = relationship("FormSubmission", back_populates="answers")
    field = relationship("FormField", back_populates="answers")


# ============= TICKETS =============

TICKET_NUMBER_PREFIX = "TKT"


def generate_ticket_number(moment: datetime = None) -> str:
    """TKT + YYYYmmddHHMMSS + 4 random uppercase alphanumerics."""
    moment = moment or datetime.now()
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"{TICKET_NUMBER_PREFIX}{moment.strftime('%Y%m%d%H%M%S')}{suffix}"


class ConsultationTicket(Base):
    """A consultation case and its routing decision."""
    __tablename__ = "consultation_tickets"

    id = Column(Integer, primary_key=True, index=True)
    ticket_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("consultation_categories.id"), nullable=True)
    form_submission_id = Column(Integer, ForeignKey("form_submissions.id", use_alter=True), nullable=True)
    subject = Column(String(255))
    problem_description = Column(Text)
    status = Column(TicketStatusType, default=TicketStatus.WAITING.value, index=True)
    type = Column(TicketTypeType, default=TicketType.INITIAL_FREE.value)
    risk_level = Column(RiskLevelType, default=RiskLevel.LOW.value)
    urgency = Column(String(20))
    consultant_id = Column(Integer, ForeignKey("consultants.id"), nullable=True, index=True)
    assigned_by_type = Column(AssignedByTypeType, nullable=True)
    assigned_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    override_reason = Column(Text)
    routing_score = Column(Integer, nullable=True)
    routing_metadata = Column(JSON, nullable=True)
    assigned_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", foreign_keys=[user_id])
    consultant = relationship("Consultant", foreign_keys=[consultant_id])
    form_submission = relationship("FormSubmission", foreign_keys=[form_submission_id])
    team = relationship(
        "ConsultationTicketConsultant",
        back_populates="ticket",
        cascade="all, delete-orphan",
    )
    messages = relationship("Message", back_populates="ticket", order_by="Message.created_at")

    __table_args__ = (
        Index('ix_tickets_consultant_status', 'consultant_id', 'status'),
    )

    @validates("ticket_number")
    def _validate_ticket_number(self, key, value):
        state = inspect(self)
        current = getattr(self, key) if state.has_identity else self.__dict__.get(key)
        if current and value != current:
            raise ValueError("ticket_number is immutable once assigned")
        return value


@event.listens_for(ConsultationTicket, "before_insert")
def _assign_ticket_number(mapper, connection, target):
    if not target.ticket_number:
        target.ticket_number = generate_ticket_number()


class ConsultationTicketConsultant(Base):
    """Care-team membership of a consultant on a ticket."""
    __tablename__ = "consultation_ticket_consultants"

    id = Column(Integer, primary_key=True, index=True)
    consultation_ticket_id = Column(Integer, ForeignKey("consultation_tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    consultant_id = Column(Integer, ForeignKey("consultants.id"), nullable=False, index=True)
    role = Column(TeamRoleType, nullable=False)
    invited_by = Column(Integer, ForeignKey("consultants.id"), nullable=True)
    invited_at = Column(DateTime(timezone=True))
    user_approved_at = Column(DateTime(timezone=True))
    is_active = Column(Boolean, default=True)
    internal_notes = Column(Text)
    handover_notes = Column(Text)

    ticket = relationship("ConsultationTicket", back_populates="team")
    consultant = relationship("Consultant", foreign_keys=[consultant_id])
    inviter = relationship("Consultant", foreign_keys=[invited_by])

    __table_args__ = (
        UniqueConstraint('consultation_ticket_id', 'consultant_id', 'role', name='uq_ticket_consultant_role'),
    )

    def is_primary(self) -> bool:
        return self.role == TeamRole.PRIMARY.value

    def is_collaborator(self) -> bool:
        return self.role == TeamRole.COLLABORATOR.value

    def is_referred(self) -> bool:
        return self.role == TeamRole.REFERRED.value

    def is_approved(self) -> bool:
        # Primary and referred members are approved implicitly
        if self.is_primary() or self.is_referred():
            return True
        return self.user_approved_at is not None

    def is_pending_approval(self) -> bool:
        return self.is_collaborator() and self.user_approved_at is None

    def can_invite_collaborators(self) -> bool:
        return self.is_primary()

    def can_refer_case(self) -> bool:
        return self.is_primary()

    def can_close_case(self) -> bool:
        return self.is_primary()

    def can_view_internal_notes(self) -> bool:
        return self.is_approved()

    def can_send_messages(self) -> bool:
        return self.is_approved() and bool(self.is_active)


class Message(Base):
    """Ticket conversation message (owned by the messaging service)."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("consultation_tickets.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    ticket = relationship("ConsultationTicket", back_populates="messages")

    __table_args__ = (
        Index('ix_messages_ticket_sender_created', 'ticket_id', 'sender_id', 'created_at'),
    )


# ============= CLASSIFICATION & CRISIS =============

class Dream(Base):
    """Dream journal entry with its keyword classification."""
    __tablename__ = "dreams"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    dream_content = Column(Text, nullable=False)
    dream_date = Column(Date)
    emotional_condition = Column(String(50))
    physical_condition = Column(String(50))
    classification = Column(String(50), index=True)
    confidence = Column(Float)
    auto_analysis = Column(Text)
    suggested_actions = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CrisisAlert(Base):
    """Escalation raised by keyword detection or risk assessment."""
    __tablename__ = "crisis_alerts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    ticket_id = Column(Integer, ForeignKey("consultation_tickets.id"), nullable=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=True)
    alert_type = Column(CrisisAlertTypeType, nullable=False)
    detected_keywords = Column(JSON, default=list)
    severity = Column(RiskLevelType, nullable=False)
    status = Column(CrisisAlertStatusType, default=CrisisAlertStatus.PENDING.value, index=True)
    assigned_to_admin_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text)
    context = Column(Text)
    acknowledged_at = Column(DateTime(timezone=True))
    resolved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
