"""
Case lifecycle: opening tickets and managing the consultant care team.
"""
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.clock import Clock, utcnow
from app.core.logging import get_logger, audit_logger
from app.db.models import (
    Consultant, ConsultationTicket, ConsultationTicketConsultant, CrisisAlert,
    FormSubmission, RiskLevel, TeamRole, TicketStatus, TicketType,
)
from app.services.consultant_routing import assign_consultant
from app.services.crisis_alerts import escalate_high_risk_case
from app.services.risk_keywords import RiskAssessment, assess_consultation_risk

logger = get_logger(__name__)

URGENCY_MAP = {
    "rendah": "normal",
    "sedang": "urgent",
    "tinggi": "emergency",
}

RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


class CareTeamError(Exception):
    """Base error for care team operations."""


class NotPrimaryConsultantError(CareTeamError):
    """Only the ticket's primary consultant may do this."""


class NotTicketOwnerError(CareTeamError):
    """Only the user who opened the ticket may do this."""


class DuplicateTeamMemberError(CareTeamError):
    """Consultant is already on the care team."""


class InvalidTeamMemberError(CareTeamError):
    """Operation does not apply to this member's role or state."""


class TeamMemberNotFoundError(CareTeamError):
    """Member or consultant does not belong to this ticket."""


# ============= TICKET CREATION =============

@dataclass
class OpenedTicket:
    ticket: ConsultationTicket
    assessment: RiskAssessment
    consultant: Optional[Consultant] = None
    alert: Optional[CrisisAlert] = None


def higher_risk(a: RiskLevel, b: RiskLevel) -> RiskLevel:
    return max(RiskLevel(a), RiskLevel(b), key=RISK_ORDER.index)


def open_ticket(
    db: Session,
    user_id: int,
    subject: str,
    description: str,
    category_id: Optional[int] = None,
    urgency: Optional[str] = None,
    submission: Optional[FormSubmission] = None,
    auto_route: bool = True,
    clock: Clock = utcnow,
) -> OpenedTicket:
    """
    Create a waiting ticket, assess the narrative and route it.

    The ticket risk level is the higher of the narrative assessment and the
    linked submission's level. Escalation alerts are raised before routing so
    they exist even when no consultant can be found.
    """
    assessment = assess_consultation_risk(description)
    risk_level = assessment.risk_level
    if submission is not None and submission.risk_level:
        risk_level = higher_risk(risk_level, submission.risk_level)

    ticket = ConsultationTicket(
        user_id=user_id,
        category_id=category_id,
        subject=subject,
        problem_description=description,
        status=TicketStatus.WAITING.value,
        type=TicketType.INITIAL_FREE.value,
        urgency=URGENCY_MAP.get(urgency or "rendah", "normal"),
        risk_level=risk_level.value,
    )
    db.add(ticket)
    db.flush()

    if submission is not None:
        ticket.form_submission_id = submission.id
        submission.consultation_ticket_id = ticket.id

    alert = None
    if assessment.requires_escalation:
        alert = escalate_high_risk_case(db, ticket, assessment)

    db.commit()
    db.refresh(ticket)
    logger.info(f"Opened ticket {ticket.ticket_number} (risk={risk_level.value})")

    consultant = None
    if auto_route:
        consultant = assign_consultant(db, ticket, submission, clock=clock)
        if consultant is None:
            logger.warning(f"Ticket {ticket.ticket_number} left unassigned: no eligible consultant")

    return OpenedTicket(ticket=ticket, assessment=assessment, consultant=consultant, alert=alert)


# ============= CARE TEAM =============

def get_team(db: Session, ticket: ConsultationTicket) -> List[ConsultationTicketConsultant]:
    order = {TeamRole.PRIMARY.value: 0, TeamRole.REFERRED.value: 1, TeamRole.COLLABORATOR.value: 2}
    members = db.query(ConsultationTicketConsultant).filter(
        ConsultationTicketConsultant.consultation_ticket_id == ticket.id,
        ConsultationTicketConsultant.is_active == True,
    ).all()
    return sorted(members, key=lambda m: (order.get(m.role, 3), m.id))


def _primary_member(db: Session, ticket: ConsultationTicket, consultant: Consultant) -> ConsultationTicketConsultant:
    member = db.query(ConsultationTicketConsultant).filter(
        ConsultationTicketConsultant.consultation_ticket_id == ticket.id,
        ConsultationTicketConsultant.consultant_id == consultant.id,
        ConsultationTicketConsultant.role == TeamRole.PRIMARY.value,
        ConsultationTicketConsultant.is_active == True,
    ).first()
    if member is None:
        raise NotPrimaryConsultantError("Only the primary consultant can manage this case team")
    return member


def _member(db: Session, ticket: ConsultationTicket, member_id: int) -> ConsultationTicketConsultant:
    member = db.query(ConsultationTicketConsultant).filter(
        ConsultationTicketConsultant.id == member_id,
        ConsultationTicketConsultant.consultation_ticket_id == ticket.id,
    ).first()
    if member is None:
        raise TeamMemberNotFoundError(f"Team member {member_id} not found on ticket {ticket.id}")
    return member


def _role_row(db: Session, ticket: ConsultationTicket, consultant_id: int,
              role: TeamRole) -> Optional[ConsultationTicketConsultant]:
    """The (ticket, consultant, role) row, active or not."""
    return db.query(ConsultationTicketConsultant).filter(
        ConsultationTicketConsultant.consultation_ticket_id == ticket.id,
        ConsultationTicketConsultant.consultant_id == consultant_id,
        ConsultationTicketConsultant.role == role.value,
    ).first()


def _target_consultant(db: Session, consultant_id: int) -> Consultant:
    consultant = db.get(Consultant, consultant_id)
    if consultant is None or consultant.deleted_at is not None or not consultant.is_active:
        raise TeamMemberNotFoundError(f"Consultant {consultant_id} not found")
    return consultant


def invite_collaborator(
    db: Session,
    ticket: ConsultationTicket,
    inviter: Consultant,
    consultant_id: int,
    internal_notes: Optional[str] = None,
    clock: Clock = utcnow,
) -> ConsultationTicketConsultant:
    """Primary consultant invites a collaborator; the user must approve before access."""
    _primary_member(db, ticket, inviter)
    _target_consultant(db, consultant_id)

    already = db.query(ConsultationTicketConsultant.id).filter(
        ConsultationTicketConsultant.consultation_ticket_id == ticket.id,
        ConsultationTicketConsultant.consultant_id == consultant_id,
    ).first()
    if already:
        raise DuplicateTeamMemberError("Consultant is already part of this team")

    member = ConsultationTicketConsultant(
        consultation_ticket_id=ticket.id,
        consultant_id=consultant_id,
        role=TeamRole.COLLABORATOR.value,
        invited_by=inviter.id,
        invited_at=clock(),
        internal_notes=internal_notes,
        is_active=True,
    )
    db.add(member)
    db.commit()
    db.refresh(member)

    audit_logger.log("COLLABORATOR_INVITED", user_id=inviter.user_id,
                     entity_type="consultation_ticket", entity_id=ticket.id,
                     details={"consultant_id": consultant_id})
    return member


def _owned_collaborator(db: Session, ticket: ConsultationTicket, user_id: int,
                        member_id: int) -> ConsultationTicketConsultant:
    if ticket.user_id != user_id:
        raise NotTicketOwnerError("Only the ticket owner can decide on collaborators")
    member = _member(db, ticket, member_id)
    if not member.is_collaborator():
        raise InvalidTeamMemberError("Only collaborators need approval")
    return member


def approve_collaborator(
    db: Session,
    ticket: ConsultationTicket,
    user_id: int,
    member_id: int,
    clock: Clock = utcnow,
) -> ConsultationTicketConsultant:
    member = _owned_collaborator(db, ticket, user_id, member_id)
    if member.user_approved_at is not None:
        raise InvalidTeamMemberError("Collaborator is already approved")

    member.user_approved_at = clock()
    db.commit()
    db.refresh(member)
    return member


def reject_collaborator(db: Session, ticket: ConsultationTicket, user_id: int, member_id: int) -> None:
    member = _owned_collaborator(db, ticket, user_id, member_id)
    db.delete(member)
    db.commit()


def refer_case(
    db: Session,
    ticket: ConsultationTicket,
    referrer: Consultant,
    consultant_id: int,
    handover_notes: str,
    clock: Clock = utcnow,
) -> ConsultationTicketConsultant:
    """
    Hand the case to another consultant.

    The current primary stays on as an approved collaborator and the new
    consultant joins as `referred`, becoming the ticket's consultant. Rows
    left from an earlier referral are reused, since (ticket, consultant,
    role) is unique.
    """
    primary = _primary_member(db, ticket, referrer)
    _target_consultant(db, consultant_id)
    if consultant_id == referrer.id:
        raise InvalidTeamMemberError("Cannot refer a case to yourself")

    now = clock()
    earlier_collaborator = _role_row(db, ticket, referrer.id, TeamRole.COLLABORATOR)
    if earlier_collaborator is not None:
        primary.is_active = False
        earlier_collaborator.is_active = True
        earlier_collaborator.user_approved_at = now
    else:
        primary.role = TeamRole.COLLABORATOR.value
        primary.user_approved_at = now

    referred = _role_row(db, ticket, consultant_id, TeamRole.REFERRED)
    if referred is None:
        referred = ConsultationTicketConsultant(
            consultation_ticket_id=ticket.id,
            consultant_id=consultant_id,
            role=TeamRole.REFERRED.value,
        )
        db.add(referred)
    referred.invited_by = referrer.id
    referred.invited_at = now
    referred.handover_notes = handover_notes
    referred.is_active = True
    ticket.consultant_id = consultant_id
    db.commit()
    db.refresh(referred)

    audit_logger.log("CASE_REFERRED", user_id=referrer.user_id,
                     entity_type="consultation_ticket", entity_id=ticket.id,
                     details={"from_consultant_id": referrer.id, "to_consultant_id": consultant_id})
    return referred


def remove_member(db: Session, ticket: ConsultationTicket, actor: Consultant, member_id: int) -> ConsultationTicketConsultant:
    _primary_member(db, ticket, actor)
    member = _member(db, ticket, member_id)
    if member.is_primary():
        raise InvalidTeamMemberError("Cannot remove primary consultant")

    member.is_active = False
    db.commit()
    db.refresh(member)
    return member


def pending_approvals(db: Session, user_id: int) -> List[ConsultationTicketConsultant]:
    """Collaborators awaiting this user's approval across their tickets."""
    return db.query(ConsultationTicketConsultant).join(
        ConsultationTicket,
        ConsultationTicket.id == ConsultationTicketConsultant.consultation_ticket_id,
    ).filter(
        ConsultationTicket.user_id == user_id,
        ConsultationTicketConsultant.role == TeamRole.COLLABORATOR.value,
        ConsultationTicketConsultant.user_approved_at.is_(None),
        ConsultationTicketConsultant.is_active == True,
    ).order_by(ConsultationTicketConsultant.id).all()
