"""
Consultant routing engine.

Scores every eligible consultant for a ticket, prefers the best one that is
currently available and records the decision on the ticket together with
enough metadata to audit or replay it.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock, utcnow, to_local
from app.core.config import settings
from app.core.logging import get_logger, audit_logger
from app.db.models import (
    AuditLog, AssignedByType, Consultant, ConsultantLevel,
    ConsultationTicket, ConsultationTicketConsultant, FormSubmission, Message,
    TeamRole, ACTIVE_TICKET_STATUSES,
)

logger = get_logger(__name__)


LEVEL_POINTS = {
    ConsultantLevel.EXPERT.value: 30,
    ConsultantLevel.SENIOR.value: 20,
    ConsultantLevel.JUNIOR.value: 10,
}

# Active-ticket capacity per level; at or above the cap a consultant is unavailable
LEVEL_CAPACITY = {
    ConsultantLevel.EXPERT.value: 15,
    ConsultantLevel.SENIOR.value: 10,
    ConsultantLevel.JUNIOR.value: 5,
}
DEFAULT_CAPACITY = 5

SAME_REGION_BONUS = 10
CRITICAL_EXPERT_BONUS = 15


class RoutingError(Exception):
    """Base error for routing operations."""


class ConsultantNotFoundError(RoutingError):
    """Override target does not exist or is not an active consultant."""


@dataclass
class ScoredCandidate:
    consultant: Consultant
    score: int
    active_tickets: int

    def summary(self) -> dict:
        return {
            "id": self.consultant.id,
            "name": self.consultant.name,
            "score": self.score,
            "level": self.consultant.level,
        }


# ============= PURE HELPERS =============

def score_candidate(
    level: Optional[str],
    active_tickets: int,
    rating_average: Optional[float],
    avg_response_hours: float,
    same_region: bool = False,
    critical_case: bool = False,
) -> int:
    """Integer routing score of one consultant (higher is better)."""
    score = LEVEL_POINTS.get(level, 0)
    score += max(0, 25 - active_tickets * 2)
    score += float(rating_average or 0) * 5
    score += max(0, 20 - avg_response_hours / 2)
    if same_region:
        score += SAME_REGION_BONUS
    if critical_case and level == ConsultantLevel.EXPERT.value:
        score += CRITICAL_EXPERT_BONUS
    return int(score)


def is_available(consultant: Consultant, active_tickets: int, local_now: datetime) -> bool:
    """
    Capacity and schedule check at wall-clock time `local_now`.

    A consultant without any schedule rows is treated as available around the clock.
    """
    capacity = LEVEL_CAPACITY.get(consultant.level, DEFAULT_CAPACITY)
    if active_tickets >= capacity:
        return False

    if not consultant.schedules:
        return True

    day_of_week = (local_now.weekday() + 1) % 7  # 0 = Sunday
    current = local_now.time().replace(second=0, microsecond=0)
    return any(
        s.is_available and s.day_of_week == day_of_week and s.start_time <= current <= s.end_time
        for s in consultant.schedules
    )


def rank_candidates(candidates: List[ScoredCandidate]) -> List[ScoredCandidate]:
    """Score descending, ties broken by lowest consultant id."""
    return sorted(candidates, key=lambda c: (-c.score, c.consultant.id))


def select_candidate(ranked: List[ScoredCandidate], local_now: datetime) -> ScoredCandidate:
    """First available candidate in rank order, else the top-ranked one."""
    for candidate in ranked:
        if is_available(candidate.consultant, candidate.active_tickets, local_now):
            return candidate
    logger.info(f"No available consultant among {len(ranked)} candidates; falling back to top score")
    return ranked[0]


# ============= DATA GATHERING =============

def _critical_submission(db: Session, ticket: ConsultationTicket,
                         submission: Optional[FormSubmission]) -> bool:
    if submission is None and ticket.form_submission_id:
        submission = db.get(FormSubmission, ticket.form_submission_id)
    return submission is not None and submission.is_critical()


def build_candidate_query(db: Session, ticket: ConsultationTicket, critical_case: bool):
    query = db.query(Consultant).filter(
        Consultant.is_verified == True,
        Consultant.is_active == True,
        Consultant.deleted_at.is_(None),
    )
    if ticket.category_id:
        query = query.filter(Consultant.specialist_category_id == ticket.category_id)
    if critical_case:
        query = query.filter(Consultant.level == ConsultantLevel.EXPERT.value)
    query = query.order_by(Consultant.id)
    if settings.ROUTING_LOCK_CANDIDATES:
        query = query.with_for_update()
    return query


def active_ticket_counts(db: Session, consultant_ids: List[int]) -> Dict[int, int]:
    if not consultant_ids:
        return {}
    rows = db.query(
        ConsultationTicket.consultant_id, func.count(ConsultationTicket.id)
    ).filter(
        ConsultationTicket.consultant_id.in_(consultant_ids),
        ConsultationTicket.status.in_(ACTIVE_TICKET_STATUSES),
    ).group_by(ConsultationTicket.consultant_id).all()
    return {consultant_id: count for consultant_id, count in rows}


def average_response_hours(db: Session, consultant: Consultant, now: datetime) -> float:
    """
    Mean whole hours between assignment and the consultant's first message,
    over tickets created within the response-time window.
    """
    since = now - timedelta(days=settings.RESPONSE_TIME_WINDOW_DAYS)
    tickets = db.query(ConsultationTicket).filter(
        ConsultationTicket.consultant_id == consultant.id,
        ConsultationTicket.assigned_at.isnot(None),
        ConsultationTicket.created_at >= since,
    ).all()

    hours = []
    for ticket in tickets:
        first_message = db.query(Message).filter(
            Message.ticket_id == ticket.id,
            Message.sender_id == consultant.user_id,
        ).order_by(Message.created_at).first()
        if first_message and first_message.created_at:
            delta = abs((first_message.created_at - ticket.assigned_at).total_seconds())
            hours.append(int(delta // 3600))

    if not hours:
        return settings.DEFAULT_RESPONSE_HOURS
    return sum(hours) / len(hours)


def score_candidates(
    db: Session,
    ticket: ConsultationTicket,
    submission: Optional[FormSubmission] = None,
    clock: Clock = utcnow,
) -> List[ScoredCandidate]:
    """Ranked candidates for a ticket without touching it."""
    now = clock()
    critical_case = _critical_submission(db, ticket, submission)
    consultants = build_candidate_query(db, ticket, critical_case).all()
    counts = active_ticket_counts(db, [c.id for c in consultants])
    user_province = ticket.user.province if ticket.user else None

    scored = []
    for consultant in consultants:
        active = counts.get(consultant.id, 0)
        same_region = bool(user_province) and consultant.province == user_province
        score = score_candidate(
            level=consultant.level,
            active_tickets=active,
            rating_average=consultant.rating_average,
            avg_response_hours=average_response_hours(db, consultant, now),
            same_region=same_region,
            critical_case=critical_case,
        )
        scored.append(ScoredCandidate(consultant=consultant, score=score, active_tickets=active))

    return rank_candidates(scored)


# ============= TEAM MEMBERSHIP =============

def _deactivate_other_primaries(db: Session, ticket: ConsultationTicket, consultant_id: int):
    db.query(ConsultationTicketConsultant).filter(
        ConsultationTicketConsultant.consultation_ticket_id == ticket.id,
        ConsultationTicketConsultant.role == TeamRole.PRIMARY.value,
        ConsultationTicketConsultant.consultant_id != consultant_id,
        ConsultationTicketConsultant.is_active == True,
    ).update({ConsultationTicketConsultant.is_active: False}, synchronize_session="fetch")


def _find_member(db: Session, ticket_id: int, consultant_id: int,
                 role: Optional[str] = None) -> Optional[ConsultationTicketConsultant]:
    query = db.query(ConsultationTicketConsultant).filter(
        ConsultationTicketConsultant.consultation_ticket_id == ticket_id,
        ConsultationTicketConsultant.consultant_id == consultant_id,
    )
    if role is not None:
        query = query.filter(ConsultationTicketConsultant.role == role)
    # An existing primary row wins over other roles of the same consultant
    return query.order_by(
        (ConsultationTicketConsultant.role == TeamRole.PRIMARY.value).desc(),
        ConsultationTicketConsultant.id,
    ).first()


def upsert_primary_member(
    db: Session,
    ticket: ConsultationTicket,
    consultant_id: int,
    now: datetime,
    match_any_role: bool = False,
) -> ConsultationTicketConsultant:
    """
    Make `consultant_id` the active primary of the ticket.

    System routing keys the row by (ticket, consultant, primary); manual
    override keys it by (ticket, consultant) and promotes whatever row exists.
    A concurrent insert of the same row is caught and applied as an update.
    """
    role = None if match_any_role else TeamRole.PRIMARY.value
    member = _find_member(db, ticket.id, consultant_id, role)

    if member is None:
        member = ConsultationTicketConsultant(
            consultation_ticket_id=ticket.id,
            consultant_id=consultant_id,
            role=TeamRole.PRIMARY.value,
            invited_at=now,
            is_active=True,
        )
        try:
            with db.begin_nested():
                db.add(member)
            return member
        except IntegrityError:
            member = _find_member(db, ticket.id, consultant_id, TeamRole.PRIMARY.value)
            if member is None:
                raise
            logger.info(f"Primary row for ticket {ticket.id}/consultant {consultant_id} "
                        "already inserted concurrently; updating instead")

    member.role = TeamRole.PRIMARY.value
    member.invited_at = now
    member.is_active = True
    return member


# ============= ENTRY POINTS =============

def assign_consultant(
    db: Session,
    ticket: ConsultationTicket,
    submission: Optional[FormSubmission] = None,
    clock: Clock = utcnow,
) -> Optional[Consultant]:
    """
    Route a ticket to the best available consultant.

    Returns:
        The selected consultant, or None when no consultant qualifies (the
        ticket is left untouched).
    """
    now = clock()
    ranked = score_candidates(db, ticket, submission, clock=lambda: now)

    if not ranked:
        audit_logger.log(
            "ROUTING_NO_CANDIDATE",
            entity_type="consultation_ticket",
            entity_id=ticket.id,
            details={"category_id": ticket.category_id},
            level=logging.WARNING,
        )
        return None

    selected = select_candidate(ranked, to_local(now, settings.ROUTING_TIMEZONE))
    previous_consultant_id = ticket.consultant_id

    ticket.consultant_id = selected.consultant.id
    ticket.assigned_by_type = AssignedByType.SYSTEM.value
    ticket.assigned_by_id = None
    ticket.override_reason = None
    ticket.routing_score = selected.score
    ticket.routing_metadata = {
        "selected_consultant_id": selected.consultant.id,
        "selected_score": selected.score,
        "total_candidates": len(ranked),
        "top_3_candidates": [c.summary() for c in ranked[:3]],
        "assigned_at": now.isoformat(),
        "routing_version": settings.ROUTING_VERSION,
    }
    ticket.assigned_at = now

    _deactivate_other_primaries(db, ticket, selected.consultant.id)
    upsert_primary_member(db, ticket, selected.consultant.id, now)
    db.commit()
    db.refresh(ticket)

    audit_logger.log(
        "CONSULTANT_ASSIGNED",
        entity_type="consultation_ticket",
        entity_id=ticket.id,
        details={
            "consultant_id": selected.consultant.id,
            "score": selected.score,
            "candidates": len(ranked),
            "previous_consultant_id": previous_consultant_id,
        },
    )
    return selected.consultant


def override_assignment(
    db: Session,
    ticket: ConsultationTicket,
    consultant_id: int,
    admin_id: int,
    reason: str,
    clock: Clock = utcnow,
) -> Consultant:
    """
    Admin assignment bypassing scoring.

    Raises:
        ConsultantNotFoundError: consultant does not exist or was deleted
    """
    consultant = db.get(Consultant, consultant_id)
    if consultant is None or consultant.deleted_at is not None:
        raise ConsultantNotFoundError(f"Consultant {consultant_id} not found")

    now = clock()
    previous_consultant_id = ticket.consultant_id

    ticket.consultant_id = consultant.id
    ticket.assigned_by_type = AssignedByType.ADMIN.value
    ticket.assigned_by_id = admin_id
    ticket.override_reason = reason
    ticket.routing_score = None
    ticket.routing_metadata = {
        "type": "manual_override",
        "admin_id": admin_id,
        "reason": reason,
        "assigned_at": now.isoformat(),
    }
    ticket.assigned_at = now

    _deactivate_other_primaries(db, ticket, consultant.id)
    upsert_primary_member(db, ticket, consultant.id, now, match_any_role=True)

    details = {
        "consultant_id": consultant.id,
        "previous_consultant_id": previous_consultant_id,
        "reason": reason,
    }
    db.add(AuditLog(
        user_id=admin_id,
        action="ASSIGNMENT_OVERRIDDEN",
        entity_type="consultation_ticket",
        entity_id=ticket.id,
        details=details,
    ))
    db.commit()
    db.refresh(ticket)

    audit_logger.log("ASSIGNMENT_OVERRIDDEN", user_id=admin_id,
                     entity_type="consultation_ticket", entity_id=ticket.id, details=details)
    return consultant
