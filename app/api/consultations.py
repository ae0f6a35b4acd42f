"""
Consultations API routes: risk assessment, ticket intake, routing and care team.
"""
from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import Consultant, ConsultationTicket, ConsultationTicketConsultant
from app.services.crisis_alerts import hotline_info
from app.core.rbac import Role, require_admin, require_consultant, get_current_user_context
from app.services.risk_keywords import assess_consultation_risk, recommended_actions
from app.services.consultant_routing import (
    ConsultantNotFoundError, assign_consultant, override_assignment, score_candidates,
)
from app.services import care_team
from app.services.care_team import (
    CareTeamError, DuplicateTeamMemberError,
    NotPrimaryConsultantError, NotTicketOwnerError, TeamMemberNotFoundError,
)

router = APIRouter(prefix="/api/consultations", tags=["Consultations"])


# ============= SCHEMAS =============

class AssessRequest(BaseModel):
    content: str


class RiskAssessmentResponse(BaseModel):
    risk_level: str
    risk_flags: List[str]
    requires_escalation: bool
    risk_score: float
    recommended_actions: Optional[dict] = None


class ConsultationCreate(BaseModel):
    subject: str = Field(..., max_length=255)
    description: str = Field(..., min_length=1)
    category_id: Optional[int] = None
    urgency: Optional[str] = Field(None, pattern="^(rendah|sedang|tinggi)$")


class ConsultantSummary(BaseModel):
    id: int
    name: str
    level: Optional[str]
    specialist_category_id: Optional[int]
    rating_average: Optional[float]


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_number: str
    user_id: int
    category_id: Optional[int]
    form_submission_id: Optional[int]
    subject: Optional[str]
    status: str
    risk_level: Optional[str]
    urgency: Optional[str]
    consultant_id: Optional[int]
    assigned_by_type: Optional[str]
    assigned_by_id: Optional[int]
    override_reason: Optional[str]
    routing_score: Optional[int]
    routing_metadata: Optional[dict]
    assigned_at: Optional[datetime]


class IntakeResponse(BaseModel):
    ticket: TicketResponse
    consultant: Optional[ConsultantSummary]
    risk_assessment: RiskAssessmentResponse
    crisis_alert_id: Optional[int] = None
    hotline: Optional[dict] = None


class AssignmentResponse(BaseModel):
    ticket: TicketResponse
    consultant: Optional[ConsultantSummary]


class OverrideRequest(BaseModel):
    consultant_id: int
    reason: str = Field(..., min_length=1)


class CandidateResponse(BaseModel):
    id: int
    name: str
    level: Optional[str]
    score: int
    active_tickets: int


class TeamMemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    consultant_id: int
    role: str
    invited_by: Optional[int]
    invited_at: Optional[datetime]
    user_approved_at: Optional[datetime]
    is_active: bool
    handover_notes: Optional[str] = None


class InviteRequest(BaseModel):
    consultant_id: int
    internal_notes: Optional[str] = None


class ReferRequest(BaseModel):
    consultant_id: int
    handover_notes: str = Field(..., min_length=1)


# ============= HELPERS =============

def consultant_summary(consultant: Optional[Consultant]) -> Optional[ConsultantSummary]:
    if consultant is None:
        return None
    return ConsultantSummary(
        id=consultant.id,
        name=consultant.name,
        level=consultant.level,
        specialist_category_id=consultant.specialist_category_id,
        rating_average=consultant.rating_average,
    )


def assessment_response(assessment, with_actions: bool = False) -> RiskAssessmentResponse:
    data = assessment.to_dict()
    if with_actions:
        data["recommended_actions"] = recommended_actions(assessment.risk_level)
    return RiskAssessmentResponse(**data)


def get_ticket_or_404(db: Session, ticket_id: int) -> ConsultationTicket:
    ticket = db.query(ConsultationTicket).filter(ConsultationTicket.id == ticket_id).first()
    if not ticket:
        raise HTTPException(status_code=404, detail="Consultation not found")
    return ticket


def current_consultant(db: Session, user_context: dict) -> Consultant:
    consultant = db.query(Consultant).filter(
        Consultant.user_id == user_context["user_id"],
        Consultant.deleted_at.is_(None),
    ).first()
    if not consultant:
        raise HTTPException(status_code=403, detail="Only consultants can manage care teams")
    return consultant


def ensure_can_view(db: Session, ticket: ConsultationTicket, user_context: dict):
    if user_context["role"] == Role.ADMIN or ticket.user_id == user_context["user_id"]:
        return
    on_team = db.query(ConsultationTicketConsultant.id).join(
        Consultant, Consultant.id == ConsultationTicketConsultant.consultant_id
    ).filter(
        ConsultationTicketConsultant.consultation_ticket_id == ticket.id,
        ConsultationTicketConsultant.is_active == True,
        Consultant.user_id == user_context["user_id"],
    ).first()
    if not on_team:
        raise HTTPException(status_code=403, detail="Unauthorized access")


def care_team_http_error(e: CareTeamError) -> HTTPException:
    if isinstance(e, (NotPrimaryConsultantError, NotTicketOwnerError)):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, TeamMemberNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, DuplicateTeamMemberError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# ============= INTAKE =============

@router.post("/assess", response_model=RiskAssessmentResponse)
async def assess_risk(
    data: AssessRequest,
    user_context: dict = Depends(get_current_user_context),
):
    """Keyword risk assessment of a consultation narrative (nothing is stored)."""
    return assessment_response(assess_consultation_risk(data.content), with_actions=True)


@router.post("", response_model=IntakeResponse, status_code=status.HTTP_201_CREATED)
async def create_consultation(
    data: ConsultationCreate,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """
    Open a consultation ticket.

    The narrative is risk-assessed, high-risk cases raise a crisis alert and
    the ticket is routed. When nobody qualifies the ticket stays waiting and
    `consultant` is null.
    """
    opened = care_team.open_ticket(
        db,
        user_id=user_context["user_id"],
        subject=data.subject,
        description=data.description,
        category_id=data.category_id,
        urgency=data.urgency,
    )

    hotline = None
    if opened.assessment.requires_escalation:
        hotline = hotline_info()

    return IntakeResponse(
        ticket=TicketResponse.model_validate(opened.ticket),
        consultant=consultant_summary(opened.consultant),
        risk_assessment=assessment_response(opened.assessment, with_actions=True),
        crisis_alert_id=opened.alert.id if opened.alert else None,
        hotline=hotline,
    )


@router.get("/pending-approvals", response_model=List[TeamMemberResponse])
async def list_pending_approvals(
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """Collaborators waiting for the current user's approval."""
    return care_team.pending_approvals(db, user_context["user_id"])


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_consultation(
    ticket_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    ticket = get_ticket_or_404(db, ticket_id)
    ensure_can_view(db, ticket, user_context)
    return ticket


# ============= ROUTING =============

@router.get("/{ticket_id}/candidates", response_model=List[CandidateResponse])
async def preview_candidates(
    ticket_id: int,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Ranked routing candidates for a ticket without assigning anyone."""
    ticket = get_ticket_or_404(db, ticket_id)
    return [
        CandidateResponse(
            id=c.consultant.id,
            name=c.consultant.name,
            level=c.consultant.level,
            score=c.score,
            active_tickets=c.active_tickets,
        )
        for c in score_candidates(db, ticket)
    ]


@router.post("/{ticket_id}/assign", response_model=AssignmentResponse)
async def assign_ticket(
    ticket_id: int,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Run (or re-run) automatic routing for a ticket."""
    ticket = get_ticket_or_404(db, ticket_id)
    consultant = assign_consultant(db, ticket)
    return AssignmentResponse(
        ticket=TicketResponse.model_validate(ticket),
        consultant=consultant_summary(consultant),
    )


@router.post("/{ticket_id}/override", response_model=AssignmentResponse)
async def override_ticket_assignment(
    ticket_id: int,
    data: OverrideRequest,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Assign a specific consultant, bypassing scoring."""
    ticket = get_ticket_or_404(db, ticket_id)
    try:
        consultant = override_assignment(
            db, ticket,
            consultant_id=data.consultant_id,
            admin_id=user_context["user_id"],
            reason=data.reason,
        )
    except ConsultantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return AssignmentResponse(
        ticket=TicketResponse.model_validate(ticket),
        consultant=consultant_summary(consultant),
    )


# ============= CARE TEAM =============

@router.get("/{ticket_id}/team", response_model=List[TeamMemberResponse])
async def list_team(
    ticket_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    ticket = get_ticket_or_404(db, ticket_id)
    ensure_can_view(db, ticket, user_context)
    return care_team.get_team(db, ticket)


@router.post("/{ticket_id}/team/invite", response_model=TeamMemberResponse, status_code=status.HTTP_201_CREATED)
async def invite_collaborator(
    ticket_id: int,
    data: InviteRequest,
    user_context: dict = Depends(require_consultant),
    db: Session = Depends(get_db)
):
    ticket = get_ticket_or_404(db, ticket_id)
    inviter = current_consultant(db, user_context)
    try:
        return care_team.invite_collaborator(
            db, ticket, inviter, data.consultant_id, internal_notes=data.internal_notes
        )
    except CareTeamError as e:
        raise care_team_http_error(e)


@router.post("/{ticket_id}/team/refer", response_model=TeamMemberResponse, status_code=status.HTTP_201_CREATED)
async def refer_consultation(
    ticket_id: int,
    data: ReferRequest,
    user_context: dict = Depends(require_consultant),
    db: Session = Depends(get_db)
):
    ticket = get_ticket_or_404(db, ticket_id)
    referrer = current_consultant(db, user_context)
    try:
        return care_team.refer_case(db, ticket, referrer, data.consultant_id, data.handover_notes)
    except CareTeamError as e:
        raise care_team_http_error(e)


@router.post("/{ticket_id}/team/{member_id}/approve", response_model=TeamMemberResponse)
async def approve_collaborator(
    ticket_id: int,
    member_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    ticket = get_ticket_or_404(db, ticket_id)
    try:
        return care_team.approve_collaborator(db, ticket, user_context["user_id"], member_id)
    except CareTeamError as e:
        raise care_team_http_error(e)


@router.post("/{ticket_id}/team/{member_id}/reject")
async def reject_collaborator(
    ticket_id: int,
    member_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    ticket = get_ticket_or_404(db, ticket_id)
    try:
        care_team.reject_collaborator(db, ticket, user_context["user_id"], member_id)
    except CareTeamError as e:
        raise care_team_http_error(e)
    return {"message": "Collaborator rejected and removed from team"}


@router.delete("/{ticket_id}/team/{member_id}", response_model=TeamMemberResponse)
async def remove_team_member(
    ticket_id: int,
    member_id: int,
    user_context: dict = Depends(require_consultant),
    db: Session = Depends(get_db)
):
    ticket = get_ticket_or_404(db, ticket_id)
    actor = current_consultant(db, user_context)
    try:
        return care_team.remove_member(db, ticket, actor, member_id)
    except CareTeamError as e:
        raise care_team_http_error(e)
