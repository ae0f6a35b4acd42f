"""
Form submission API routes: submit a screening form, open the ticket and route it.
"""
from typing import Any, List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import FormSubmission, FormTemplate
from app.core.rbac import Role, require_consultant, get_current_user_context
from app.services import care_team, form_engine
from app.services.form_engine import AnswerValidationError, FormEngineError
from app.api.consultations import (
    ConsultantSummary, TicketResponse, consultant_summary, ensure_can_view, get_ticket_or_404,
)

router = APIRouter(prefix="/api/submissions", tags=["Submissions"])


# ============= SCHEMAS =============

class AnswerIn(BaseModel):
    form_field_id: int
    answer_value: Any
    explanation: Optional[str] = None


class SubmissionCreate(BaseModel):
    form_template_id: int
    answers: List[AnswerIn]
    category_id: Optional[int] = None
    subject: Optional[str] = Field(None, max_length=255)
    problem_description: Optional[str] = None


class AnswerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    form_field_id: int
    answer_value: Any
    risk_score: int
    explanation: Optional[str]


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    form_template_id: int
    user_id: int
    consultation_ticket_id: Optional[int]
    total_risk_score: int
    risk_level: str
    submitted_at: Optional[datetime]
    answers: List[AnswerResponse] = []


class SubmitResponse(BaseModel):
    submission: SubmissionResponse
    ticket: Optional[TicketResponse] = None
    consultant: Optional[ConsultantSummary] = None


class ManualScoreRequest(BaseModel):
    risk_score: int = Field(..., ge=0, le=10)


class ScoreResponse(BaseModel):
    submission_id: int
    total_risk_score: int
    risk_level: str
    is_critical: bool
    needs_expert: bool


# ============= HELPERS =============

def get_submission_or_404(db: Session, submission_id: int) -> FormSubmission:
    submission = db.query(FormSubmission).filter(FormSubmission.id == submission_id).first()
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")
    return submission


# ============= ROUTES =============

@router.post("", response_model=SubmitResponse, status_code=status.HTTP_201_CREATED)
async def submit_form(
    data: SubmissionCreate,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """
    Submit answers to an active form.

    With a subject and problem description a consultation ticket is opened
    for the submission and routed; critical submissions go to experts only.
    """
    template = db.query(FormTemplate).filter(
        FormTemplate.id == data.form_template_id,
        FormTemplate.is_active == True,
        FormTemplate.deleted_at.is_(None),
    ).first()
    if not template:
        raise HTTPException(status_code=404, detail="Active form template not found")

    answers = {a.form_field_id: a.answer_value for a in data.answers}
    explanations = {a.form_field_id: a.explanation for a in data.answers if a.explanation}

    try:
        submission = form_engine.create_submission(
            db, template, user_context["user_id"], answers,
            explanations=explanations,
        )
    except AnswerValidationError as e:
        db.rollback()
        raise HTTPException(status_code=422, detail={"message": "Validation error", "errors": e.errors})
    except FormEngineError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    if not (data.subject and data.problem_description):
        db.commit()
        db.refresh(submission)
        return SubmitResponse(submission=SubmissionResponse.model_validate(submission))

    opened = care_team.open_ticket(
        db,
        user_id=user_context["user_id"],
        subject=data.subject,
        description=data.problem_description,
        category_id=data.category_id,
        submission=submission,
    )
    db.refresh(submission)
    return SubmitResponse(
        submission=SubmissionResponse.model_validate(submission),
        ticket=TicketResponse.model_validate(opened.ticket),
        consultant=consultant_summary(opened.consultant),
    )


@router.get("", response_model=List[SubmissionResponse])
async def list_my_submissions(
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    return db.query(FormSubmission).filter(
        FormSubmission.user_id == user_context["user_id"]
    ).order_by(FormSubmission.submitted_at.desc()).all()


@router.get("/{submission_id}", response_model=SubmissionResponse)
async def get_submission(
    submission_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    submission = get_submission_or_404(db, submission_id)
    if submission.user_id != user_context["user_id"] and user_context["role"] != Role.ADMIN:
        if submission.consultation_ticket_id is None:
            raise HTTPException(status_code=403, detail="Unauthorized access")
        ensure_can_view(db, get_ticket_or_404(db, submission.consultation_ticket_id), user_context)
    return submission


@router.post("/{submission_id}/score", response_model=ScoreResponse)
async def rescore_submission(
    submission_id: int,
    user_context: dict = Depends(require_consultant),
    db: Session = Depends(get_db)
):
    """Recompute and persist the submission's risk score."""
    submission = get_submission_or_404(db, submission_id)
    total, level = form_engine.score_submission(db, submission)
    db.commit()
    return ScoreResponse(
        submission_id=submission.id,
        total_risk_score=total,
        risk_level=level.value,
        is_critical=submission.is_critical(),
        needs_expert=submission.needs_expert(),
    )


@router.put("/{submission_id}/answers/{answer_id}/score", response_model=ScoreResponse)
async def score_answer(
    submission_id: int,
    answer_id: int,
    data: ManualScoreRequest,
    user_context: dict = Depends(require_consultant),
    db: Session = Depends(get_db)
):
    """Score a free-text answer by hand; the submission is rescored."""
    submission = get_submission_or_404(db, submission_id)
    if submission.user_id == user_context["user_id"]:
        raise HTTPException(status_code=403, detail="Cannot score your own submission")
    if user_context["role"] != Role.ADMIN:
        if submission.consultation_ticket_id is None:
            raise HTTPException(status_code=403, detail="Only admins can score unlinked submissions")
        ensure_can_view(db, get_ticket_or_404(db, submission.consultation_ticket_id), user_context)

    answer = next((a for a in submission.answers if a.id == answer_id), None)
    if answer is None:
        raise HTTPException(status_code=404, detail="Answer not found")

    try:
        total, level = form_engine.set_manual_score(
            db, answer, data.risk_score, reviewer_id=user_context["user_id"]
        )
    except FormEngineError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()

    return ScoreResponse(
        submission_id=submission.id,
        total_risk_score=total,
        risk_level=level.value,
        is_critical=submission.is_critical(),
        needs_expert=submission.needs_expert(),
    )
