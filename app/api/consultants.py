"""
Consultant ratings API routes.
"""
from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import Consultant, ConsultationTicket, Rating
from app.core.rbac import Role, get_current_user_context
from app.services import ratings
from app.services.ratings import DuplicateRatingError, RatingError, RatingNotAllowedError

router = APIRouter(prefix="/api/consultants", tags=["Consultants"])


# ============= SCHEMAS =============

class RatingCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    ticket_id: Optional[int] = None
    review: Optional[str] = None
    is_anonymous: bool = False
    communication_rating: Optional[int] = Field(None, ge=1, le=5)
    professionalism_rating: Optional[int] = Field(None, ge=1, le=5)
    knowledge_rating: Optional[int] = Field(None, ge=1, le=5)
    helpfulness_rating: Optional[int] = Field(None, ge=1, le=5)


class RatingUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    review: Optional[str] = None
    communication_rating: Optional[int] = Field(None, ge=1, le=5)
    professionalism_rating: Optional[int] = Field(None, ge=1, le=5)
    knowledge_rating: Optional[int] = Field(None, ge=1, le=5)
    helpfulness_rating: Optional[int] = Field(None, ge=1, le=5)


class RatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    consultant_id: int
    ticket_id: Optional[int]
    rating: int
    review: Optional[str]
    is_anonymous: bool
    average_detail_rating: float
    created_at: Optional[datetime]


class RatingSummary(BaseModel):
    consultant_id: int
    rating_average: float
    total_ratings: int
    ratings: List[RatingResponse]


# ============= HELPERS =============

def get_consultant_or_404(db: Session, consultant_id: int) -> Consultant:
    consultant = db.query(Consultant).filter(
        Consultant.id == consultant_id,
        Consultant.deleted_at.is_(None),
    ).first()
    if not consultant:
        raise HTTPException(status_code=404, detail="Consultant not found")
    return consultant


def get_rating_or_404(db: Session, consultant: Consultant, rating_id: int) -> Rating:
    record = db.query(Rating).filter(
        Rating.id == rating_id,
        Rating.consultant_id == consultant.id,
    ).first()
    if not record:
        raise HTTPException(status_code=404, detail="Rating not found")
    return record


def rating_http_error(e: RatingError) -> HTTPException:
    if isinstance(e, RatingNotAllowedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, DuplicateRatingError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# ============= ROUTES =============

@router.get("/{consultant_id}/ratings", response_model=RatingSummary)
async def list_ratings(
    consultant_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    consultant = get_consultant_or_404(db, consultant_id)
    records = db.query(Rating).filter(
        Rating.consultant_id == consultant.id
    ).order_by(Rating.id.desc()).all()
    return RatingSummary(
        consultant_id=consultant.id,
        rating_average=consultant.rating_average or 0,
        total_ratings=consultant.total_ratings or 0,
        ratings=records,
    )


@router.post("/{consultant_id}/ratings", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
async def create_rating(
    consultant_id: int,
    data: RatingCreate,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    consultant = get_consultant_or_404(db, consultant_id)

    ticket = None
    if data.ticket_id is not None:
        ticket = db.query(ConsultationTicket).filter(ConsultationTicket.id == data.ticket_id).first()
        if not ticket:
            raise HTTPException(status_code=404, detail="Consultation not found")

    try:
        return ratings.create_rating(
            db,
            user_id=user_context["user_id"],
            consultant=consultant,
            ticket=ticket,
            **data.model_dump(exclude={"ticket_id"}),
        )
    except RatingError as e:
        raise rating_http_error(e)


@router.put("/{consultant_id}/ratings/{rating_id}", response_model=RatingResponse)
async def update_rating(
    consultant_id: int,
    rating_id: int,
    data: RatingUpdate,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    consultant = get_consultant_or_404(db, consultant_id)
    record = get_rating_or_404(db, consultant, rating_id)
    try:
        return ratings.update_rating(db, record, user_context["user_id"], data.model_dump(exclude_unset=True))
    except RatingError as e:
        raise rating_http_error(e)


@router.delete("/{consultant_id}/ratings/{rating_id}")
async def delete_rating(
    consultant_id: int,
    rating_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    consultant = get_consultant_or_404(db, consultant_id)
    record = get_rating_or_404(db, consultant, rating_id)
    try:
        ratings.delete_rating(db, record, user_context["user_id"], is_admin=user_context["role"] == Role.ADMIN)
    except RatingError as e:
        raise rating_http_error(e)
    return {"message": "Rating deleted"}
