"""
Consultant ratings and the rolling rating aggregate used by routing.
"""
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db.models import Consultant, ConsultationTicket, Rating, TicketStatus

logger = get_logger(__name__)

SUB_RATINGS = (
    "communication_rating",
    "professionalism_rating",
    "knowledge_rating",
    "helpfulness_rating",
)


class RatingError(Exception):
    """Base error for rating operations."""


class RatingNotAllowedError(RatingError):
    """User may not rate (or change the rating of) this consultant/ticket."""


class DuplicateRatingError(RatingError):
    """The ticket has already been rated by this user."""


def _check_scale(values: dict):
    for key in ("rating",) + SUB_RATINGS:
        value = values.get(key)
        if value is not None and not 1 <= int(value) <= 5:
            raise RatingError(f"{key} must be between 1 and 5")


def refresh_consultant_rating(db: Session, consultant: Consultant) -> Consultant:
    """Recompute rating_average and total_ratings from the stored ratings."""
    average, count = db.query(
        func.avg(Rating.rating), func.count(Rating.id)
    ).filter(Rating.consultant_id == consultant.id).one()

    consultant.rating_average = round(float(average), 2) if average is not None else 0
    consultant.total_ratings = count
    db.commit()
    db.refresh(consultant)

    logger.info(f"Consultant {consultant.id} rating refreshed: {consultant.rating_average} over {count}")
    return consultant


def create_rating(
    db: Session,
    user_id: int,
    consultant: Consultant,
    rating: int,
    ticket: Optional[ConsultationTicket] = None,
    review: Optional[str] = None,
    is_anonymous: bool = False,
    **sub_ratings,
) -> Rating:
    """
    Rate a consultant, optionally for a specific completed ticket.

    Raises:
        RatingNotAllowedError: ticket is not the user's, not completed, or
            handled by another consultant
        DuplicateRatingError: ticket already rated by this user
    """
    values = {"rating": rating, **{k: sub_ratings.get(k) for k in SUB_RATINGS}}
    _check_scale(values)

    if ticket is not None:
        if ticket.user_id != user_id:
            raise RatingNotAllowedError("Only the ticket owner can rate this consultation")
        if ticket.consultant_id != consultant.id:
            raise RatingNotAllowedError("Consultant did not handle this consultation")
        if ticket.status != TicketStatus.COMPLETED.value:
            raise RatingNotAllowedError("Consultation must be completed before rating")
        existing = db.query(Rating.id).filter(
            Rating.ticket_id == ticket.id,
            Rating.user_id == user_id,
        ).first()
        if existing:
            raise DuplicateRatingError("This consultation has already been rated")

    record = Rating(
        user_id=user_id,
        consultant_id=consultant.id,
        ticket_id=ticket.id if ticket is not None else None,
        review=review,
        is_anonymous=is_anonymous,
        **values,
    )
    db.add(record)
    db.commit()

    refresh_consultant_rating(db, consultant)
    db.refresh(record)
    return record


def update_rating(db: Session, record: Rating, user_id: int, changes: dict) -> Rating:
    if record.user_id != user_id:
        raise RatingNotAllowedError("Only the author can change this rating")
    _check_scale(changes)

    for key, value in changes.items():
        setattr(record, key, value)
    db.commit()

    refresh_consultant_rating(db, record.consultant)
    db.refresh(record)
    return record


def delete_rating(db: Session, record: Rating, user_id: int, is_admin: bool = False) -> None:
    if record.user_id != user_id and not is_admin:
        raise RatingNotAllowedError("Only the author can delete this rating")

    consultant = record.consultant
    db.delete(record)
    db.commit()

    refresh_consultant_rating(db, consultant)
