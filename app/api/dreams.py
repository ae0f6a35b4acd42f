"""
Dream journal API routes with keyword classification.
"""
from typing import List, Optional
from datetime import date, datetime
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import Dream
from app.core.rbac import get_current_user_context
from app.services.risk_keywords import classify_dream_content

router = APIRouter(prefix="/api/dreams", tags=["Dreams"])

EMOTIONAL_CONDITIONS = "^(happy|sad|anxious|angry|neutral|confused)$"


# ============= SCHEMAS =============

class DreamClassifyRequest(BaseModel):
    content: str
    emotional_condition: Optional[str] = Field(None, pattern=EMOTIONAL_CONDITIONS)


class DreamClassificationResponse(BaseModel):
    classification: str
    confidence: float
    reasoning: str
    suggested_actions: dict


class DreamCreate(BaseModel):
    dream_content: str = Field(..., min_length=10)
    dream_date: Optional[date] = None
    emotional_condition: Optional[str] = Field(None, pattern=EMOTIONAL_CONDITIONS)
    physical_condition: Optional[str] = None


class DreamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    dream_content: str
    dream_date: Optional[date]
    emotional_condition: Optional[str]
    physical_condition: Optional[str]
    classification: Optional[str]
    confidence: Optional[float]
    auto_analysis: Optional[str]
    suggested_actions: Optional[dict]
    created_at: Optional[datetime]


# ============= ROUTES =============

@router.post("/classify", response_model=DreamClassificationResponse)
async def classify_dream(
    data: DreamClassifyRequest,
    user_context: dict = Depends(get_current_user_context),
):
    """Classify a dream narrative without storing it."""
    result = classify_dream_content(data.content, {"emotional_condition": data.emotional_condition})
    return result.to_dict()


@router.post("", response_model=DreamResponse, status_code=status.HTTP_201_CREATED)
async def create_dream(
    data: DreamCreate,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    result = classify_dream_content(data.dream_content, {"emotional_condition": data.emotional_condition})

    dream = Dream(
        user_id=user_context["user_id"],
        dream_content=data.dream_content,
        dream_date=data.dream_date or date.today(),
        emotional_condition=data.emotional_condition,
        physical_condition=data.physical_condition,
        classification=result.classification.value,
        confidence=result.confidence,
        auto_analysis=result.reasoning,
        suggested_actions=result.suggested_actions,
    )
    db.add(dream)
    db.commit()
    db.refresh(dream)
    return dream


@router.get("", response_model=List[DreamResponse])
async def list_dreams(
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    return db.query(Dream).filter(
        Dream.user_id == user_context["user_id"]
    ).order_by(Dream.id.desc()).all()
