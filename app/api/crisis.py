"""
Crisis API routes: panic button, keyword scanning and admin alert handling.
"""
from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import CrisisAlert
from app.core.rbac import require_admin, require_consultant, get_current_user_context
from app.services import crisis_alerts
from app.services.crisis_alerts import CrisisAlertError

router = APIRouter(prefix="/api/crisis", tags=["Crisis"])


# ============= SCHEMAS =============

class PanicRequest(BaseModel):
    context: Optional[str] = Field(None, max_length=1000)
    ticket_id: Optional[int] = None


class ScanRequest(BaseModel):
    text: str
    user_id: Optional[int] = None
    ticket_id: Optional[int] = None
    message_id: Optional[int] = None


class ResolveRequest(BaseModel):
    notes: str = Field(..., min_length=1, max_length=1000)


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int]
    ticket_id: Optional[int]
    message_id: Optional[int]
    alert_type: str
    detected_keywords: Optional[List[str]]
    severity: str
    status: str
    assigned_to_admin_id: Optional[int]
    notes: Optional[str]
    context: Optional[str]
    acknowledged_at: Optional[datetime]
    resolved_at: Optional[datetime]
    created_at: Optional[datetime]


class ScanResponse(BaseModel):
    alert: Optional[AlertResponse]
    hotline: Optional[dict] = None


# ============= HELPERS =============

def get_alert_or_404(db: Session, alert_id: int) -> CrisisAlert:
    alert = db.query(CrisisAlert).filter(CrisisAlert.id == alert_id).first()
    if not alert:
        raise HTTPException(status_code=404, detail="Crisis alert not found")
    return alert


# ============= ROUTES =============

@router.get("/hotlines")
async def get_hotlines():
    return crisis_alerts.hotline_info()


@router.post("/panic", response_model=AlertResponse, status_code=status.HTTP_201_CREATED)
async def panic_button(
    data: PanicRequest,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    return crisis_alerts.raise_panic_alert(
        db, user_id=user_context["user_id"], ticket_id=data.ticket_id, context=data.context
    )


@router.post("/scan", response_model=ScanResponse)
async def scan_text(
    data: ScanRequest,
    user_context: dict = Depends(require_consultant),
    db: Session = Depends(get_db)
):
    """Scan a message for crisis phrases; an alert is raised when any match."""
    alert = crisis_alerts.detect_and_record_crisis(
        db, data.text,
        user_id=data.user_id,
        ticket_id=data.ticket_id,
        message_id=data.message_id,
    )
    return ScanResponse(
        alert=AlertResponse.model_validate(alert) if alert else None,
        hotline=crisis_alerts.hotline_info() if alert else None,
    )


@router.get("/alerts", response_model=List[AlertResponse])
async def list_alerts(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    severity: Optional[str] = Query(None, description="Filter by severity"),
    limit: int = Query(20, ge=1, le=100),
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    query = db.query(CrisisAlert)
    if status_filter:
        query = query.filter(CrisisAlert.status == status_filter)
    if severity:
        query = query.filter(CrisisAlert.severity == severity)
    return query.order_by(CrisisAlert.id.desc()).limit(limit).all()


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: int,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    alert = get_alert_or_404(db, alert_id)
    try:
        return crisis_alerts.acknowledge_alert(db, alert, user_context["user_id"])
    except CrisisAlertError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int,
    data: ResolveRequest,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    alert = get_alert_or_404(db, alert_id)
    try:
        return crisis_alerts.resolve_alert(db, alert, user_context["user_id"], data.notes)
    except CrisisAlertError as e:
        raise HTTPException(status_code=409, detail=str(e))
