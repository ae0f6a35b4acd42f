"""
Crisis alerts raised from keyword detection, risk assessment or the panic button.
"""
import logging
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from app.core.clock import Clock, utcnow
from app.core.config import settings
from app.core.logging import get_logger, audit_logger
from app.db.models import (
    AuditLog, ConsultationTicket, CrisisAlert, CrisisAlertStatus,
    CrisisAlertType, RiskLevel, User, UserRole,
)
from app.services.risk_keywords import RiskAssessment, detect_crisis_keywords

logger = get_logger(__name__)

CONTEXT_MAX_CHARS = 500


class CrisisAlertError(Exception):
    """Base error for crisis alert operations."""


class AlertStateError(CrisisAlertError):
    """Transition not allowed from the alert's current status."""


def hotline_info() -> dict:
    return {
        "name": settings.CRISIS_HOTLINE_NAME,
        "number": settings.CRISIS_HOTLINE_NUMBER,
    }


def _first_admin(db: Session) -> Optional[User]:
    return db.query(User).filter(
        User.role == UserRole.ADMIN.value,
        User.is_active == True,
    ).order_by(User.id).first()


def _notify_admins(alert: CrisisAlert):
    # Delivery is handled elsewhere; the audit stream is the hand-off point
    audit_logger.log(
        "CRISIS_ALERT_RAISED",
        user_id=alert.user_id,
        entity_type="crisis_alert",
        entity_id=alert.id,
        details={
            "alert_type": alert.alert_type,
            "severity": alert.severity,
            "ticket_id": alert.ticket_id,
            "detected_keywords": alert.detected_keywords or [],
        },
        level=logging.WARNING,
    )


def _acknowledge(alert: CrisisAlert, admin_id: int, now):
    alert.status = CrisisAlertStatus.ACKNOWLEDGED.value
    alert.assigned_to_admin_id = admin_id
    alert.acknowledged_at = now


def _auto_acknowledge(db: Session, alert: CrisisAlert, now):
    if not settings.CRISIS_AUTO_ESCALATE:
        return
    admin = _first_admin(db)
    if admin:
        _acknowledge(alert, admin.id, now)
    else:
        logger.warning(f"No admin available to auto-acknowledge crisis alert {alert.id}")


def escalate_high_risk_case(
    db: Session,
    ticket: ConsultationTicket,
    assessment: RiskAssessment,
) -> CrisisAlert:
    """Record a system-assessment alert for a ticket whose narrative needs escalation."""
    flags = ", ".join(assessment.risk_flags)
    alert = CrisisAlert(
        user_id=ticket.user_id,
        ticket_id=ticket.id,
        alert_type=CrisisAlertType.SYSTEM_ASSESSMENT.value,
        detected_keywords=list(assessment.risk_flags),
        severity=assessment.risk_level.value,
        status=CrisisAlertStatus.PENDING.value,
        context=f"Terdeteksi oleh sistem asesmen risiko: {flags}",
        notes=f"Otomatis dibuat oleh sistem karena skor risiko: {assessment.risk_score}",
    )
    db.add(alert)
    db.flush()

    logger.warning(
        f"High-risk consultation detected: ticket={ticket.id} level={assessment.risk_level.value} "
        f"score={assessment.risk_score}"
    )
    _notify_admins(alert)
    return alert


def detect_and_record_crisis(
    db: Session,
    text: str,
    user_id: Optional[int] = None,
    ticket_id: Optional[int] = None,
    message_id: Optional[int] = None,
    keywords: Optional[Sequence[str]] = None,
    clock: Clock = utcnow,
) -> Optional[CrisisAlert]:
    """
    Scan text for crisis phrases and raise an alert when any match.

    Returns:
        The new alert, or None when no phrase matched
    """
    detection = detect_crisis_keywords(text, keywords if keywords is not None else settings.CRISIS_KEYWORDS)
    if not detection.triggered:
        return None

    alert = CrisisAlert(
        user_id=user_id,
        ticket_id=ticket_id,
        message_id=message_id,
        alert_type=CrisisAlertType.KEYWORD_DETECTION.value,
        detected_keywords=detection.detected_keywords,
        severity=detection.severity.value,
        status=CrisisAlertStatus.PENDING.value,
        context=(text or "")[:CONTEXT_MAX_CHARS],
    )
    db.add(alert)
    db.flush()

    if detection.severity == RiskLevel.CRITICAL:
        _auto_acknowledge(db, alert, clock())
    if detection.severity in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        _notify_admins(alert)

    db.commit()
    db.refresh(alert)
    return alert


def raise_panic_alert(
    db: Session,
    user_id: int,
    ticket_id: Optional[int] = None,
    context: Optional[str] = None,
    clock: Clock = utcnow,
) -> CrisisAlert:
    alert = CrisisAlert(
        user_id=user_id,
        ticket_id=ticket_id,
        alert_type=CrisisAlertType.PANIC_BUTTON.value,
        detected_keywords=[],
        severity=RiskLevel.CRITICAL.value,
        status=CrisisAlertStatus.PENDING.value,
        context=context,
    )
    db.add(alert)
    db.flush()

    _auto_acknowledge(db, alert, clock())
    _notify_admins(alert)

    db.commit()
    db.refresh(alert)
    return alert


def acknowledge_alert(db: Session, alert: CrisisAlert, admin_id: int, clock: Clock = utcnow) -> CrisisAlert:
    if alert.status == CrisisAlertStatus.RESOLVED.value:
        raise AlertStateError("Resolved alerts cannot be acknowledged")

    _acknowledge(alert, admin_id, clock())
    db.add(AuditLog(
        user_id=admin_id,
        action="CRISIS_ALERT_ACKNOWLEDGED",
        entity_type="crisis_alert",
        entity_id=alert.id,
        details={"severity": alert.severity},
    ))
    db.commit()
    db.refresh(alert)
    return alert


def resolve_alert(db: Session, alert: CrisisAlert, admin_id: int, notes: str, clock: Clock = utcnow) -> CrisisAlert:
    if alert.status == CrisisAlertStatus.RESOLVED.value:
        raise AlertStateError("Alert is already resolved")

    alert.status = CrisisAlertStatus.RESOLVED.value
    alert.notes = notes
    alert.resolved_at = clock()
    db.add(AuditLog(
        user_id=admin_id,
        action="CRISIS_ALERT_RESOLVED",
        entity_type="crisis_alert",
        entity_id=alert.id,
        details={"severity": alert.severity},
    ))
    db.commit()
    db.refresh(alert)
    return alert
