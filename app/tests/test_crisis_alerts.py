"""
Tests for crisis alert detection, auto-acknowledgement and the admin workflow.
"""
import pytest

from app.core.config import settings
from app.db.models import AuditLog, CrisisAlert, CrisisAlertStatus, RiskLevel, UserRole
from app.services import crisis_alerts
from app.services.crisis_alerts import AlertStateError

CRITICAL_TEXT = "Aku ingin mati, mau bunuh diri dan mengakhiri hidup"


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role=UserRole.ADMIN.value)


class TestKeywordDetection:

    def test_no_match_records_nothing(self, db, user):
        assert crisis_alerts.detect_and_record_crisis(db, "Hari ini menyenangkan", user_id=user.id) is None
        assert db.query(CrisisAlert).count() == 0

    def test_single_phrase_is_medium_and_pending(self, db, user, admin):
        alert = crisis_alerts.detect_and_record_crisis(db, "Kadang aku ingin mati", user_id=user.id)

        assert alert.alert_type == "keyword_detection"
        assert alert.severity == RiskLevel.MEDIUM.value
        assert alert.detected_keywords == ["ingin mati"]
        assert alert.status == CrisisAlertStatus.PENDING.value
        assert alert.assigned_to_admin_id is None

    def test_critical_is_auto_acknowledged(self, db, user, admin, clock):
        alert = crisis_alerts.detect_and_record_crisis(db, CRITICAL_TEXT, user_id=user.id, clock=clock)

        assert alert.severity == RiskLevel.CRITICAL.value
        assert alert.status == CrisisAlertStatus.ACKNOWLEDGED.value
        assert alert.assigned_to_admin_id == admin.id
        assert alert.acknowledged_at == clock()

    def test_critical_without_admin_stays_pending(self, db, user):
        alert = crisis_alerts.detect_and_record_crisis(db, CRITICAL_TEXT, user_id=user.id)

        assert alert.status == CrisisAlertStatus.PENDING.value

    def test_auto_escalation_can_be_disabled(self, db, user, admin, monkeypatch):
        monkeypatch.setattr(settings, "CRISIS_AUTO_ESCALATE", False)

        alert = crisis_alerts.detect_and_record_crisis(db, CRITICAL_TEXT, user_id=user.id)

        assert alert.status == CrisisAlertStatus.PENDING.value

    def test_context_is_truncated(self, db, user):
        text = "ingin mati " + "x" * 1000
        alert = crisis_alerts.detect_and_record_crisis(db, text, user_id=user.id)

        assert len(alert.context) == crisis_alerts.CONTEXT_MAX_CHARS

    def test_custom_keywords(self, db, user):
        alert = crisis_alerts.detect_and_record_crisis(db, "Saya lelah hidup", user_id=user.id,
                                                       keywords=["lelah hidup"])

        assert alert.detected_keywords == ["lelah hidup"]


class TestPanicButton:

    def test_panic_is_critical(self, db, user, admin, make_ticket):
        ticket = make_ticket(user)
        alert = crisis_alerts.raise_panic_alert(db, user.id, ticket_id=ticket.id, context="Tolong")

        assert alert.alert_type == "panic_button"
        assert alert.severity == RiskLevel.CRITICAL.value
        assert alert.ticket_id == ticket.id
        assert alert.status == CrisisAlertStatus.ACKNOWLEDGED.value
        assert alert.assigned_to_admin_id == admin.id


class TestAdminWorkflow:

    @pytest.fixture
    def alert(self, db, user):
        return crisis_alerts.detect_and_record_crisis(db, "ingin mati", user_id=user.id)

    def test_acknowledge_then_resolve(self, db, alert, admin, clock):
        crisis_alerts.acknowledge_alert(db, alert, admin.id, clock=clock)
        assert alert.status == CrisisAlertStatus.ACKNOWLEDGED.value
        assert alert.assigned_to_admin_id == admin.id

        crisis_alerts.resolve_alert(db, alert, admin.id, "Sudah dihubungi", clock=clock)
        assert alert.status == CrisisAlertStatus.RESOLVED.value
        assert alert.notes == "Sudah dihubungi"
        assert alert.resolved_at == clock()

        actions = [log.action for log in db.query(AuditLog).order_by(AuditLog.id)]
        assert actions == ["CRISIS_ALERT_ACKNOWLEDGED", "CRISIS_ALERT_RESOLVED"]

    def test_resolved_alert_is_final(self, db, alert, admin):
        crisis_alerts.resolve_alert(db, alert, admin.id, "Selesai")

        with pytest.raises(AlertStateError):
            crisis_alerts.resolve_alert(db, alert, admin.id, "Lagi")
        with pytest.raises(AlertStateError):
            crisis_alerts.acknowledge_alert(db, alert, admin.id)


def test_hotline_info():
    assert crisis_alerts.hotline_info() == {
        "name": settings.CRISIS_HOTLINE_NAME,
        "number": settings.CRISIS_HOTLINE_NUMBER,
    }
