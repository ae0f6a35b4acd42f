"""
Tests for ticket intake and care team management.
"""
import pytest

from app.db.models import (
    ConsultationTicketConsultant, CrisisAlert, FormSubmission, RiskLevel,
    TeamRole, TicketStatus, UserRole,
)
from app.services import care_team
from app.services.consultant_routing import override_assignment
from app.services.care_team import (
    DuplicateTeamMemberError, InvalidTeamMemberError, NotPrimaryConsultantError,
    NotTicketOwnerError, TeamMemberNotFoundError,
)


@pytest.fixture
def owner(make_user):
    return make_user()


@pytest.fixture
def primary(make_consultant):
    return make_consultant(level="senior")


@pytest.fixture
def colleague(make_consultant):
    return make_consultant(level="junior")


@pytest.fixture
def opened(db, owner, primary, colleague, clock):
    """Ticket routed to `primary` (senior outranks junior)."""
    return care_team.open_ticket(db, owner.id, "Sulit tidur", "Saya sulit tidur sejak pindah kerja", clock=clock)


# ============= INTAKE =============

class TestOpenTicket:

    def test_routes_waiting_ticket(self, opened, primary):
        ticket = opened.ticket

        assert ticket.status == TicketStatus.WAITING.value
        assert ticket.ticket_number.startswith("TKT")
        assert ticket.type == "initial_free"
        assert ticket.urgency == "normal"
        assert ticket.risk_level == RiskLevel.LOW.value
        assert opened.consultant.id == primary.id
        assert ticket.consultant_id == primary.id
        assert opened.alert is None

    @pytest.mark.parametrize("urgency,expected", [
        ("rendah", "normal"), ("sedang", "urgent"), ("tinggi", "emergency"), (None, "normal"),
    ])
    def test_urgency_mapping(self, db, owner, urgency, expected):
        result = care_team.open_ticket(db, owner.id, "Tes", "Cerita singkat", urgency=urgency, auto_route=False)

        assert result.ticket.urgency == expected

    def test_critical_narrative_raises_alert_before_routing(self, db, owner):
        result = care_team.open_ticket(db, owner.id, "Tolong", "Saya ingin mati saja")

        assert result.ticket.risk_level == RiskLevel.CRITICAL.value
        assert result.consultant is None
        assert result.ticket.consultant_id is None

        alert = db.query(CrisisAlert).one()
        assert alert.id == result.alert.id
        assert alert.alert_type == "system_assessment"
        assert alert.severity == RiskLevel.CRITICAL.value
        assert alert.ticket_id == result.ticket.id
        assert alert.detected_keywords == ["suicide_ideation"]
        assert alert.context == "Terdeteksi oleh sistem asesmen risiko: suicide_ideation"

    def test_submission_risk_raises_ticket_level(self, db, owner, screening_template):
        submission = FormSubmission(form_template_id=screening_template.id, user_id=owner.id,
                                    total_risk_score=18, risk_level=RiskLevel.HIGH.value)
        db.add(submission)
        db.commit()

        result = care_team.open_ticket(db, owner.id, "Tes", "Cerita singkat",
                                       submission=submission, auto_route=False)

        assert result.ticket.risk_level == RiskLevel.HIGH.value
        assert result.ticket.form_submission_id == submission.id
        assert submission.consultation_ticket_id == result.ticket.id
        # Submission risk alone does not raise an alert
        assert result.alert is None

    def test_auto_route_disabled(self, db, owner, primary):
        result = care_team.open_ticket(db, owner.id, "Tes", "Cerita singkat", auto_route=False)

        assert result.consultant is None
        assert result.ticket.consultant_id is None

    def test_higher_risk(self):
        assert care_team.higher_risk(RiskLevel.LOW, "high") == RiskLevel.HIGH
        assert care_team.higher_risk("critical", RiskLevel.MEDIUM) == RiskLevel.CRITICAL


# ============= CARE TEAM =============

class TestInvite:

    def test_primary_invites_pending_collaborator(self, db, opened, primary, colleague, clock):
        member = care_team.invite_collaborator(db, opened.ticket, primary, colleague.id,
                                               internal_notes="Butuh second opinion", clock=clock)

        assert member.role == TeamRole.COLLABORATOR.value
        assert member.invited_by == primary.id
        assert member.invited_at == clock()
        assert member.is_pending_approval() is True
        assert member.can_send_messages() is False
        assert member.can_invite_collaborators() is False

    def test_only_primary_may_invite(self, db, opened, colleague, make_consultant):
        outsider = make_consultant()

        with pytest.raises(NotPrimaryConsultantError):
            care_team.invite_collaborator(db, opened.ticket, colleague, outsider.id)

    def test_duplicate_member(self, db, opened, primary, colleague):
        care_team.invite_collaborator(db, opened.ticket, primary, colleague.id)

        with pytest.raises(DuplicateTeamMemberError):
            care_team.invite_collaborator(db, opened.ticket, primary, colleague.id)

    def test_unknown_consultant(self, db, opened, primary):
        with pytest.raises(TeamMemberNotFoundError):
            care_team.invite_collaborator(db, opened.ticket, primary, 9999)


class TestApproval:

    @pytest.fixture
    def invited(self, db, opened, primary, colleague):
        return care_team.invite_collaborator(db, opened.ticket, primary, colleague.id)

    def test_owner_approves(self, db, opened, owner, invited, clock):
        member = care_team.approve_collaborator(db, opened.ticket, owner.id, invited.id, clock=clock)

        assert member.user_approved_at == clock()
        assert member.is_approved() is True
        assert member.can_send_messages() is True
        assert member.can_view_internal_notes() is True

    def test_only_owner_approves(self, db, opened, invited, make_user):
        stranger = make_user()

        with pytest.raises(NotTicketOwnerError):
            care_team.approve_collaborator(db, opened.ticket, stranger.id, invited.id)

    def test_approve_twice(self, db, opened, owner, invited):
        care_team.approve_collaborator(db, opened.ticket, owner.id, invited.id)

        with pytest.raises(InvalidTeamMemberError):
            care_team.approve_collaborator(db, opened.ticket, owner.id, invited.id)

    def test_primary_needs_no_approval(self, db, opened, owner, primary):
        primary_row = next(m for m in care_team.get_team(db, opened.ticket) if m.is_primary())

        assert primary_row.is_approved() is True
        with pytest.raises(InvalidTeamMemberError):
            care_team.approve_collaborator(db, opened.ticket, owner.id, primary_row.id)

    def test_reject_removes_row(self, db, opened, owner, invited):
        member_id = invited.id
        care_team.reject_collaborator(db, opened.ticket, owner.id, member_id)

        assert db.get(ConsultationTicketConsultant, member_id) is None

    def test_pending_approvals(self, db, owner, invited, make_user):
        assert [m.id for m in care_team.pending_approvals(db, owner.id)] == [invited.id]
        assert care_team.pending_approvals(db, make_user().id) == []


class TestReferral:

    def test_refer_case(self, db, opened, primary, colleague, clock):
        referred = care_team.refer_case(db, opened.ticket, primary, colleague.id,
                                        "Perlu penanganan spesialis", clock=clock)

        assert referred.role == TeamRole.REFERRED.value
        assert referred.handover_notes == "Perlu penanganan spesialis"
        assert referred.is_approved() is True
        assert opened.ticket.consultant_id == colleague.id

        team = care_team.get_team(db, opened.ticket)
        old = next(m for m in team if m.consultant_id == primary.id)
        assert old.role == TeamRole.COLLABORATOR.value
        assert old.user_approved_at == clock()
        assert [m.role for m in team] == ["referred", "collaborator"]

    def test_refer_again_after_override_reuses_rows(self, db, opened, primary, colleague, make_user):
        admin = make_user(role=UserRole.ADMIN.value)
        first = care_team.refer_case(db, opened.ticket, primary, colleague.id, "Alih tangan")
        override_assignment(db, opened.ticket, primary.id, admin.id, "Kembali ke konsultan awal")

        second = care_team.refer_case(db, opened.ticket, primary, colleague.id, "Alih tangan lagi")

        assert second.id == first.id
        assert second.handover_notes == "Alih tangan lagi"
        assert second.is_active is True
        assert opened.ticket.consultant_id == colleague.id
        rows = db.query(ConsultationTicketConsultant).filter(
            ConsultationTicketConsultant.consultation_ticket_id == opened.ticket.id,
        ).all()
        assert sorted((m.consultant_id, m.role) for m in rows) == sorted([
            (primary.id, TeamRole.COLLABORATOR.value), (colleague.id, TeamRole.REFERRED.value),
        ])

    def test_referrer_with_earlier_collaborator_row(self, db, opened, primary, colleague, make_consultant):
        # Routed back to primary by the system while the collaborator row from the first referral remains
        care_team.refer_case(db, opened.ticket, primary, colleague.id, "Alih tangan")
        first_row = db.query(ConsultationTicketConsultant).filter_by(
            consultation_ticket_id=opened.ticket.id, consultant_id=primary.id,
        ).one()
        routing_primary = ConsultationTicketConsultant(
            consultation_ticket_id=opened.ticket.id, consultant_id=primary.id,
            role=TeamRole.PRIMARY.value, is_active=True,
        )
        db.add(routing_primary)
        db.commit()
        third = make_consultant()

        care_team.refer_case(db, opened.ticket, primary, third.id, "Ke konsultan ketiga")

        assert routing_primary.is_active is False
        assert first_row.is_active is True
        assert opened.ticket.consultant_id == third.id

    def test_cannot_refer_to_self(self, db, opened, primary):
        with pytest.raises(InvalidTeamMemberError):
            care_team.refer_case(db, opened.ticket, primary, primary.id, "x")

    def test_former_primary_loses_privileges(self, db, opened, primary, colleague, make_consultant):
        care_team.refer_case(db, opened.ticket, primary, colleague.id, "Alih tangan")
        third = make_consultant()

        with pytest.raises(NotPrimaryConsultantError):
            care_team.invite_collaborator(db, opened.ticket, primary, third.id)


class TestRemoval:

    def test_primary_removes_collaborator(self, db, opened, primary, colleague):
        member = care_team.invite_collaborator(db, opened.ticket, primary, colleague.id)

        removed = care_team.remove_member(db, opened.ticket, primary, member.id)

        assert removed.is_active is False
        assert colleague.id not in [m.consultant_id for m in care_team.get_team(db, opened.ticket)]

    def test_cannot_remove_primary(self, db, opened, primary):
        primary_row = next(m for m in care_team.get_team(db, opened.ticket) if m.is_primary())

        with pytest.raises(InvalidTeamMemberError):
            care_team.remove_member(db, opened.ticket, primary, primary_row.id)

    def test_member_of_other_ticket(self, db, opened, primary):
        with pytest.raises(TeamMemberNotFoundError):
            care_team.remove_member(db, opened.ticket, primary, 9999)
