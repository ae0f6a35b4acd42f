"""
Tests for the dynamic form engine: visibility rules, answer validation,
risk scoring and template lifecycle.
"""
import pytest

from app.db.models import FormSubmission, FormTemplate, RiskLevel
from app.services import form_engine
from app.services.form_engine import (
    AnswerValidationError, CoreFieldProtectedError, FormEngineError,
    InvalidConditionalRuleError, TemplateInUseError,
)


def ids(template: FormTemplate) -> dict:
    return {f.field_key: f.id for f in template.fields}


def by_key(template: FormTemplate, key: str):
    return next(f for f in template.fields if f.field_key == key)


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def bad_night_answers(screening_template):
    f = ids(screening_template)
    return {f["mood"]: "bad", f["sleep"]: "none", f["notes"]: "susah fokus", f["plan"]: "belum ada"}


# ============= SCORING =============

class TestRiskLevels:

    @pytest.mark.parametrize("total,level", [
        (0, RiskLevel.LOW),
        (5, RiskLevel.LOW),
        (6, RiskLevel.MEDIUM),
        (15, RiskLevel.MEDIUM),
        (16, RiskLevel.HIGH),
        (25, RiskLevel.HIGH),
        (26, RiskLevel.CRITICAL),
        (60, RiskLevel.CRITICAL),
    ])
    def test_thresholds(self, total, level):
        assert form_engine.determine_risk_level(total) == level


class TestSubmissionScoring:

    def test_weights_plus_option_scores(self, db, screening_template, user, bad_night_answers, clock):
        f = ids(screening_template)
        submission = form_engine.create_submission(
            db, screening_template, user.id, bad_night_answers,
            explanations={f["sleep"]: "Sudah dua minggu"}, clock=clock,
        )
        db.commit()

        # (5 + 3) + (0 + 10) + (2 + 0) + (0 + 0)
        assert submission.total_risk_score == 20
        assert submission.risk_level == RiskLevel.HIGH.value
        assert submission.needs_expert() is True
        assert submission.is_critical() is False
        assert submission.submitted_at == clock()

    def test_manual_score_on_text_answer(self, db, screening_template, user, bad_night_answers):
        f = ids(screening_template)
        submission = form_engine.create_submission(
            db, screening_template, user.id, bad_night_answers,
            explanations={f["sleep"]: "Sudah dua minggu"},
        )
        notes = next(a for a in submission.answers if a.form_field_id == f["notes"])

        assert form_engine.set_manual_score(db, notes, 6) == (26, RiskLevel.CRITICAL)
        assert submission.risk_level == RiskLevel.CRITICAL.value
        assert submission.is_critical() is True

    def test_option_scored_answer_rejects_manual_score(self, db, screening_template, user):
        f = ids(screening_template)
        submission = form_engine.create_submission(
            db, screening_template, user.id, {f["mood"]: "good", f["sleep"]: "fine"},
        )
        mood = next(a for a in submission.answers if a.form_field_id == f["mood"])

        with pytest.raises(FormEngineError):
            form_engine.set_manual_score(db, mood, 9)
        assert submission.total_risk_score == 5

    def test_option_score_wins_on_rescore(self, db, screening_template, user):
        f = ids(screening_template)
        submission = form_engine.create_submission(
            db, screening_template, user.id, {f["mood"]: "good", f["sleep"]: "fine"},
        )
        mood = next(a for a in submission.answers if a.form_field_id == f["mood"])
        mood.risk_score = 9

        assert form_engine.score_submission(db, submission) == (5, RiskLevel.LOW)
        assert mood.risk_score == 0

    @pytest.mark.parametrize("score", [-1, 11])
    def test_manual_score_range(self, db, screening_template, user, score):
        f = ids(screening_template)
        submission = form_engine.create_submission(
            db, screening_template, user.id,
            {f["mood"]: "good", f["sleep"]: "fine", f["notes"]: "Capek"},
        )
        notes = next(a for a in submission.answers if a.form_field_id == f["notes"])

        with pytest.raises(FormEngineError):
            form_engine.set_manual_score(db, notes, score)

    def test_rescoring_is_idempotent(self, db, screening_template, user, bad_night_answers):
        f = ids(screening_template)
        submission = form_engine.create_submission(
            db, screening_template, user.id, bad_night_answers,
            explanations={f["sleep"]: "Sudah dua minggu"},
        )
        db.commit()

        first = form_engine.score_submission(db, submission)
        second = form_engine.score_submission(db, submission)

        assert first == second == (20, RiskLevel.HIGH)
        assert db.get(FormSubmission, submission.id).total_risk_score == 20


# ============= VISIBILITY =============

class TestConditionalVisibility:

    def test_field_without_rule_is_shown(self, screening_template):
        assert form_engine.should_show(by_key(screening_template, "mood"), {}) is True

    def test_rule_matches(self, screening_template):
        plan = by_key(screening_template, "plan")

        assert form_engine.should_show(plan, {"mood": "bad"}) is True
        assert form_engine.should_show(plan, {"mood": "good"}) is False

    def test_missing_dependency_hides_field(self, screening_template):
        assert form_engine.should_show(by_key(screening_template, "plan"), {}) is False

    def test_not_equals_and_contains(self, screening_template):
        plan = by_key(screening_template, "plan")

        plan.conditional_logic = {"field_key": "mood", "operator": "not_equals", "value": "good"}
        assert form_engine.should_show(plan, {"mood": "bad"}) is True

        plan.conditional_logic = {"field_key": "mood", "operator": "contains", "value": "bad"}
        assert form_engine.should_show(plan, {"mood": ["bad", "tired"]}) is True
        assert form_engine.should_show(plan, {"mood": "very bad"}) is True
        assert form_engine.should_show(plan, {"mood": ["good"]}) is False

    def test_malformed_rule_raises(self, screening_template):
        plan = by_key(screening_template, "plan")
        plan.conditional_logic = {"field_key": "mood", "operator": "greater_than", "value": 1}

        with pytest.raises(InvalidConditionalRuleError):
            form_engine.should_show(plan, {"mood": "bad"})


# ============= VALIDATION =============

class TestAnswerValidation:

    def test_missing_required_field(self, screening_template):
        f = ids(screening_template)

        with pytest.raises(AnswerValidationError) as exc:
            form_engine.validate_answers(screening_template, {f["mood"]: "good"})

        assert set(exc.value.errors) == {"sleep"}

    def test_hidden_required_field_is_not_required(self, screening_template):
        f = ids(screening_template)
        form_engine.validate_answers(screening_template, {f["mood"]: "good", f["sleep"]: "fine"})

    def test_visible_required_field_is_required(self, screening_template):
        f = ids(screening_template)

        with pytest.raises(AnswerValidationError) as exc:
            form_engine.validate_answers(screening_template, {f["mood"]: "bad", f["sleep"]: "fine"})

        assert "plan" in exc.value.errors

    def test_unknown_option(self, screening_template):
        f = ids(screening_template)

        with pytest.raises(AnswerValidationError) as exc:
            form_engine.validate_answers(screening_template, {f["mood"]: "meh", f["sleep"]: "fine"})

        assert "unknown option" in exc.value.errors["mood"]

    def test_single_choice_rejects_list(self, screening_template):
        f = ids(screening_template)

        with pytest.raises(AnswerValidationError) as exc:
            form_engine.validate_answers(screening_template, {f["mood"]: ["good", "bad"], f["sleep"]: "fine"})

        assert "mood" in exc.value.errors

    def test_option_requiring_explanation(self, screening_template):
        f = ids(screening_template)
        answers = {f["mood"]: "good", f["sleep"]: "none"}

        with pytest.raises(AnswerValidationError) as exc:
            form_engine.validate_answers(screening_template, answers)
        assert "sleep" in exc.value.errors

        form_engine.validate_answers(screening_template, answers, {f["sleep"]: "Sering terbangun"})

    def test_foreign_field_id(self, screening_template):
        f = ids(screening_template)

        with pytest.raises(AnswerValidationError) as exc:
            form_engine.validate_answers(screening_template, {f["mood"]: "good", f["sleep"]: "fine", 9999: "x"})

        assert "9999" in exc.value.errors


# ============= TEMPLATE LIFECYCLE =============

class TestTemplateLifecycle:

    def test_unique_slug(self, db, screening_template):
        assert form_engine.unique_slug(db, "Skrining") == "skrining-2"
        assert form_engine.unique_slug(db, "Skrining Baru!") == "skrining-baru"

    def test_duplicate_template(self, db, screening_template):
        copy = form_engine.duplicate_template(db, screening_template, user_id=None)

        assert copy.id != screening_template.id
        assert copy.name == "Skrining (Copy)"
        assert copy.slug == "skrining-copy"
        assert copy.is_active is False
        assert copy.is_default is False
        assert copy.version == 1
        assert [f.field_key for f in copy.fields] == ["mood", "sleep", "notes", "plan"]
        assert [o.value for o in by_key(copy, "sleep").options] == ["fine", "none"]
        assert by_key(copy, "plan").conditional_logic["field_key"] == "mood"
        assert by_key(copy, "mood").id != by_key(screening_template, "mood").id

    def test_activation_keeps_single_default_per_category(self, db, category):
        old = FormTemplate(name="Lama", slug="lama", category_id=category.id, is_active=True, is_default=True)
        new = FormTemplate(name="Baru", slug="baru", category_id=category.id, is_active=False, is_default=True)
        db.add_all([old, new])
        db.commit()

        form_engine.activate_template(db, new)
        db.refresh(old)

        assert new.is_active is True
        assert new.is_default is True
        assert old.is_default is False
        assert form_engine.get_default_template(db, category.id).id == new.id

    def test_clearing_defaults_leaves_commit_to_caller(self, db, category):
        old = FormTemplate(name="Lama", slug="lama", category_id=category.id, is_active=True, is_default=True)
        new = FormTemplate(name="Baru", slug="baru", category_id=category.id, is_active=True, is_default=True)
        db.add_all([old, new])
        db.commit()

        assert form_engine.clear_other_defaults(db, new) == 1
        db.rollback()
        db.refresh(old)

        assert old.is_default is True

    def test_default_template_falls_back_to_uncategorised(self, db, screening_template, category):
        assert form_engine.get_default_template(db, category.id).id == screening_template.id
        assert form_engine.get_default_template(db).id == screening_template.id

    def test_delete_template_without_submissions(self, db, screening_template, clock):
        form_engine.delete_template(db, screening_template, clock=clock)

        assert screening_template.deleted_at == clock()
        assert screening_template.is_active is False
        assert form_engine.get_default_template(db) is None

    def test_delete_template_with_submissions(self, db, screening_template, user):
        f = ids(screening_template)
        form_engine.create_submission(db, screening_template, user.id, {f["mood"]: "good", f["sleep"]: "fine"})
        db.commit()

        with pytest.raises(TemplateInUseError):
            form_engine.delete_template(db, screening_template)


class TestFields:

    def test_add_field_auto_order(self, db, screening_template):
        field = form_engine.add_field(db, screening_template, {
            "field_key": "support", "label": "Dukungan", "field_type": "radio", "risk_weight": 1,
        }, options=[{"label": "Ada", "value": "yes", "risk_score": 0}])

        assert field.order == 5
        assert [o.value for o in field.options] == ["yes"]

    def test_add_field_duplicate_key(self, db, screening_template):
        with pytest.raises(FormEngineError):
            form_engine.add_field(db, screening_template, {"field_key": "mood", "label": "Lagi"})

    def test_add_field_invalid_rule(self, db, screening_template):
        with pytest.raises(InvalidConditionalRuleError):
            form_engine.add_field(db, screening_template, {
                "field_key": "extra", "label": "Extra",
                "conditional_logic": {"operator": "equals", "value": "bad"},
            })

    def test_core_field_cannot_be_deleted(self, db, screening_template):
        with pytest.raises(CoreFieldProtectedError):
            form_engine.delete_field(db, by_key(screening_template, "mood"))

    def test_answered_field_cannot_be_deleted(self, db, screening_template, user):
        f = ids(screening_template)
        form_engine.create_submission(
            db, screening_template, user.id,
            {f["mood"]: "good", f["sleep"]: "fine", f["notes"]: "-"},
        )
        db.commit()

        with pytest.raises(TemplateInUseError):
            form_engine.delete_field(db, by_key(screening_template, "notes"))

    def test_delete_unanswered_field(self, db, screening_template):
        form_engine.delete_field(db, by_key(screening_template, "notes"))
        db.refresh(screening_template)

        assert "notes" not in [f.field_key for f in screening_template.fields]

    def test_reorder_fields(self, db, screening_template):
        f = ids(screening_template)
        fields = form_engine.reorder_fields(db, screening_template, [
            {"id": f["plan"], "order": 1},
            {"id": f["mood"], "order": 4},
        ])

        assert [field.field_key for field in fields][0] == "plan"

    def test_reorder_rejects_foreign_field(self, db, screening_template):
        with pytest.raises(FormEngineError):
            form_engine.reorder_fields(db, screening_template, [{"id": 9999, "order": 1}])
