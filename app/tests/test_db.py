"""
Tests for seeding and startup schema checks.
"""
from app.db.models import ConsultationCategory, FormTemplate, RiskLevel
from app.db.preflight import REQUIRED_TABLES, missing_tables, run_db_preflight
from app.db.seed import DEFAULT_TEMPLATE_SLUG, seed_database
from app.db.session import Base, engine
from app.services import form_engine


class TestSeed:

    def test_seed_is_idempotent(self, db):
        seed_database(db)
        seed_database(db)

        assert db.query(ConsultationCategory).count() == 4
        assert db.query(FormTemplate).filter(FormTemplate.slug == DEFAULT_TEMPLATE_SLUG).count() == 1

    def test_seeded_form_is_the_default(self, db):
        seed_database(db)

        template = form_engine.get_default_template(db, category_id=None)

        assert template.slug == DEFAULT_TEMPLATE_SLUG
        assert template.is_active is True

    def test_seeded_form_flags_self_harm_plan_as_critical(self, db, make_user):
        seed_database(db)
        template = form_engine.get_default_template(db, category_id=None)
        fields = {f.field_key: f.id for f in template.fields}

        submission = form_engine.create_submission(db, template, make_user().id, {
            fields["keluhan_utama"]: "Tidak bisa berhenti memikirkan hal buruk",
            fields["durasi_keluhan"]: "gt_1_month",
            fields["gangguan_tidur"]: "often",
            fields["pikiran_menyakiti_diri"]: "often",
            fields["rencana_menyakiti_diri"]: "yes",
        }, explanations={
            fields["pikiran_menyakiti_diri"]: "Hampir setiap hari",
            fields["rencana_menyakiti_diri"]: "Sudah terpikir caranya",
        })

        assert submission.risk_level == RiskLevel.CRITICAL.value
        assert submission.is_critical() is True


class TestPreflight:

    def test_sqlite_skips_connectivity_check(self):
        assert run_db_preflight(retries=1, delay=0) is True

    def test_missing_tables(self, db):
        assert missing_tables(engine) == []

        Base.metadata.tables["crisis_alerts"].drop(bind=engine)

        assert missing_tables(engine) == ["crisis_alerts"]
        assert "crisis_alerts" in REQUIRED_TABLES
