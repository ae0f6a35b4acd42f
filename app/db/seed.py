"""
Database seeding for consultation categories and the default screening form.
"""
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db.models import ConsultationCategory, FieldType, FormField, FormFieldOption, FormTemplate

logger = get_logger(__name__)


CATEGORIES = [
    ("Kesehatan Mental", "kesehatan-mental"),
    ("Keluarga & Pernikahan", "keluarga-pernikahan"),
    ("Spiritual", "spiritual"),
    ("Karier & Pendidikan", "karier-pendidikan"),
]

DEFAULT_TEMPLATE_SLUG = "skrining-awal"

# (field_key, label, type, required, core, weight, options[(label, value, score, explanation)], condition)
SCREENING_FIELDS = [
    ("keluhan_utama", "Apa keluhan utama Anda?", FieldType.TEXTAREA, True, True, 0, [], None),
    ("durasi_keluhan", "Sudah berapa lama keluhan ini dirasakan?", FieldType.RADIO, True, True, 1, [
        ("Kurang dari 1 minggu", "lt_1_week", 0, False),
        ("1-4 minggu", "1_4_weeks", 2, False),
        ("Lebih dari 1 bulan", "gt_1_month", 4, False),
    ], None),
    ("gangguan_tidur", "Apakah Anda mengalami gangguan tidur?", FieldType.RADIO, True, False, 1, [
        ("Tidak", "no", 0, False),
        ("Kadang-kadang", "sometimes", 2, False),
        ("Hampir setiap malam", "often", 4, False),
    ], None),
    ("pikiran_menyakiti_diri", "Apakah Anda pernah berpikir untuk menyakiti diri sendiri?", FieldType.RADIO, True, True, 5, [
        ("Tidak pernah", "never", 0, False),
        ("Pernah terlintas", "sometimes", 6, True),
        ("Sering", "often", 10, True),
    ], None),
    ("dukungan_sekitar", "Apakah ada orang terdekat yang bisa Anda ajak bicara?", FieldType.RADIO, False, False, 0, [
        ("Ada", "yes", 0, False),
        ("Tidak ada", "no", 3, False),
    ], None),
    ("rencana_menyakiti_diri", "Apakah Anda sudah memiliki rencana tertentu?", FieldType.RADIO, True, False, 5, [
        ("Tidak", "no", 0, False),
        ("Ya", "yes", 10, True),
    ], {"field_key": "pikiran_menyakiti_diri", "operator": "not_equals", "value": "never"}),
]


def seed_categories(db: Session) -> int:
    created = 0
    for name, slug in CATEGORIES:
        if db.query(ConsultationCategory.id).filter(ConsultationCategory.slug == slug).first():
            continue
        db.add(ConsultationCategory(name=name, slug=slug, is_active=True))
        created += 1
    db.flush()
    return created


def seed_default_template(db: Session) -> bool:
    if db.query(FormTemplate.id).filter(FormTemplate.slug == DEFAULT_TEMPLATE_SLUG).first():
        return False

    template = FormTemplate(
        name="Skrining Awal",
        slug=DEFAULT_TEMPLATE_SLUG,
        description="Kuesioner skrining awal sebelum konsultasi",
        type="screening",
        category_id=None,
        is_active=True,
        is_default=True,
        version=1,
        settings={},
    )
    for order, (key, label, field_type, required, core, weight, options, condition) in enumerate(SCREENING_FIELDS, start=1):
        field = FormField(
            field_key=key,
            label=label,
            field_type=field_type.value,
            is_required=required,
            is_core_field=core,
            order=order,
            risk_weight=weight,
            conditional_logic=condition,
        )
        for option_order, (option_label, value, score, explanation) in enumerate(options, start=1):
            field.options.append(FormFieldOption(
                label=option_label,
                value=value,
                risk_score=score,
                order=option_order,
                requires_explanation=explanation,
            ))
        template.fields.append(field)

    db.add(template)
    db.flush()
    return True


def seed_database(db: Session):
    """Seed categories and the default screening template; safe to run repeatedly."""
    categories = seed_categories(db)
    template = seed_default_template(db)
    db.commit()

    if categories or template:
        logger.info(f"Seeded {categories} categories, default template created: {template}")
    else:
        logger.info("Database already seeded. Skipping...")


if __name__ == "__main__":
    from app.core.logging import setup_logging
    from app.db.session import get_db_context, init_db

    setup_logging()
    init_db()
    with get_db_context() as db:
        seed_database(db)
