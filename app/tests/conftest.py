"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, rebuilt for every test
- Factories for users, consultants, schedules, forms and tickets
- JWT token minting and a TestClient bound to the test session
"""
import os
from datetime import datetime, time
from typing import Generator

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["SEED_DEMO"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.clock import fixed_clock
from app.core.security import create_access_token
from app.db.session import Base, SessionLocal, engine, get_db
from app.db import models  # noqa - register tables on Base.metadata
from app.db.models import (
    Consultant, ConsultantSchedule, ConsultationCategory, ConsultationTicket,
    FormField, FormFieldOption, FormTemplate, Message, TicketStatus, User, UserRole,
)
from app.main import app


# Monday 2026-01-05 10:00 UTC (day_of_week 1)
NOW = datetime(2026, 1, 5, 10, 0, 0)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test; services are free to commit."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock(now):
    return fixed_clock(now)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user(db: Session):
    counter = {"n": 0}

    def _make(role: str = UserRole.USER.value, province: str = None, full_name: str = None) -> User:
        counter["n"] += 1
        user = User(
            email=f"{role}{counter['n']}@pendamping.test",
            full_name=full_name or f"{role.title()} {counter['n']}",
            role=role,
            province=province,
            is_active=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def category(db: Session) -> ConsultationCategory:
    cat = ConsultationCategory(name="Kesehatan Mental", slug="kesehatan-mental")
    db.add(cat)
    db.commit()
    db.refresh(cat)
    return cat


@pytest.fixture
def make_consultant(db: Session, make_user):
    def _make(
        level: str = "junior",
        category: ConsultationCategory = None,
        rating_average: float = 0,
        province: str = None,
        is_verified: bool = True,
        is_active: bool = True,
    ) -> Consultant:
        user = make_user(role=UserRole.CONSULTANT.value, province=province)
        consultant = Consultant(
            user_id=user.id,
            specialist_category_id=category.id if category else None,
            level=level,
            province=province,
            rating_average=rating_average,
            is_verified=is_verified,
            is_active=is_active,
        )
        db.add(consultant)
        db.commit()
        db.refresh(consultant)
        return consultant

    return _make


@pytest.fixture
def add_schedule(db: Session):
    def _add(consultant: Consultant, day_of_week: int, start: time, end: time,
             is_available: bool = True) -> ConsultantSchedule:
        schedule = ConsultantSchedule(
            consultant_id=consultant.id,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
            is_available=is_available,
        )
        db.add(schedule)
        db.commit()
        db.refresh(consultant)
        return schedule

    return _add


@pytest.fixture
def make_ticket(db: Session):
    def _make(user: User, category: ConsultationCategory = None, consultant: Consultant = None,
              status: str = TicketStatus.WAITING.value, **kwargs) -> ConsultationTicket:
        ticket = ConsultationTicket(
            user_id=user.id,
            category_id=category.id if category else None,
            consultant_id=consultant.id if consultant else None,
            subject=kwargs.pop("subject", "Butuh pendampingan"),
            problem_description=kwargs.pop("problem_description", "Saya merasa lelah akhir-akhir ini"),
            status=status,
            **kwargs,
        )
        db.add(ticket)
        db.commit()
        db.refresh(ticket)
        return ticket

    return _make


@pytest.fixture
def add_message(db: Session):
    def _add(ticket: ConsultationTicket, sender: User, created_at: datetime) -> Message:
        message = Message(ticket_id=ticket.id, sender_id=sender.id, body="Halo", created_at=created_at)
        db.add(message)
        db.commit()
        return message

    return _add


@pytest.fixture
def screening_template(db: Session) -> FormTemplate:
    """
    Active template with three scored fields and one conditional follow-up.

    mood (weight 5): good=0 / bad=3
    sleep (weight 0): fine=0 / none=10
    notes (weight 2, text): manual score
    plan (weight 0, required when shown): shown only when mood == bad
    """
    template = FormTemplate(name="Skrining", slug="skrining", is_active=True, is_default=True, version=1)
    mood = FormField(field_key="mood", label="Suasana hati", field_type="radio",
                     is_required=True, is_core_field=True, order=1, risk_weight=5)
    mood.options = [
        FormFieldOption(label="Baik", value="good", risk_score=0, order=1),
        FormFieldOption(label="Buruk", value="bad", risk_score=3, order=2),
    ]
    sleep = FormField(field_key="sleep", label="Tidur", field_type="select",
                      is_required=True, order=2, risk_weight=0)
    sleep.options = [
        FormFieldOption(label="Nyenyak", value="fine", risk_score=0, order=1),
        FormFieldOption(label="Tidak bisa tidur", value="none", risk_score=10, order=2,
                        requires_explanation=True),
    ]
    notes = FormField(field_key="notes", label="Catatan", field_type="textarea",
                      is_required=False, order=3, risk_weight=2)
    plan = FormField(field_key="plan", label="Rencana", field_type="text", is_required=True,
                     order=4, risk_weight=0,
                     conditional_logic={"field_key": "mood", "operator": "equals", "value": "bad"})
    template.fields = [mood, sleep, notes, plan]
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def auth():
    """Bearer headers for a user, carrying the user's role claim."""
    def _headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def client(db: Session) -> Generator[TestClient, None, None]:
    """TestClient sharing the test session; lifespan (init_db) is not run."""
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
