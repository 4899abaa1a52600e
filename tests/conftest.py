import os

# app 모듈 import 전에 테스트 환경 설정 (메모리 sqlite)
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-qr-tokens"
os.environ["ENV"] = "test"
os.environ["QR_GENERATION_LIMIT_PER_MINUTE"] = "1000"
os.environ["RATE_LIMIT_CALLS"] = "10000"

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.core.database import Base, SessionLocal, engine
from app.models.database import Clinic, ClinicType, Plan, User, UserPlan, UserRole
from app.services.qr_token_service import qr_token_service
from app.utils.clock import utcnow


@pytest.fixture(autouse=True)
def _tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def seed(db):
    now = utcnow()
    plan = Plan(name="Plano Basico", credits=10, price=Decimal("150.00"), validity_days=30)
    clinic = Clinic(name="Clinica Centro", type=ClinicType.PARTNER.value, address="Rua Augusta, 100")
    other_clinic = Clinic(name="Clinica Sul", type=ClinicType.PARTNER.value, address="Av. Brasil, 200")
    closed_clinic = Clinic(name="Clinica Fechada", address="Rua das Flores, 3", is_active=False)

    patient = User(email="ana@example.com", first_name="Ana", last_name="Silva", role=UserRole.PATIENT.value)
    other_patient = User(email="bruno@example.com", first_name="Bruno", last_name="Costa", role=UserRole.PATIENT.value)
    staff = User(
        email="carla@clinicacentro.com", first_name="Carla", last_name="Souza",
        role=UserRole.CLINIC.value, clinic=clinic,
    )
    other_staff = User(
        email="diego@clinicasul.com", first_name="Diego", last_name="Lima",
        role=UserRole.CLINIC.value, clinic=other_clinic,
    )
    admin = User(email="admin@singleclin.com", first_name="Admin", role=UserRole.ADMINISTRATOR.value)

    user_plan = UserPlan(
        user=patient,
        plan=plan,
        credits=10,
        credits_remaining=10,
        amount_paid=Decimal("150.00"),
        expiration_date=now + timedelta(days=30),
    )

    db.add_all([plan, clinic, other_clinic, closed_clinic, patient, other_patient, staff, other_staff, admin, user_plan])
    db.commit()

    return SimpleNamespace(
        plan=plan,
        clinic=clinic,
        other_clinic=other_clinic,
        closed_clinic=closed_clinic,
        patient=patient,
        other_patient=other_patient,
        staff=staff,
        other_staff=other_staff,
        admin=admin,
        user_plan=user_plan,
    )


@pytest.fixture
def make_user_plan(db, seed):
    def _make(user=None, credits=10, credits_remaining=None, expires_in=timedelta(days=30), is_active=True):
        user_plan = UserPlan(
            user=user or seed.patient,
            plan=seed.plan,
            credits=credits,
            credits_remaining=credits if credits_remaining is None else credits_remaining,
            expiration_date=utcnow() + expires_in,
            is_active=is_active,
        )
        db.add(user_plan)
        db.commit()
        return user_plan
    return _make


@pytest.fixture
def issue_token():
    def _issue(user_plan, user_id=None, minutes=30, now=None):
        return qr_token_service.generate_token(
            user_plan_id=user_plan.id,
            user_id=user_id or user_plan.user_id,
            expiration_minutes=minutes,
            now=now,
        )
    return _issue
