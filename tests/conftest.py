"""
Shared fixtures: an in-memory SQLite database seeded with one tenant's staff,
a patient, a therapy type and a Monday availability window.
"""

from datetime import date, time
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from therapy_center.auth import create_access_token
from therapy_center.db import build_engine, get_session, init_db
from therapy_center.main import app
from therapy_center.models import Patient, TherapistAvailability, TherapyType, User

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"
MONDAY = date(2026, 10, 19)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def seed(db):
    """Staff of every role, one patient, one therapy type and a MONDAY 09:00-17:00 window."""
    admin = User(tenant_id=TENANT, email="admin@a.test", first_name="Ada", last_name="Admin", role="WORKSPACE_ADMIN")
    operator = User(tenant_id=TENANT, email="ops@a.test", first_name="Oli", last_name="Ops", role="OPERATOR")
    therapist = User(tenant_id=TENANT, email="t1@a.test", first_name="Tess", last_name="One", role="THERAPIST")
    other_therapist = User(tenant_id=TENANT, email="t2@a.test", first_name="Theo", last_name="Two", role="THERAPIST")
    accountant = User(tenant_id=TENANT, email="acc@a.test", first_name="Cal", last_name="Count", role="ACCOUNTANT")
    outsider = User(tenant_id=OTHER_TENANT, email="admin@b.test", first_name="Bo", last_name="B", role="WORKSPACE_ADMIN")
    speech = TherapyType(
        tenant_id=TENANT, name="Speech Therapy", default_duration=60, default_cost=Decimal("40.00")
    )
    patient = Patient(tenant_id=TENANT, first_name="Sam", last_name="Patient", guardian_name="Pat Guardian")
    second_patient = Patient(tenant_id=TENANT, first_name="Ria", last_name="Patient")

    db.add_all([admin, operator, therapist, other_therapist, accountant, outsider, speech, patient, second_patient])
    db.commit()
    for row in (admin, operator, therapist, other_therapist, accountant, outsider, speech, patient, second_patient):
        db.refresh(row)

    for t in (therapist, other_therapist):
        db.add(TherapistAvailability(
            tenant_id=TENANT,
            therapist_id=t.id,
            therapy_type_id=speech.id,
            day_of_week="MONDAY",
            start_time=time(9, 0),
            end_time=time(17, 0),
        ))
    db.commit()

    return SimpleNamespace(
        admin=admin,
        operator=operator,
        therapist=therapist,
        other_therapist=other_therapist,
        accountant=accountant,
        outsider=outsider,
        therapy_type=speech,
        patient=patient,
        second_patient=second_patient,
    )


@pytest.fixture
def client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def make(user: User) -> dict:
        token = create_access_token({"sub": user.id, "tenant_id": user.tenant_id})
        return {"Authorization": f"Bearer {token}"}
    return make
