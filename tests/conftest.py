import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("QR_ENCRYPTION_KEY", "test-qr-key")
os.environ.setdefault("QR_KDF_ITERATIONS", "1000")
os.environ.setdefault("REDIS_URL", "memory://")

import pytest
from datetime import datetime
from typing import Generator
from sqlalchemy.orm import Session
from fastapi.testclient import TestClient

from medconnect.main import app
from medconnect.core.security import create_access_token
from medconnect.infrastructure.database import Base, SessionLocal, engine, init_db, get_db
from medconnect.infrastructure.encryption import build_token_codec
from medconnect.domain.auth.models import User, UserRole
from medconnect.domain.patients.models import Patient
from medconnect.domain.patients.repository import PatientRepository
from medconnect.domain.doctors.models import Doctor
from medconnect.domain.doctors.repository import DoctorRepository
from medconnect.domain.prescriptions.schemas import ItemInput
from medconnect.domain.prescriptions.service import PrescriptionLifecycleService

NOW = datetime(2024, 3, 1, 12, 0, 0)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    init_db(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database dependency override."""

    def override_get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def codec():
    return build_token_codec()


@pytest.fixture
def service(db_session: Session, codec) -> PrescriptionLifecycleService:
    return PrescriptionLifecycleService(db_session, codec=codec)


def _add_user(db: Session, email: str, full_name: str, role: UserRole) -> User:
    user = User(email=email, full_name=full_name, role=role, is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def doctor_user(db_session: Session) -> User:
    return _add_user(db_session, "house@example.com", "Gregory House", UserRole.DOCTOR)


@pytest.fixture
def doctor(db_session: Session, doctor_user: User) -> Doctor:
    return DoctorRepository(db_session).create(
        {"user_id": doctor_user.id, "license_number": "LIC-0001", "specialization": "Internal Medicine"}
    )


@pytest.fixture
def other_doctor(db_session: Session) -> Doctor:
    user = _add_user(db_session, "wilson@example.com", "James Wilson", UserRole.DOCTOR)
    return DoctorRepository(db_session).create(
        {"user_id": user.id, "license_number": "LIC-0002", "specialization": "Oncology"}
    )


@pytest.fixture
def patient(db_session: Session) -> Patient:
    user = _add_user(db_session, "john.doe@example.com", "John Doe", UserRole.PATIENT)
    return PatientRepository(db_session).create({
        "user_id": user.id,
        "reference_number": "PAT-20240101-0001",
        "insurance_provider": "Blue Cross",
        "insurance_number": "BC-123456",
    })


@pytest.fixture
def pharmacist(db_session: Session) -> User:
    return _add_user(db_session, "pharma@example.com", "Paula Pharmacist", UserRole.PHARMACIST)


@pytest.fixture
def sample_items() -> list:
    """One line of ten tablets."""
    return [
        ItemInput(
            medicine_name="Amoxicillin",
            dosage="500mg",
            frequency="Three times daily",
            quantity=10,
            instructions="Take with food",
        )
    ]


@pytest.fixture
def created(service: PrescriptionLifecycleService, patient: Patient, doctor: Doctor, sample_items):
    """A PENDING prescription issued at NOW."""
    return service.create_prescription(
        patient_id=patient.id,
        doctor_id=doctor.id,
        items=sample_items,
        diagnosis="Bacterial infection",
        now=NOW,
    )


@pytest.fixture
def doctor_token(doctor_user: User) -> str:
    return create_access_token(doctor_user.id, {"role": "doctor"})


@pytest.fixture
def pharmacist_token(pharmacist: User) -> str:
    return create_access_token(pharmacist.id, {"role": "pharmacist"})
