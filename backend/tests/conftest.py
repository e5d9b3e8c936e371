import sys
import os
import tempfile
from decimal import Decimal
from pathlib import Path

# Settings must be in place before any backend module reads them
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="payment-ledger-logs-"))
os.environ.pop("S3_BUCKET_NAME", None)

# Add backend directory to Python path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from models import Program, Registration
from utils.auth_utils import create_access_token


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def program(db):
    """Rp 4.000.000 program paid in 4 installments."""
    program = Program(name="Magang Jepang Batch 12", training_cost=Decimal("4000000"), installment_plan="4_installments")
    db.add(program)
    db.commit()
    db.refresh(program)
    return program


@pytest.fixture
def registration(db, program):
    registration = Registration(registration_code="REG-0001", program_id=program.id, full_name="Siti Rahma")
    db.add(registration)
    db.commit()
    db.refresh(registration)
    return registration


@pytest.fixture
def make_registration(db, program):
    """Factory for extra registrations, optionally on another program."""
    counter = {"n": 100}

    def _make(training_cost=None, installment_plan="4_installments"):
        counter["n"] += 1
        target = program
        if training_cost is not None:
            target = Program(
                name=f"Program {counter['n']}",
                training_cost=Decimal(str(training_cost)),
                installment_plan=installment_plan,
            )
            db.add(target)
            db.flush()
        registration = Registration(
            registration_code=f"REG-{counter['n']:04d}",
            program_id=target.id,
            full_name=f"Peserta {counter['n']}",
        )
        db.add(registration)
        db.commit()
        db.refresh(registration)
        return registration

    return _make


@pytest.fixture
def app(session_factory):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    token = create_access_token({"sub": "admin-1", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student_headers():
    token = create_access_token({"sub": "student-7", "role": "student"})
    return {"Authorization": f"Bearer {token}"}
