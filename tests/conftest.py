"""
Shared pytest fixtures.

Every test gets its own in-memory SQLite database; the app's ``get_db``
dependency is overridden to hand out sessions bound to it.
"""

import os
from itertools import count

# Ensure test environment before the application modules read it
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_SECRET_KEY"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from access import Identity
from auth import CredentialService
from database import Base, get_db, init_db
from main import app
from models import Role


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# ============================================================================
# APPLICATION FIXTURES
# ============================================================================


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


_sequence = count(1)


def user_payload(role: str, **overrides) -> dict:
    n = next(_sequence)
    payload = {
        "name": f"{role.capitalize()} {n}",
        "email": f"{role}{n}@example.com",
        "password": "password123",
        "role": role,
        "documentId": f"DOC-{n:05d}",
        "phone": "123456789",
        "address": "Calle Falsa 123",
        "birthDate": "1990-01-01",
    }
    if role == "doctor":
        payload["specialty"] = "Cardiología"
        payload["licenseNumber"] = f"LIC-{n}"
    payload.update(overrides)
    return payload


@pytest.fixture
def register(client):
    """Register a user over HTTP; returns ``(user_json, auth_headers)``."""

    def _register(role: str = "patient", **overrides):
        response = client.post("/api/auth/register", json=user_payload(role, **overrides))
        assert response.status_code == 201, response.text
        body = response.json()
        return body["user"], {"Authorization": f"Bearer {body['token']}"}

    return _register


@pytest.fixture
def make_identity(db_session):
    """Create a user directly through the credential service and return its identity."""

    def _make(role: Role = Role.PATIENT, **overrides) -> Identity:
        payload = user_payload(role.value)
        profile = {
            "name": payload["name"],
            "email": payload["email"],
            "role": role,
            "document_id": payload["documentId"],
        }
        profile.update(overrides)
        _, user = CredentialService(db_session).register("password123", **profile)
        return Identity(user_id=user.id, email=user.email, role=user.role)

    return _make
