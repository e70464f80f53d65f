import itertools

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

import models  # noqa: F401
from config import settings
from db import get_session
from main import app
from routers import aadhaar

_emails = itertools.count(1)


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session: Session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="lenient_client")
def lenient_client_fixture(client: TestClient):
    # Unhandled errors come back as responses instead of being re-raised
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture(autouse=True)
def reset_otp_state():
    aadhaar.otp_store.clear()
    aadhaar.otp_limiter.clear()
    yield


class Account:
    def __init__(self, user: dict, token: str):
        self.user = user
        self.id = user["id"]
        self.headers = {"Authorization": f"Bearer {token}"}


def register(client: TestClient, role: str, **extra) -> Account:
    payload = {
        "name": f"{role.title()} {next(_emails)}",
        "email": f"{role}{next(_emails)}@example.org",
        "password": "secret123",
        "role": role,
        "location": "Pune",
    }
    payload.update(extra)
    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 201, response.text
    data = response.json()["data"]
    return Account(data["user"], data["token"])


@pytest.fixture
def donor(client):
    return register(client, "donor", donor_type="restaurant")


@pytest.fixture
def ngo(client):
    return register(client, "ngo", ngo_registration_id="NGO-42", location="Mumbai")


@pytest.fixture
def courier(client):
    return register(client, "logistics", vehicle_type="van")


@pytest.fixture
def admin(client, monkeypatch):
    monkeypatch.setattr(settings, "allow_admin_registration", True)
    return register(client, "admin")


def create_surplus(client: TestClient, donor: Account, **overrides) -> dict:
    payload = {
        "title": "Cooked rice",
        "description": "Fresh, packed today",
        "category": "food",
        "quantity": 10,
        "unit": "kg",
        "location": "Koregaon Park",
    }
    payload.update(overrides)
    response = client.post("/api/donor/surplus", json=payload, headers=donor.headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]
