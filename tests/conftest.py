import os

# Must be set before the application modules read their configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENAI_API_KEY"] = ""
os.environ["IMPACT_PARTNER"] = "sandbox"
os.environ["APP_TIMEZONE"] = "UTC"

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, upsert_user
from database import Base, SessionLocal, engine
from impact import ImpactPartner, ImpactResult, get_impact_partner
from main import app
from models import Habit


class FakePartner(ImpactPartner):
    """Records calls; succeeds, fails or raises on demand."""

    name = "fake"

    def __init__(self):
        self.succeed = True
        self.raise_error = None
        self.calls = []

    def create_impact(self, request, description=None):
        self.calls.append((request, description))
        if self.raise_error is not None:
            raise self.raise_error
        if self.succeed:
            return ImpactResult(success=True, impact_id=f"fake_{len(self.calls)}")
        return ImpactResult(success=False, error="partner down")


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def partner():
    return FakePartner()


@pytest.fixture
def client(partner):
    app.dependency_overrides[get_impact_partner] = lambda: partner
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = create_access_token("user-1", "ada@example.com", first_name="Ada", last_name="Lovelace")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_headers():
    token = create_access_token("user-2", "grace@example.com", first_name="Grace")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def create_habit(client, auth_headers):
    def _create(**overrides):
        payload = {
            "name": "Walk",
            "description": "Around the block",
            "category": "fitness",
            "icon": "dumbbell",
            "impactAction": "plant_tree",
            "impactAmount": 2,
        }
        payload.update(overrides)
        response = client.post("/api/habits", json=payload, headers=auth_headers)
        assert response.status_code == 201, response.text
        return response.json()
    return _create


@pytest.fixture
def stored_habit(db):
    """A habit created straight in the database, for workflow-level tests."""
    user = upsert_user(db, {"sub": "user-1", "email": "ada@example.com", "first_name": "Ada"})
    habit = Habit(user_id=user.id, name="Walk", impact_action="plant_tree", impact_amount=2)
    db.add(habit)
    db.commit()
    db.refresh(habit)
    return habit
