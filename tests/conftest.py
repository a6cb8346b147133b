import os

# database.py refuses to import without a URL; the app engine is never used
# by the tests, which get their own in-memory engine below.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from civic_issues.errors import ExternalServiceError
from civic_issues.main import app, get_ai_service, get_db
from civic_issues.models.models import Base


# -------------------------------------------------------
# ⚙️ Test Database Setup
# -------------------------------------------------------
# Use in-memory SQLite for fast, isolated tests
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# -------------------------------------------------------
# 🤖 Fake AI collaborator
# -------------------------------------------------------
class FakeAIService:
    """Canned AI results. A None result, or a name in ``fail``, raises."""

    def __init__(self):
        self.image = None
        self.transcription = None
        self.extraction = None
        self.fail = set()
        self.calls = []

    def _check(self, operation, result):
        self.calls.append(operation)
        if operation in self.fail or result is None:
            raise ExternalServiceError(operation, "simulated failure")
        return result

    async def classify_image(self, image, content_type="image/jpeg"):
        return self._check("classify_image", self.image)

    async def transcribe_audio(self, audio, filename="audio.webm"):
        return self._check("transcribe_audio", self.transcription)

    async def extract_issue_text(self, text, language="en"):
        return self._check("extract_issue_text", self.extraction)


# -------------------------------------------------------
# 🧪 Fixtures
# -------------------------------------------------------
@pytest.fixture(scope="function")
def db_session():
    """Create a new database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        # Drop tables to ensure clean slate for next test
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def fake_ai():
    return FakeAIService()


@pytest.fixture(scope="function")
def client(db_session, fake_ai):
    """Create a new test client for each test with DB and AI overrides."""

    def override_get_db():
        try:
            yield db_session
        finally:
            db_session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ai_service] = lambda: fake_ai
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client, email, role="citizen", name="Test User"):
    response = client.post(
        "/api/v1/register",
        json={"name": name, "email": email, "password": "password", "role": role},
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def citizen(client):
    return register(client, "citizen@example.com")


@pytest.fixture
def admin(client):
    return register(client, "admin@example.com", role="admin", name="Admin User")


@pytest.fixture
def citizen_headers(citizen):
    return {"Authorization": f"Bearer {citizen['token']}"}


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {admin['token']}"}
