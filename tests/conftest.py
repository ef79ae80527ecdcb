import os

# Must be set before main is imported, it builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from main import app, get_session
from models import UserCreate
from services import UserService

TEST_EMAIL = "testuser@example.com"
TEST_PASSWORD = "correct-horse-battery"


# ============================================
# FIXTURE: Async backend for session client tests
# ============================================
@pytest.fixture
def anyio_backend():
    return "asyncio"


# ============================================
# FIXTURE: Test Database Engine
# ============================================
@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


# ============================================
# FIXTURE: Test Client
# ============================================
@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Create a FastAPI test client with overridden database session."""

    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


# ============================================
# FIXTURE: Test User
# ============================================
@pytest.fixture(name="test_user")
def test_user_fixture(session: Session):
    """Create a dashboard account directly in the database."""
    return UserService.create(
        session,
        UserCreate(email=TEST_EMAIL, password=TEST_PASSWORD, first_name="Test", last_name="User"),
    )


# ============================================
# FIXTURE: Login Credentials
# ============================================
@pytest.fixture(name="credentials")
def credentials_fixture():
    return {"email": TEST_EMAIL, "password": TEST_PASSWORD}


# ============================================
# FIXTURE: Tokens and Auth Headers
# ============================================
@pytest.fixture(name="tokens")
def tokens_fixture(client: TestClient, test_user, credentials: dict):
    """Log in through the API and return the token pair."""
    response = client.post("/login_check", json=credentials)
    assert response.status_code == 200
    return response.json()


@pytest.fixture(name="auth_headers")
def auth_headers_fixture(tokens: dict):
    """Provide bearer headers for protected endpoints."""
    return {"Authorization": f"Bearer {tokens['token']}"}


# ============================================
# FIXTURE: Test Category
# ============================================
@pytest.fixture(name="test_category")
def test_category_fixture(client: TestClient, auth_headers: dict):
    """Create a test category and return the response."""
    response = client.post("/recurring-categories/", json={"name": "Streaming"}, headers=auth_headers)
    return response.json()


# ============================================
# FIXTURE: Test Expense
# ============================================
@pytest.fixture(name="test_expense")
def test_expense_fixture(client: TestClient, auth_headers: dict, test_category: dict):
    """Create a test recurring expense due in the future and return the response."""
    response = client.post(
        "/recurring-expenses/",
        json={
            "name": "Netflix",
            "amount": "15.49",
            "currency": "eur",
            "interval": "monthly",
            "next_billing_date": "2099-01-15",
            "category_id": test_category["id"],
            "notes": "Family plan",
        },
        headers=auth_headers,
    )
    return response.json()
