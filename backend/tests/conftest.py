"""
Pytest configuration and fixtures for MCQ Lab backend tests.

Provides:
- Test database setup/teardown
- FastAPI test client
- Authenticated client with a fake user
- Fake generation chain in place of real LLM providers
- User, resource and subscription fixtures
"""

import pytest
import os
from typing import Generator
from datetime import datetime, timedelta
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite:///./test_mcqlab.db"
os.environ["LEMON_SQUEEZY_WEBHOOK_SECRET"] = "ecbNGCjHuX"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["SUBMISSION_LIMIT_POLICY"] = "enforce"
os.environ.pop("SENTRY_DSN", None)
os.environ.pop("CLERK_WEBHOOK_SECRET", None)

from mcqlab.main import app
from mcqlab.database import Base, get_db
from mcqlab.dependencies.auth import get_current_user
from mcqlab.models.models import MCQ, Quiz, Resource, Subscription, User, UserUsage
from mcqlab.services.ai_generation import get_generation_chain

from tests.mocks import MOCK_ARTICLE_TEXT, MOCK_TUTORIAL, build_fake_chain


# Test database setup
TEST_DATABASE_URL = "sqlite:///./test_mcqlab.db"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database tables once per test session"""
    Base.metadata.create_all(bind=test_engine)
    yield
    # Cleanup after all tests
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()
    if os.path.exists("./test_mcqlab.db"):
        os.remove("./test_mcqlab.db")


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Provide a database session for each test.

    Code under test commits and rolls back on its own, so tables are
    emptied after each test instead of wrapping it in a transaction.
    """
    session = TestingSessionLocal()

    yield session

    session.rollback()
    session.close()
    with test_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope="function")
def fake_chain():
    """Generation chain that answers every task from deterministic mocks"""
    return build_fake_chain()


@pytest.fixture(scope="function")
def client(db: Session, fake_chain) -> Generator[TestClient, None, None]:
    """Provide FastAPI test client with database and LLM overrides"""
    def override_get_db():
        try:
            yield db
        finally:
            pass  # Don't close - let the fixture handle it

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_generation_chain] = lambda: fake_chain
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def auth_client(client: TestClient, test_user: User) -> TestClient:
    """Test client authenticated as test_user"""
    app.dependency_overrides[get_current_user] = lambda: test_user
    return client


# =========================================================================
# User Fixtures
# =========================================================================

@pytest.fixture
def test_user(db: Session) -> User:
    """Create a test user (id is the Clerk user id)"""
    user = User(
        id="user_123",
        email="test@mcqlab.dev",
        full_name="Test User",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_user(db: Session) -> User:
    user = User(
        id="user_456",
        email="other@mcqlab.dev",
        full_name="Other User",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def pro_user(db: Session, test_user: User) -> User:
    """test_user with an active subscription and a fresh usage period"""
    now = datetime.utcnow()
    db.add(Subscription(
        user_id=test_user.id,
        provider="lemonsqueezy",
        provider_subscription_id="sub_1",
        status="active",
        product_name="MCQ Lab Pro",
        renews_at=now + timedelta(days=20),
        ends_at=now + timedelta(days=20),
    ))
    db.add(UserUsage(
        user_id=test_user.id,
        plan_type="pro",
        period_start=now - timedelta(days=10),
        period_end=now + timedelta(days=20),
        submission_count=0,
        subscription_points=100,
    ))
    db.commit()
    return test_user


# =========================================================================
# Learning Content Fixtures
# =========================================================================

@pytest.fixture
def test_resource(db: Session, test_user: User) -> Resource:
    resource = Resource(
        url="https://example.com/photosynthesis",
        type="article",
        title="Photosynthesis",
        content=MOCK_ARTICLE_TEXT,
        tutorial=MOCK_TUTORIAL,
        user_id=test_user.id,
    )
    db.add(resource)
    db.commit()
    db.refresh(resource)
    return resource


@pytest.fixture
def test_quiz(db: Session, test_user: User, test_resource: Resource) -> Quiz:
    """A three-question quiz; the correct option of question i is i + 1"""
    quiz = Quiz(resource_id=test_resource.id, user_id=test_user.id)
    db.add(quiz)
    db.flush()

    for i in range(3):
        db.add(MCQ(
            quiz_id=quiz.id,
            position=i,
            question=f"Question {i}?",
            option_a="A",
            option_b="B",
            option_c="C",
            option_d="D",
            correct_option=i + 1,
        ))

    db.commit()
    db.refresh(quiz)
    return quiz
