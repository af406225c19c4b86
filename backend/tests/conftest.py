import pytest
from unittest.mock import Mock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from main import app
from database import Base, get_db
from dependencies import get_notifier
from models import Group, GroupMember, User
from auth import get_password_hash, create_access_token
from utils.notifications import ActivityNotifier

# Setup in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)

@pytest.fixture
def notifier():
    """Notifier that records activity rows but never pushes."""
    return ActivityNotifier(webhook_url=None)

@pytest.fixture(scope="function")
def client(db_session, notifier):
    """Create a FastAPI TestClient with overridden database and notifier dependencies."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c
    # Clean up is handled by yield
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_notifier, None)

@pytest.fixture
def make_user(db_session):
    """Factory creating users directly in the database."""
    def _make_user(email, full_name=None):
        user = User(
            email=email,
            hashed_password=get_password_hash("pw"),
            full_name=full_name or email.split("@")[0].title(),
            is_active=True
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make_user

@pytest.fixture
def test_user(make_user):
    """Create a test user and return the user object."""
    return make_user("test@example.com", "Test User")

@pytest.fixture
def auth_headers(test_user):
    """Return authorization headers for the test user."""
    access_token = create_access_token(data={"sub": test_user.email})
    return {"Authorization": f"Bearer {access_token}"}

@pytest.fixture
def headers_for():
    """Build authorization headers for any user."""
    def _headers_for(user):
        return {"Authorization": f"Bearer {create_access_token(data={'sub': user.email})}"}
    return _headers_for

@pytest.fixture
def group_of(db_session):
    """Factory creating a group whose members are the given users (first one is the owner)."""
    def _group_of(*users, name="Trip"):
        group = Group(name=name, created_by_id=users[0].id)
        db_session.add(group)
        db_session.commit()
        db_session.refresh(group)
        for user in users:
            db_session.add(GroupMember(group_id=group.id, user_id=user.id))
        db_session.commit()
        return group
    return _group_of

@pytest.fixture
def trio(make_user, group_of):
    """Three users in one group: (group, alice, bob, carol)."""
    alice = make_user("alice@example.com", "Alice")
    bob = make_user("bob@example.com", "Bob")
    carol = make_user("carol@example.com", "Carol")
    return group_of(alice, bob, carol), alice, bob, carol

@pytest.fixture
def mock_notifier():
    return Mock(spec=ActivityNotifier)
