"""Pytest configuration and fixtures."""

import os
import sys
from pathlib import Path

# Inject sys.path for reliable pytest imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # => .../apps/api

# db.session builds its engine at import time; keep it off any real database.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SAASKIT_JSON_LOGS", "false")

import uuid
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from saaskit_api.auth.identity import AuthError, AuthSession, Identity
from saaskit_api.auth.session_auth import ACCESS_TOKEN_COOKIE, get_billing, get_identity_provider
from saaskit_api.context import RequestContext
from saaskit_api.db.models import Base, Profile, TeamRole
from saaskit_api.db.repo_profiles import ProfileRepository
from saaskit_api.db.repo_teams import TeamRepository
from saaskit_api.db.session import get_db
from saaskit_api.main import app

TEST_DATABASE_URL = "sqlite://"

DEFAULT_PASSWORD = "correct-horse-1"


class FakeIdentityProvider:
    """In-memory IdentityProvider.

    delete_identity() mirrors the auth.users → public.users cascade by
    deleting the profile row when a database session is attached.
    """

    def __init__(self, db: Optional[Session] = None):
        self.db = db
        self.users: dict[str, dict] = {}
        self.tokens: dict[str, str] = {}
        self.revoked: list[str] = []
        self.fail: set[str] = set()
        self.issue_session_on_sign_up = True

    def add_user(self, email: str, password: str = DEFAULT_PASSWORD, user_id: Optional[str] = None) -> Identity:
        user_id = user_id or str(uuid.uuid4())
        self.users[user_id] = {"email": email, "password": password}
        return Identity(id=user_id, email=email)

    def issue_token(self, user_id: str) -> str:
        token = f"token-{uuid.uuid4().hex}"
        self.tokens[token] = user_id
        return token

    def _check(self, operation: str) -> None:
        if operation in self.fail:
            raise AuthError(f"{operation} failed")

    def _session(self, user_id: str) -> AuthSession:
        return AuthSession(
            access_token=self.issue_token(user_id),
            refresh_token=f"refresh-{uuid.uuid4().hex}",
            user=Identity(id=user_id, email=self.users[user_id]["email"]),
        )

    def sign_up(self, email: str, password: str):
        self._check("sign_up")
        if any(user["email"] == email for user in self.users.values()):
            raise AuthError("User already registered")
        identity = self.add_user(email, password)
        session = self._session(identity.id) if self.issue_session_on_sign_up else None
        return identity, session

    def sign_in(self, email: str, password: str) -> AuthSession:
        self._check("sign_in")
        for user_id, user in self.users.items():
            if user["email"] == email and user["password"] == password:
                return self._session(user_id)
        raise AuthError("Invalid login credentials")

    def sign_out(self, access_token: str) -> None:
        self._check("sign_out")
        self.tokens.pop(access_token, None)
        self.revoked.append(access_token)

    def get_identity(self, access_token: str) -> Optional[Identity]:
        user_id = self.tokens.get(access_token)
        if user_id is None or user_id not in self.users:
            return None
        return Identity(id=user_id, email=self.users[user_id]["email"])

    def update_password(self, user_id: str, new_password: str) -> None:
        self._check("update_password")
        self.users[user_id]["password"] = new_password

    def delete_identity(self, user_id: str) -> None:
        self._check("delete_identity")
        self.users.pop(user_id, None)
        if self.db is not None:
            profile = self.db.get(Profile, user_id)
            if profile is not None:
                self.db.delete(profile)
                self.db.commit()

    def list_identities(self) -> list[Identity]:
        self._check("list_identities")
        return [Identity(id=user_id, email=user["email"]) for user_id, user in self.users.items()]


@pytest.fixture(scope="function")
def db_session() -> Session:
    """Fresh in-memory SQLite database per test, foreign keys enforced."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()

    try:
        yield session
        session.rollback()
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def provider(db_session: Session) -> FakeIdentityProvider:
    return FakeIdentityProvider(db_session)


@pytest.fixture
def billing() -> MagicMock:
    """StripeClient double with async methods."""
    client = MagicMock()
    client.create_customer = AsyncMock(return_value=MagicMock(id="cus_test_123"))
    client.create_checkout_session = AsyncMock(return_value=MagicMock(url="https://checkout.stripe.test/c/pay_123"))
    client.retrieve_checkout_session = AsyncMock()
    client.create_portal_session = AsyncMock(return_value=MagicMock(url="https://billing.stripe.test/p/session_123"))
    client.get_subscription = AsyncMock()
    return client


@pytest.fixture
def make_ctx(db_session: Session, provider: FakeIdentityProvider):
    """Build a RequestContext, optionally signed in as an identity."""

    def _make(identity: Optional[Identity] = None, billing=None, ip_address: str = "203.0.113.7") -> RequestContext:
        ctx = RequestContext(
            db=db_session,
            identity_provider=provider,
            ip_address=ip_address,
            billing=billing,
        )
        if identity is not None:
            ctx.identity = identity
            ctx.access_token = provider.issue_token(identity.id)
        return ctx

    return _make


@pytest.fixture
def make_member(db_session: Session, provider: FakeIdentityProvider):
    """Create identity + profile (+ membership when team_id is given)."""

    def _make(email: str, team_id: Optional[int] = None, role: str = TeamRole.MEMBER.value, name: Optional[str] = None) -> Identity:
        identity = provider.add_user(email)
        ProfileRepository(db_session).create(identity.id, role=role, name=name)
        if team_id is not None:
            TeamRepository(db_session).add_member(team_id, identity.id, role)
        db_session.commit()
        return identity

    return _make


@pytest.fixture
def make_team(db_session: Session, provider: FakeIdentityProvider):
    """Create an owner identity with profile and a team they own.

    Returns:
        (team, owner_identity)
    """

    def _make(email: str = "owner@example.com", name: str = "Acme", owner_name: Optional[str] = "Olive Owner"):
        owner = provider.add_user(email)
        ProfileRepository(db_session).create(owner.id, role=TeamRole.OWNER.value, name=owner_name)
        team, _ = TeamRepository(db_session).create_with_owner(name, owner.id)
        db_session.commit()
        return team, owner

    return _make


@pytest.fixture
def test_client(db_session: Session, provider: FakeIdentityProvider, billing: MagicMock):
    """TestClient with db, identity provider and billing overridden."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close - db_session fixture handles it

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_provider] = lambda: provider
    app.dependency_overrides[get_billing] = lambda: billing
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def login(test_client: TestClient, provider: FakeIdentityProvider):
    """Put a valid session cookie for identity on the test client."""

    def _login(identity: Identity) -> str:
        token = provider.issue_token(identity.id)
        test_client.cookies.set(ACCESS_TOKEN_COOKIE, token)
        return token

    return _login
