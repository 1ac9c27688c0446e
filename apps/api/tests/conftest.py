"""
Test configuration and fixtures.

Provides:
- Fresh schema per test (in-memory SQLite unless DATABASE_URL is set)
- Organization/user fixtures and JWT session cookies
- HTTPX AsyncClient with proper headers
- Signed plugin request headers
- Captured outbound email
"""
import json
import os
import time
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Generator

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["TESTING"] = "1"
os.environ.setdefault("PLUGIN_SECRET_KEY", "test-plugin-secret")
os.environ.setdefault("STRIPE_CONNECT_CLIENT_ID", "ca_test_client")
os.environ.setdefault("STRIPE_CONNECT_CLIENT_SECRET", "sk_test_platform")
os.environ.setdefault("BILLING_STRIPE_SECRET_KEY", "sk_test_billing")
os.environ.setdefault("BILLING_STRIPE_WEBHOOK_SECRET", "whsec_test_billing")
os.environ.setdefault("EMAIL_DOMAIN", "pixeldev.local")
os.environ.setdefault("SUPPORT_EMAIL", "support@pixeldev.local")
os.environ.setdefault("SUPPORT_EMAIL_INBOUND", "abc123@inbound.postmarkapp.com")
os.environ.setdefault("SUPPORT_ADMIN_EMAILS", "staff@pixeldev.local")

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from portal.main import app
from portal.core.config import settings
from portal.core.deps import get_db, COOKIE_NAME
from portal.core.plugin_auth import compute_signature
from portal.core.rate_limit import limiter, plugin_rate_limiter
from portal.core.security import create_session_token
from portal.db.base import Base
from portal.db.enums import Role
from portal.db.models import License, Membership, Organization, User
from portal.db.session import engine, SessionLocal
from portal.services import email_service


SITE_URL = "https://shop.example.com"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Creates the schema and a session for one test.

    Services commit and roll back on their own, so fixture data is committed
    and the schema is dropped afterwards instead of rolled back.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    plugin_rate_limiter.reset()
    yield


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization registered for SITE_URL."""
    org = Organization(
        id=uuid.uuid4(),
        name="Test Store",
        slug=f"test-org-{uuid.uuid4().hex[:8]}",
        site_url=SITE_URL,
        site_domain="shop.example.com",
    )
    db.add(org)
    db.commit()
    return org


@pytest.fixture(scope="function")
def test_user(db: Session, test_org: Organization) -> User:
    """Create a test user with owner membership in test_org."""
    user = User(
        id=uuid.uuid4(),
        email=f"test-{uuid.uuid4().hex[:8]}@test.com",
        name="Test User",
    )
    db.add(user)
    db.flush()

    membership = Membership(
        id=uuid.uuid4(),
        user_id=user.id,
        organization_id=test_org.id,
        role=Role.OWNER.value,
    )
    db.add(membership)
    db.commit()

    return user


@pytest.fixture(scope="function")
def make_license(db: Session, test_org: Organization) -> Callable[..., License]:
    """Factory for committed licenses on test_org."""
    def _make(**overrides) -> License:
        values = {
            "license_key": uuid.uuid4().hex + uuid.uuid4().hex,
            "organization_id": test_org.id,
            "max_domains": 1,
            "activation_count": 0,
            "active": True,
            "expires_at": None,
        }
        values.update(overrides)
        license = License(**values)
        db.add(license)
        db.commit()
        return license

    return _make


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user: User
    org: Organization
    token: str
    cookie_name: str = COOKIE_NAME


def _session_token(user: User, org: Organization) -> str:
    return create_session_token(
        user_id=user.id,
        org_id=org.id,
        role=Role.OWNER.value,
        token_version=user.token_version,
    )


@pytest.fixture(scope="function")
def test_auth(test_user: User, test_org: Organization) -> TestAuth:
    """Create JWT token for test user."""
    return TestAuth(user=test_user, org=test_org, token=_session_token(test_user, test_org))


@pytest.fixture(scope="function")
def staff_auth(db: Session, test_org: Organization) -> TestAuth:
    """Session for a support admin (email listed in SUPPORT_ADMIN_EMAILS)."""
    staff = User(id=uuid.uuid4(), email="staff@pixeldev.local", name="Support Staff")
    db.add(staff)
    db.flush()
    db.add(Membership(user_id=staff.id, organization_id=test_org.id, role=Role.MEMBER.value))
    db.commit()
    return TestAuth(user=staff, org=test_org, token=_session_token(staff, test_org))


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient for testing public endpoints.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(
    db: Session,
    test_auth: TestAuth
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create authenticated AsyncClient with JWT cookie and CSRF header.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={test_auth.cookie_name: test_auth.token},
        headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def staff_client(
    db: Session,
    staff_auth: TestAuth
) -> AsyncGenerator[AsyncClient, None]:
    """Authenticated AsyncClient for a support admin."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={staff_auth.cookie_name: staff_auth.token},
        headers={"X-Requested-With": "XMLHttpRequest"},
    ) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# Plugin Request Signing
# =============================================================================

@dataclass
class SignedRequest:
    body: bytes
    headers: dict[str, str]


@pytest.fixture
def sign_plugin_request() -> Callable[..., SignedRequest]:
    """Build a JSON body and matching X-Plugin-Signature headers."""
    def _sign(
        payload: dict | None = None,
        *,
        site_url: str = SITE_URL,
        timestamp: int | None = None,
        secret: str | None = None,
    ) -> SignedRequest:
        body = json.dumps(payload) if payload is not None else ""
        ts = str(timestamp if timestamp is not None else int(time.time()))
        signature = compute_signature(
            secret or settings.PLUGIN_SECRET_KEY, site_url, ts, body
        )
        return SignedRequest(
            body=body.encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "X-Plugin-Signature": signature,
                "X-Site-URL": site_url,
                "X-Timestamp": ts,
            },
        )

    return _sign


# =============================================================================
# Outbound Email
# =============================================================================

@pytest.fixture(autouse=True)
def sent_emails(monkeypatch) -> list:
    """Capture Postmark sends instead of calling the API."""
    outbox: list = []

    def fake_send(message):
        outbox.append(message)
        return f"pm-{len(outbox)}"

    monkeypatch.setattr(email_service, "send_email", fake_send)
    return outbox
