"""Tests for login, session and account activation endpoints."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from portal.core.deps import COOKIE_NAME
from portal.core.security import decode_session_token, hash_password, verify_password
from portal.db.enums import Role
from portal.db.models import AccountActivationToken, Membership, PasswordResetToken, User
from portal.services import account_service

PASSWORD = "correct horse battery"


@pytest.fixture
def password_user(db, test_org) -> User:
    user = User(
        id=uuid.uuid4(),
        email="owner@example.com",
        name="Store Owner",
        password_hash=hash_password(PASSWORD),
    )
    db.add(user)
    db.flush()
    db.add(Membership(user_id=user.id, organization_id=test_org.id, role=Role.OWNER.value))
    db.commit()
    return user


def _pending_user(db, test_org, *, created_at=None, password_hash=None) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"buyer-{uuid.uuid4().hex[:6]}@example.com",
        name="Buyer",
        password_hash=password_hash,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(user)
    db.flush()
    db.add(Membership(user_id=user.id, organization_id=test_org.id, role=Role.OWNER.value))
    db.commit()
    return user


def _session_cookie(response) -> str:
    for header in response.headers.get_list("set-cookie"):
        if header.startswith(f"{COOKIE_NAME}="):
            return header.split(";", 1)[0].split("=", 1)[1]
    raise AssertionError("session cookie not set")


# =============================================================================
# Login / session
# =============================================================================

@pytest.mark.asyncio
async def test_login_sets_session_cookie(client: AsyncClient, password_user, test_org):
    response = await client.post(
        "/auth/login", json={"email": "Owner@Example.com", "password": PASSWORD}
    )

    assert response.status_code == 200
    assert response.json() == {"status": "logged_in"}
    claims = decode_session_token(_session_cookie(response))
    assert claims["sub"] == str(password_user.id)
    assert claims["org_id"] == str(test_org.id)
    assert "httponly" in response.headers["set-cookie"].lower()


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, password_user):
    response = await client.post(
        "/auth/login", json={"email": "owner@example.com", "password": "wrong"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_user_without_password(client: AsyncClient, db, test_org):
    user = _pending_user(db, test_org)
    response = await client.post("/auth/login", json={"email": user.email, "password": "anything"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_rate_limited(client: AsyncClient, password_user):
    statuses = [
        (await client.post("/auth/login", json={"email": "owner@example.com", "password": "nope"})).status_code
        for _ in range(6)
    ]
    assert statuses[:5] == [401] * 5
    assert statuses[5] == 429


@pytest.mark.asyncio
async def test_me(authed_client: AsyncClient, test_auth):
    response = await authed_client.get("/auth/me")

    assert response.status_code == 200
    data = response.json()
    assert data["user_id"] == str(test_auth.user.id)
    assert data["org_name"] == "Test Store"
    assert data["role"] == "owner"
    assert data["is_support_admin"] is False


@pytest.mark.asyncio
async def test_me_for_support_admin(staff_client: AsyncClient):
    response = await staff_client.get("/auth/me")
    assert response.json()["is_support_admin"] is True


@pytest.mark.asyncio
async def test_me_requires_session(client: AsyncClient):
    response = await client.get("/auth/me")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_revoked_session_rejected(authed_client: AsyncClient, db, test_auth):
    account_service.revoke_sessions(db, test_auth.user)
    response = await authed_client.get("/auth/me")
    assert response.status_code == 401
    assert response.json()["detail"] == "Session revoked"


@pytest.mark.asyncio
async def test_logout_requires_csrf(client: AsyncClient, test_auth):
    client.cookies.set(test_auth.cookie_name, test_auth.token)
    response = await client.post("/auth/logout")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_logout_clears_cookie(authed_client: AsyncClient):
    response = await authed_client.post("/auth/logout")
    assert response.status_code == 200
    assert response.json() == {"status": "logged_out"}
    assert f'{COOKIE_NAME}=""' in response.headers["set-cookie"]


# =============================================================================
# Activation
# =============================================================================

@pytest.mark.asyncio
async def test_activation_token_check(client: AsyncClient, db, test_org, sent_emails):
    user = _pending_user(db, test_org)
    token = account_service.issue_activation_token(db, user)

    valid = await client.get(f"/auth/activation/{token.token}")
    missing = await client.get("/auth/activation/does-not-exist")

    assert valid.json() == {"valid": True, "error": None, "email": user.email}
    assert missing.json()["valid"] is False
    assert missing.json()["error"] == "not-found"
    assert f"/auth/activate-account/{token.token}" in sent_emails[0].text_body


@pytest.mark.asyncio
async def test_activate_account_sets_password_and_session(client: AsyncClient, db, test_org):
    user = _pending_user(db, test_org)
    token = account_service.issue_activation_token(db, user, send_email=False)

    response = await client.post(
        "/auth/activate-account", json={"token": token.token, "password": "a-new-password"}
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "redirect_to": "/account"}
    assert decode_session_token(_session_cookie(response))["sub"] == str(user.id)

    db.refresh(user)
    db.refresh(token)
    assert verify_password("a-new-password", user.password_hash)
    assert token.used is True

    again = await client.post(
        "/auth/activate-account", json={"token": token.token, "password": "another-password"}
    )
    assert again.status_code == 400
    assert again.json()["error"] == "token-used"


@pytest.mark.asyncio
async def test_activate_expired_token(client: AsyncClient, db, test_org):
    user = _pending_user(db, test_org)
    token = AccountActivationToken(
        token="expired-token",
        user_id=user.id,
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        used=False,
    )
    db.add(token)
    db.commit()

    check = await client.get("/auth/activation/expired-token")
    response = await client.post(
        "/auth/activate-account", json={"token": "expired-token", "password": "a-new-password"}
    )

    assert check.json()["error"] == "expired"
    assert response.status_code == 400
    assert response.json()["error"] == "token-expired"


@pytest.mark.asyncio
async def test_established_account_is_protected(client: AsyncClient, db, test_org):
    user = _pending_user(
        db,
        test_org,
        created_at=datetime.now(timezone.utc) - timedelta(days=3),
        password_hash=hash_password("existing-password"),
    )
    token = account_service.issue_activation_token(db, user, send_email=False)

    response = await client.post(
        "/auth/activate-account", json={"token": token.token, "password": "takeover-attempt"}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "account-protected"
    db.refresh(user)
    assert verify_password("existing-password", user.password_hash)


@pytest.mark.asyncio
async def test_short_password_rejected(client: AsyncClient):
    response = await client.post("/auth/activate-account", json={"token": "t", "password": "short"})
    assert response.status_code == 422


# =============================================================================
# Password reset
# =============================================================================

def _reset_tokens(db, email):
    return db.query(PasswordResetToken).filter(PasswordResetToken.email == email).all()


@pytest.mark.asyncio
async def test_password_reset_request_emails_link(client: AsyncClient, db, password_user, sent_emails):
    first = await client.post("/auth/password-reset", json={"email": "Owner@Example.com"})
    second = await client.post("/auth/password-reset", json={"email": "owner@example.com"})

    assert first.json() == {"success": True}
    assert second.json() == {"success": True}
    tokens = _reset_tokens(db, "owner@example.com")
    assert len(tokens) == 1
    assert sent_emails[-1].to == "owner@example.com"
    assert f"/auth/reset-password/{tokens[0].token}" in sent_emails[-1].text_body


@pytest.mark.asyncio
async def test_password_reset_unknown_email_still_succeeds(client: AsyncClient, db, sent_emails):
    response = await client.post("/auth/password-reset", json={"email": "nobody@example.com"})

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert sent_emails == []
    assert db.query(PasswordResetToken).count() == 0


@pytest.mark.asyncio
async def test_reset_password_sets_password_and_revokes_sessions(
    client: AsyncClient, db, password_user, sent_emails
):
    account_service.request_password_reset(db, "owner@example.com")
    token = _reset_tokens(db, "owner@example.com")[0].token

    response = await client.post(
        "/auth/reset-password", json={"token": token, "password": "brand-new-password"}
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "redirect_to": "/account"}
    claims = decode_session_token(_session_cookie(response))
    assert claims["sub"] == str(password_user.id)
    assert claims["token_version"] == 2

    db.refresh(password_user)
    assert verify_password("brand-new-password", password_user.password_hash)
    assert _reset_tokens(db, "owner@example.com") == []

    again = await client.post(
        "/auth/reset-password", json={"token": token, "password": "another-password"}
    )
    assert again.status_code == 400
    assert again.json()["error"] == "invalid-token"


@pytest.mark.asyncio
async def test_reset_password_expired_token_is_deleted(client: AsyncClient, db, password_user):
    db.add(
        PasswordResetToken(
            token="stale-reset",
            email="owner@example.com",
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
    )
    db.commit()

    response = await client.post(
        "/auth/reset-password", json={"token": "stale-reset", "password": "brand-new-password"}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "token-expired"
    db.expire_all()
    assert _reset_tokens(db, "owner@example.com") == []
    db.refresh(password_user)
    assert verify_password(PASSWORD, password_user.password_hash)
