"""Account service: login, account activation and password reset."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.outcomes import ErrorOutcome, Outcome, RedirectOutcome
from portal.core.security import generate_email_link_token, hash_password, verify_password
from portal.db.enums import Role
from portal.db.models import (
    AccountActivationToken,
    Membership,
    Organization,
    PasswordResetToken,
    User,
)
from portal.services import email_service
from portal.utils.normalization import normalize_email

logger = logging.getLogger(__name__)

ACTIVATION_TOKEN_TTL = timedelta(days=7)
# Accounts that already have a password can only be activated this soon after creation
ACCOUNT_PROTECTION_WINDOW = timedelta(hours=1)
ACCOUNT_HOME = "/account"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class TokenInvalidReason(str, Enum):
    NOT_FOUND = "not-found"
    EXPIRED = "expired"
    ALREADY_USED = "already-used"


@dataclass(frozen=True)
class TokenValidation:
    valid: bool
    token: AccountActivationToken | None = None
    reason: TokenInvalidReason | None = None


@dataclass(frozen=True)
class PasswordSetResult:
    """Outcome of setting a password from an emailed link; ``user`` is set when the caller should start a session."""

    outcome: Outcome
    user: User | None = None


# =============================================================================
# Login
# =============================================================================

def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == normalize_email(email)).first()


def authenticate(db: Session, *, email: str, password: str) -> User | None:
    """Return the user when the password matches an active account."""
    user = get_user_by_email(db, email)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    user.last_login_at = _now_utc()
    db.commit()
    return user


def get_membership(db: Session, user_id) -> Membership | None:
    return db.query(Membership).filter(Membership.user_id == user_id).first()


def revoke_sessions(db: Session, user: User) -> None:
    """Bump token_version so every issued session cookie stops validating."""
    user.token_version = (user.token_version or 1) + 1
    db.commit()


# =============================================================================
# Activation tokens
# =============================================================================

def create_owner_account(
    db: Session,
    *,
    organization: Organization,
    email: str,
    name: str | None = None,
    role: Role = Role.OWNER,
) -> User:
    """Create (or reuse) the user for ``email`` and attach them to ``organization``."""
    user = get_user_by_email(db, email)
    if user is None:
        user = User(email=normalize_email(email), name=name)
        db.add(user)
        db.flush()
    if get_membership(db, user.id) is None:
        db.add(Membership(user_id=user.id, organization_id=organization.id, role=role.value))
    db.flush()
    return user


def issue_activation_token(db: Session, user: User, *, send_email: bool = True) -> AccountActivationToken:
    token = AccountActivationToken(
        token=generate_email_link_token(),
        user_id=user.id,
        expires_at=_now_utc() + ACTIVATION_TOKEN_TTL,
        used=False,
    )
    db.add(token)
    db.commit()

    if send_email:
        try:
            email_service.send_account_activation_email(
                recipient=user.email, name=user.name, token=token.token
            )
        except Exception:
            logger.exception("Failed to send activation email for user=%s", user.id)
    return token


def validate_activation_token(db: Session, token: str) -> TokenValidation:
    record = (
        db.query(AccountActivationToken)
        .filter(AccountActivationToken.token == token)
        .first()
    )
    if not record:
        return TokenValidation(valid=False, reason=TokenInvalidReason.NOT_FOUND)
    if record.used:
        return TokenValidation(valid=False, token=record, reason=TokenInvalidReason.ALREADY_USED)
    if record.expires_at < _now_utc():
        return TokenValidation(valid=False, token=record, reason=TokenInvalidReason.EXPIRED)
    return TokenValidation(valid=True, token=record)


_TOKEN_ERRORS = {
    TokenInvalidReason.NOT_FOUND: ErrorOutcome(
        error="invalid-token",
        message="Invalid activation link. Please contact support.",
    ),
    TokenInvalidReason.EXPIRED: ErrorOutcome(
        error="token-expired",
        message="This activation link has expired. Please contact support for a new link.",
    ),
    TokenInvalidReason.ALREADY_USED: ErrorOutcome(
        error="token-used",
        message="This activation link has already been used. Please sign in with your password.",
    ),
}


def activate_account(db: Session, *, token: str, password: str) -> PasswordSetResult:
    """
    Set the password for the token's user and mark the token used.

    Success is a redirect to the account home; the router signs the user in.
    """
    validation = validate_activation_token(db, token)
    if not validation.valid:
        return PasswordSetResult(outcome=_TOKEN_ERRORS[validation.reason])

    record = validation.token
    user = db.get(User, record.user_id)
    if not user or not user.email:
        return PasswordSetResult(
            outcome=ErrorOutcome(
                error="server-error",
                message="User account not found. Please contact support.",
                status_code=500,
            )
        )

    if user.password_hash and _now_utc() - user.created_at > ACCOUNT_PROTECTION_WINDOW:
        logger.warning("Activation attempt on established account user=%s", user.id)
        return PasswordSetResult(
            outcome=ErrorOutcome(
                error="account-protected",
                message=(
                    "This account is already set up. Please sign in with your existing "
                    "password or reset your password if you forgot it."
                ),
            )
        )

    user.password_hash = hash_password(password)
    record.used = True
    db.commit()
    logger.info("Account activated for user=%s", user.id)
    return PasswordSetResult(outcome=RedirectOutcome(to=ACCOUNT_HOME), user=user)


# =============================================================================
# Password reset
# =============================================================================

def request_password_reset(db: Session, email: str) -> None:
    """
    Email a reset link to ``email`` when it belongs to a user.

    Unknown addresses are silently ignored so the caller can always report
    success. Earlier reset tokens for the address are replaced.
    """
    normalized = normalize_email(email)
    user = get_user_by_email(db, normalized)
    if not user or not user.email:
        logger.info("Password reset requested for unknown address")
        return

    db.query(PasswordResetToken).filter(PasswordResetToken.email == normalized).delete(
        synchronize_session=False
    )
    record = PasswordResetToken(
        token=generate_email_link_token(),
        email=normalized,
        expires_at=_now_utc() + timedelta(hours=settings.PASSWORD_RESET_EXPIRY_HOURS),
    )
    db.add(record)
    db.commit()

    try:
        email_service.send_password_reset_email(
            recipient=user.email, name=user.name, token=record.token
        )
    except Exception:
        logger.exception("Failed to send password reset email for user=%s", user.id)


def reset_password(db: Session, *, token: str, password: str) -> PasswordSetResult:
    """
    Replace the password for the token's user and delete the token.

    Existing sessions are revoked; the router signs the user in again.
    """
    record = db.query(PasswordResetToken).filter(PasswordResetToken.token == token).first()
    if not record:
        return PasswordSetResult(
            outcome=ErrorOutcome(
                error="invalid-token",
                message="Invalid or expired reset link. Please request a new one.",
            )
        )

    if record.expires_at < _now_utc():
        db.delete(record)
        db.commit()
        return PasswordSetResult(
            outcome=ErrorOutcome(
                error="token-expired",
                message="This reset link has expired. Please request a new one.",
            )
        )

    user = get_user_by_email(db, record.email)
    if not user:
        return PasswordSetResult(
            outcome=ErrorOutcome(
                error="user-not-found",
                message="User account not found. Please contact support.",
            )
        )

    user.password_hash = hash_password(password)
    user.token_version = (user.token_version or 1) + 1
    db.delete(record)
    db.commit()
    logger.info("Password reset for user=%s", user.id)
    return PasswordSetResult(outcome=RedirectOutcome(to=ACCOUNT_HOME), user=user)
