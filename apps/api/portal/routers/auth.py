"""Authentication router: password login, sessions, account activation and password reset."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.deps import (
    COOKIE_NAME,
    get_current_session,
    get_db,
    is_support_admin,
    require_csrf_header,
)
from portal.core.outcomes import ErrorOutcome
from portal.core.security import create_session_token
from portal.db.models import Organization, User
from portal.schemas.auth import (
    ActivateAccountRequest,
    ActivationTokenStatus,
    LoginRequest,
    MeResponse,
    PasswordResetRequest,
    ResetPasswordRequest,
    UserSession,
)
from portal.services import account_service

# Rate limiting
from portal.core.rate_limit import limiter

router = APIRouter()
logger = logging.getLogger(__name__)


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        max_age=settings.JWT_EXPIRES_HOURS * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
    )


def _session_token_for(db: Session, user: User) -> str:
    membership = account_service.get_membership(db, user.id)
    if not membership:
        raise HTTPException(status_code=403, detail="No organization membership")
    return create_session_token(
        user_id=user.id,
        org_id=membership.organization_id,
        role=membership.role,
        token_version=user.token_version,
    )


# =============================================================================
# Session Endpoints
# =============================================================================

@router.post("/login")
@limiter.limit(f"{settings.RATE_LIMIT_AUTH}/minute")
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: Session = Depends(get_db),
):
    """Password sign-in. Sets the session cookie on success."""
    user = account_service.authenticate(db, email=body.email, password=body.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    _set_session_cookie(response, _session_token_for(db, user))
    return {"status": "logged_in"}


@router.get("/me")
def get_me(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> MeResponse:
    """Current user and organization, used to bootstrap the account pages."""
    user = db.get(User, session.user_id)
    org = db.get(Organization, session.org_id)

    return MeResponse(
        user_id=user.id,
        email=user.email,
        name=user.name,
        org_id=org.id,
        org_name=org.name,
        role=session.role,
        is_support_admin=is_support_admin(session),
    )


@router.post("/logout", dependencies=[Depends(require_csrf_header)])
def logout(
    response: Response,
    session: UserSession = Depends(get_current_session),
):
    """Clear the session cookie."""
    logger.info("User %s logged out", session.user_id)
    response.delete_cookie(COOKIE_NAME, path="/")
    return {"status": "logged_out"}


# =============================================================================
# Account Activation
# =============================================================================

@router.get("/activation/{token}", response_model=ActivationTokenStatus)
@limiter.limit(f"{settings.RATE_LIMIT_AUTH * 2}/minute")
def check_activation_token(
    request: Request,
    token: str,
    db: Session = Depends(get_db),
) -> ActivationTokenStatus:
    """Tell the activation page whether to show the password form."""
    validation = account_service.validate_activation_token(db, token)
    if validation.valid:
        user = db.get(User, validation.token.user_id)
        return ActivationTokenStatus(valid=True, email=user.email if user else None)
    return ActivationTokenStatus(valid=False, error=validation.reason.value)


@router.post("/activate-account")
@limiter.limit(f"{settings.RATE_LIMIT_AUTH}/minute")
def activate_account(
    request: Request,
    body: ActivateAccountRequest,
    db: Session = Depends(get_db),
):
    """
    Set the first password from an emailed activation link.

    On success the user is signed in and told where to go next; failures
    carry an error code the page maps to a message.
    """
    result = account_service.activate_account(db, token=body.token, password=body.password)
    outcome = result.outcome
    if isinstance(outcome, ErrorOutcome):
        return JSONResponse(status_code=outcome.status_code, content=outcome.to_body())

    response = JSONResponse(content={"success": True, "redirect_to": outcome.to})
    _set_session_cookie(response, _session_token_for(db, result.user))
    return response


# =============================================================================
# Password Reset
# =============================================================================

@router.post("/password-reset")
@limiter.limit(f"{settings.RATE_LIMIT_AUTH}/minute")
def request_password_reset(
    request: Request,
    body: PasswordResetRequest,
    db: Session = Depends(get_db),
):
    """Email a reset link. Always succeeds so addresses cannot be enumerated."""
    account_service.request_password_reset(db, body.email)
    return {"success": True}


@router.post("/reset-password")
@limiter.limit(f"{settings.RATE_LIMIT_AUTH}/minute")
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    db: Session = Depends(get_db),
):
    """Set a new password from an emailed reset link and sign the user in."""
    result = account_service.reset_password(db, token=body.token, password=body.password)
    outcome = result.outcome
    if isinstance(outcome, ErrorOutcome):
        return JSONResponse(status_code=outcome.status_code, content=outcome.to_body())

    response = JSONResponse(content={"success": True, "redirect_to": outcome.to})
    _set_session_cookie(response, _session_token_for(db, result.user))
    return response
