"""Portal license API (session-authenticated, scoped to the caller's organization)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from portal.core.deps import get_client_ip, get_current_session, get_db, require_csrf_header
from portal.db.models import License
from portal.schemas.auth import UserSession
from portal.schemas.licensing import (
    LicenseActivityItem,
    LicenseDeactivateRequest,
    LicenseDeactivateResponse,
    LicenseHistoryResponse,
    LicenseKeyDomainRequest,
    LicenseKeyRequest,
    LicenseStatusResponse,
    LicenseSummary,
    LicenseValidateResponse,
)
from portal.services import license_service
from portal.utils.normalization import normalize_domain

router = APIRouter(prefix="/licenses", tags=["licenses"])
logger = logging.getLogger(__name__)


def _get_org_license(db: Session, session: UserSession, license_key: str) -> License:
    license = license_service.get_license_by_key(db, license_key)
    if not license or license.organization_id != session.org_id:
        raise HTTPException(status_code=404, detail="Invalid license key")
    return license


@router.get("", response_model=list[LicenseSummary])
def list_licenses(
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> list[LicenseSummary]:
    licenses = license_service.list_organization_licenses(db, session.org_id)
    return [
        LicenseSummary(
            id=license.id,
            license_key=license.license_key,
            active=license.active,
            expires_at=license.expires_at,
            deleted_at=license.deleted_at,
            max_domains=license.max_domains,
            activated_domains=[a.domain for a in license_service.get_activations(db, license.id)],
            subscription_id=license.subscription_id,
        )
        for license in licenses
    ]


@router.post(
    "/validate",
    response_model=LicenseValidateResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_csrf_header)],
)
def validate_license(
    body: LicenseKeyDomainRequest,
    request: Request,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> LicenseValidateResponse:
    """Check the license for a domain, taking a free slot when one is available."""
    _get_org_license(db, session, body.license_key)
    if not normalize_domain(body.domain):
        raise HTTPException(status_code=400, detail="Invalid domain")
    result = license_service.validate_license(
        db,
        license_key=body.license_key,
        domain=body.domain,
        ip_address=get_client_ip(request),
    )
    if result is None:
        raise HTTPException(status_code=404, detail="Invalid license key")

    if not result.valid and not result.activated_domains:
        return LicenseValidateResponse(
            valid=False, active=False, expires_at=result.expires_at, message=result.message
        )

    domains = result.activated_domains
    slots_remaining = 0 if not result.valid else max(0, result.max_domains - len(domains))
    return LicenseValidateResponse(
        valid=result.valid,
        active=result.valid,
        expires_at=result.expires_at,
        activated_domain=result.activated_domain,
        activated_domains=domains,
        activation_count=len(domains),
        max_domains=result.max_domains,
        slots_remaining=slots_remaining,
        message=result.message,
    )


@router.post(
    "/status",
    response_model=LicenseStatusResponse,
    dependencies=[Depends(require_csrf_header)],
)
def license_status(
    body: LicenseKeyRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> LicenseStatusResponse:
    license = _get_org_license(db, session, body.license_key)
    view = license_service.get_license_status(db, license)
    return LicenseStatusResponse(
        valid=view.valid,
        license_key=license.license_key,
        status=view.status.value,
        expires_at=view.expires_at,
        renewal_date=view.renewal_date,
        subscription_status=view.subscription_status,
        activated_domain=view.activated_domains[0] if view.activated_domains else None,
        activated_domains=view.activated_domains,
        max_domains=view.max_domains,
        slots_remaining=view.slots_remaining,
        activation_count=len(view.activated_domains),
        can_activate=view.can_activate,
        message=view.message,
    )


@router.post(
    "/deactivate",
    response_model=LicenseDeactivateResponse,
    dependencies=[Depends(require_csrf_header)],
)
def deactivate_license(
    body: LicenseDeactivateRequest,
    request: Request,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> LicenseDeactivateResponse:
    """Free one domain (or every domain when none is given)."""
    _get_org_license(db, session, body.license_key)
    result = license_service.deactivate_license(
        db,
        license_key=body.license_key,
        domain=body.domain,
        ip_address=get_client_ip(request),
        source="api_deactivation",
    )
    if result.removed_domains:
        message = "License deactivated successfully"
    elif body.domain:
        message = f"Domain {normalize_domain(body.domain)} is not activated"
    else:
        message = "License is not activated on any domain"
    return LicenseDeactivateResponse(
        success=True, message=message, remaining_domains=result.remaining_domains
    )


@router.get("/history", response_model=LicenseHistoryResponse)
def license_history(
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> LicenseHistoryResponse:
    license = license_service.get_organization_license(db, session.org_id)
    if not license:
        raise HTTPException(status_code=404, detail="No license found")
    history = license_service.get_license_history(db, license)
    return LicenseHistoryResponse(
        license_key=history.license_key,
        activation_count=len(history.current_domains),
        max_domains=history.max_domains,
        current_domains=history.current_domains,
        history=[
            LicenseActivityItem(
                action=activity.action_type.value,
                domain=activity.domain,
                occurred_at=activity.occurred_at,
                ip_address=activity.ip_address,
            )
            for activity in history.activities
        ],
    )
