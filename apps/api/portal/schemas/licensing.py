"""License schemas for the plugin and portal license APIs.

The portal API speaks camelCase JSON (the account pages consume it
directly); the plugin API speaks snake_case.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Plugin API
# =============================================================================

class LicenseRegisterRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    license_key: str | None = None
    email: str | None = None
    site_url: str | None = None
    action: str | None = None  # activate | deactivate | check


# =============================================================================
# Portal API
# =============================================================================

class LicenseKeyDomainRequest(CamelModel):
    license_key: str = Field(min_length=1)
    domain: str = Field(min_length=1)


class LicenseKeyRequest(CamelModel):
    license_key: str = Field(min_length=1)


class LicenseDeactivateRequest(CamelModel):
    license_key: str = Field(min_length=1)
    domain: str | None = None  # omitted: every domain


class LicenseValidateResponse(CamelModel):
    valid: bool
    active: bool | None = None
    expires_at: datetime | None = None
    activated_domain: str | None = None
    activated_domains: list[str] | None = None
    activation_count: int | None = None
    max_domains: int | None = None
    slots_remaining: int | None = None
    message: str


class LicenseStatusResponse(CamelModel):
    valid: bool
    license_key: str
    status: str
    expires_at: datetime | None
    renewal_date: datetime | None
    subscription_status: str | None
    activated_domain: str | None
    activated_domains: list[str]
    max_domains: int
    slots_remaining: int
    activation_count: int
    can_activate: bool
    message: str


class LicenseDeactivateResponse(CamelModel):
    success: bool
    message: str
    remaining_domains: list[str] = []


class LicenseActivityItem(CamelModel):
    action: str
    domain: str | None
    occurred_at: datetime
    ip_address: str | None


class LicenseHistoryResponse(CamelModel):
    license_key: str
    activation_count: int
    max_domains: int
    current_domains: list[str]
    history: list[LicenseActivityItem]


class LicenseSummary(CamelModel):
    id: UUID
    license_key: str
    active: bool
    expires_at: datetime | None
    deleted_at: datetime | None
    max_domains: int
    activated_domains: list[str]
    subscription_id: str | None
