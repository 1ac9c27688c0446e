"""Tests for the session-authenticated license API."""

import uuid

import pytest
from httpx import AsyncClient

from portal.db.models import Organization
from portal.services import license_service


@pytest.fixture
def other_org_license(db):
    org = Organization(
        id=uuid.uuid4(),
        name="Other Store",
        slug=f"other-{uuid.uuid4().hex[:8]}",
        site_url="https://other.example.com",
        site_domain="other.example.com",
    )
    db.add(org)
    db.commit()
    return license_service.create_license(db, organization_id=org.id, max_domains=1)


@pytest.mark.asyncio
async def test_validate_takes_a_slot(authed_client: AsyncClient, make_license):
    license = make_license(max_domains=2)

    response = await authed_client.post(
        "/api/licenses/validate",
        json={"licenseKey": license.license_key, "domain": "https://www.Shop.Example.com"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["message"] == "License activated successfully"
    assert data["activatedDomain"] == "shop.example.com"
    assert data["activatedDomains"] == ["shop.example.com"]
    assert data["slotsRemaining"] == 1

    again = await authed_client.post(
        "/api/licenses/validate",
        json={"licenseKey": license.license_key, "domain": "shop.example.com"},
    )
    assert again.json()["message"] == "License is valid"


@pytest.mark.asyncio
async def test_validate_limit_reached(authed_client: AsyncClient, db, make_license):
    license = make_license(max_domains=1)
    license_service.activate_license(db, license_key=license.license_key, domain="a.example.com")

    response = await authed_client.post(
        "/api/licenses/validate",
        json={"licenseKey": license.license_key, "domain": "b.example.com"},
    )

    data = response.json()
    assert data["valid"] is False
    assert data["slotsRemaining"] == 0
    assert data["activatedDomains"] == ["a.example.com"]
    assert "a.example.com" in data["message"]


@pytest.mark.asyncio
async def test_validate_requires_csrf(client: AsyncClient, test_auth, make_license):
    license = make_license()
    client.cookies.set(test_auth.cookie_name, test_auth.token)

    response = await client.post(
        "/api/licenses/validate", json={"licenseKey": license.license_key, "domain": "a.example.com"}
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_other_organizations_license_is_404(authed_client: AsyncClient, other_org_license):
    for path, body in (
        ("/api/licenses/validate", {"licenseKey": other_org_license.license_key, "domain": "x.example.com"}),
        ("/api/licenses/status", {"licenseKey": other_org_license.license_key}),
        ("/api/licenses/deactivate", {"licenseKey": other_org_license.license_key}),
    ):
        response = await authed_client.post(path, json=body)
        assert response.status_code == 404, path


@pytest.mark.asyncio
async def test_status(authed_client: AsyncClient, db, make_license):
    license = make_license(max_domains=3)
    license_service.activate_license(db, license_key=license.license_key, domain="a.example.com")

    response = await authed_client.post("/api/licenses/status", json={"licenseKey": license.license_key})

    data = response.json()
    assert data["status"] == "active"
    assert data["valid"] is True
    assert data["activatedDomain"] == "a.example.com"
    assert data["activationCount"] == 1
    assert data["slotsRemaining"] == 2
    assert data["canActivate"] is True
    assert data["expiresAt"] is None


@pytest.mark.asyncio
async def test_deactivate_messages(authed_client: AsyncClient, db, make_license):
    license = make_license(max_domains=2)
    license_service.activate_license(db, license_key=license.license_key, domain="a.example.com")

    removed = await authed_client.post(
        "/api/licenses/deactivate", json={"licenseKey": license.license_key, "domain": "a.example.com"}
    )
    not_there = await authed_client.post(
        "/api/licenses/deactivate", json={"licenseKey": license.license_key, "domain": "https://A.example.com/"}
    )
    nothing = await authed_client.post("/api/licenses/deactivate", json={"licenseKey": license.license_key})

    assert removed.json() == {
        "success": True,
        "message": "License deactivated successfully",
        "remainingDomains": [],
    }
    assert not_there.json()["message"] == "Domain a.example.com is not activated"
    assert nothing.json()["message"] == "License is not activated on any domain"


@pytest.mark.asyncio
async def test_history_and_list(authed_client: AsyncClient, db, make_license):
    license = make_license(max_domains=2)
    license_service.activate_license(db, license_key=license.license_key, domain="a.example.com")
    license_service.activate_license(db, license_key=license.license_key, domain="b.example.com")
    license_service.deactivate_license(db, license_key=license.license_key, domain="a.example.com")

    history = await authed_client.get("/api/licenses/history")
    listing = await authed_client.get("/api/licenses")

    data = history.json()
    assert data["currentDomains"] == ["b.example.com"]
    assert data["activationCount"] == 1
    assert [h["action"] for h in data["history"]] == ["DEACTIVATE", "ACTIVATE", "ACTIVATE"]

    assert [item["licenseKey"] for item in listing.json()] == [license.license_key]
    assert listing.json()[0]["activatedDomains"] == ["b.example.com"]


@pytest.mark.asyncio
async def test_history_without_license_is_404(authed_client: AsyncClient):
    response = await authed_client.get("/api/licenses/history")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_validate_rejects_domain_that_normalizes_to_nothing(authed_client: AsyncClient, db, make_license):
    license = make_license()

    response = await authed_client.post(
        "/api/licenses/validate", json={"licenseKey": license.license_key, "domain": "https:///"}
    )

    assert response.status_code == 400
    assert license_service.get_activations(db, license.id) == []
