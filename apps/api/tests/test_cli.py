"""Tests for the admin CLI."""

from click.testing import CliRunner

from portal.cli import UNLIMITED_MAX_DOMAINS, cli
from portal.db.enums import SubscriptionStatus
from portal.db.models import AccountActivationToken, License, Organization, Subscription, User


def test_create_org_with_owner(db, sent_emails):
    result = CliRunner().invoke(
        cli,
        [
            "create-org",
            "--name", "Acme",
            "--slug", "Acme",
            "--site-url", "https://www.acme.example.com/",
            "--owner-email", "Owner@Acme.example.com",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "✓ Created organization: Acme" in result.output

    org = db.query(Organization).filter(Organization.slug == "acme").one()
    assert org.site_domain == "acme.example.com"
    user = db.query(User).filter(User.email == "owner@acme.example.com").one()
    assert db.query(AccountActivationToken).filter(AccountActivationToken.user_id == user.id).count() == 1
    assert sent_emails[0].to == "owner@acme.example.com"


def test_create_org_rejects_duplicate_slug(db, test_org):
    result = CliRunner().invoke(cli, ["create-org", "--name", "Again", "--slug", test_org.slug])
    assert "already exists" in result.output


def test_create_unlimited_license(db, test_org):
    result = CliRunner().invoke(cli, ["create-license", "--org-slug", test_org.slug, "--unlimited"])

    assert result.exit_code == 0, result.output
    assert "Expires: never" in result.output
    license = db.query(License).filter(License.organization_id == test_org.id).one()
    assert license.max_domains == UNLIMITED_MAX_DOMAINS
    assert license.expires_at is None
    assert len(license.license_key) == 64


def test_create_license_unknown_org(db):
    result = CliRunner().invoke(cli, ["create-license", "--org-slug", "missing"])
    assert "Organization not found" in result.output


def test_sync_license_by_key(db, test_org, make_license):
    license = make_license()
    db.add(
        Subscription(
            id="sub_cli",
            organization_id=test_org.id,
            status=SubscriptionStatus.ACTIVE.value,
            active=True,
        )
    )
    license.subscription_id = "sub_cli"
    db.commit()

    result = CliRunner().invoke(cli, ["sync-license", "--license-key", license.license_key])

    assert result.exit_code == 0, result.output
    assert "✓ Synced subscription sub_cli" in result.output
    assert "Licenses updated: 1" in result.output


def test_sync_license_needs_an_option(db):
    result = CliRunner().invoke(cli, ["sync-license"])
    assert "Pass --subscription-id or --license-key" in result.output


def test_revoke_sessions(db, test_user):
    result = CliRunner().invoke(cli, ["revoke-sessions", "--email", test_user.email])

    assert result.exit_code == 0, result.output
    db.expire_all()
    assert db.get(User, test_user.id).token_version == 2
