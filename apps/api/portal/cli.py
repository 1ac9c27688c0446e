"""CLI tools for portal administration."""

import click

from portal.db.enums import Role
from portal.db.models import License, Organization, User
from portal.db.session import SessionLocal
from portal.utils.normalization import normalize_domain

# Internal licenses are not tied to a subscription and never expire
UNLIMITED_MAX_DOMAINS = 999


@click.group()
def cli():
    """Portal CLI tools."""
    pass


@cli.command()
@click.option("--name", required=True, help="Organization name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, no spaces)")
@click.option("--site-url", default=None, help="WordPress site URL the plugin signs requests with")
@click.option("--owner-email", default=None, help="Owner email; an activation link is emailed")
def create_org(name: str, slug: str, site_url: str | None, owner_email: str | None):
    """
    Create an organization and, optionally, its owner account.

    Example:
        portal create-org --name "Acme" --slug acme --site-url https://acme.com --owner-email owner@acme.com
    """
    from portal.services import account_service

    db = SessionLocal()
    try:
        slug = slug.lower().strip()
        if not slug.replace("-", "").replace("_", "").isalnum():
            click.echo("❌ Slug must be alphanumeric (with optional hyphens/underscores)")
            return

        existing = db.query(Organization).filter(Organization.slug == slug).first()
        if existing:
            click.echo(f"❌ Organization with slug '{slug}' already exists")
            return

        org = Organization(
            name=name,
            slug=slug,
            site_url=site_url,
            site_domain=normalize_domain(site_url) if site_url else None,
        )
        db.add(org)
        db.flush()

        user = None
        if owner_email:
            user = account_service.create_owner_account(
                db, organization=org, email=owner_email, role=Role.OWNER
            )
        db.commit()

        click.echo(f"✓ Created organization: {name}")
        click.echo(f"  ID: {org.id}")
        click.echo(f"  Slug: {slug}")
        if user:
            account_service.issue_activation_token(db, user)
            click.echo(f"✓ Created owner {user.email}; activation link sent")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--org-slug", required=True, help="Organization slug")
@click.option("--max-domains", default=None, type=int, help="Domain slots (default: LICENSE_DEFAULT_MAX_DOMAINS)")
@click.option("--unlimited", is_flag=True, help="Internal license: never expires, many domains")
def create_license(org_slug: str, max_domains: int | None, unlimited: bool):
    """
    Issue a license key for an organization.

    Example:
        portal create-license --org-slug acme --unlimited
    """
    from portal.services import license_service

    db = SessionLocal()
    try:
        org = db.query(Organization).filter(Organization.slug == org_slug).first()
        if not org:
            click.echo(f"❌ Organization not found: {org_slug}")
            return

        if unlimited and max_domains is None:
            max_domains = UNLIMITED_MAX_DOMAINS
        license = license_service.create_license(
            db,
            organization_id=org.id,
            max_domains=max_domains,
            expires_at=None,
        )
        db.commit()

        click.echo(f"✓ Issued license for {org.name}")
        click.echo(f"  Key: {license.license_key}")
        click.echo(f"  Max domains: {license.max_domains}")
        click.echo("  Expires: never" if license.expires_at is None else f"  Expires: {license.expires_at}")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--subscription-id", default=None, help="Billing subscription id")
@click.option("--license-key", default=None, help="Sync the subscription behind this license")
def sync_license(subscription_id: str | None, license_key: str | None):
    """
    Re-run subscription-to-license sync (safe to repeat).

    Example:
        portal sync-license --subscription-id sub_123
    """
    from portal.services import subscription_sync_service

    if not subscription_id and not license_key:
        click.echo("❌ Pass --subscription-id or --license-key")
        return

    db = SessionLocal()
    try:
        if not subscription_id:
            license = db.query(License).filter(License.license_key == license_key).first()
            if not license or not license.subscription_id:
                click.echo("❌ License not found or not linked to a subscription")
                return
            subscription_id = license.subscription_id

        result = subscription_sync_service.sync_license_from_subscription(db, subscription_id)
        if not result.found:
            click.echo(f"❌ Subscription not found: {subscription_id}")
            return

        click.echo(f"✓ Synced subscription {subscription_id}")
        click.echo(f"  Licenses updated: {result.updated}")
        click.echo(f"  Newly linked: {result.linked}")
        click.echo(f"  Domains auto-deactivated: {result.auto_deactivated}")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="User email to revoke sessions for")
def revoke_sessions(email: str):
    """
    Revoke all sessions for a user by bumping their token_version.

    Example:
        portal revoke-sessions --email "user@example.com"
    """
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.lower()).first()
        if not user:
            click.echo(f"❌ User not found: {email}")
            return

        from portal.services import account_service

        old_version = user.token_version
        account_service.revoke_sessions(db, user)

        click.echo(f"✓ Revoked all sessions for {email}")
        click.echo(f"  Token version: {old_version} → {user.token_version}")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
