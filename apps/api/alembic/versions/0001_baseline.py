"""Baseline migration - tenants, licensing, billing and support tables

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates every table of the portal schema.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create portal tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Organizations
    # ==========================================================================
    op.execute('''
        CREATE TABLE organizations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            site_url VARCHAR(500),
            site_domain VARCHAR(255),
            billing_customer_id VARCHAR(255) UNIQUE,
            stripe_account_id VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_organizations_site_domain ON organizations(site_domain)')

    # ==========================================================================
    # Users, memberships, activation tokens
    # ==========================================================================
    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255) UNIQUE NOT NULL,
            name VARCHAR(255),
            password_hash VARCHAR(255),
            is_active BOOLEAN NOT NULL DEFAULT true,
            token_version INTEGER NOT NULL DEFAULT 1,
            last_login_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE memberships (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID UNIQUE NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            role VARCHAR(50) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_memberships_org_id ON memberships(organization_id)')

    op.execute('''
        CREATE TABLE account_activation_tokens (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            token VARCHAR(255) UNIQUE NOT NULL,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            expires_at TIMESTAMPTZ NOT NULL,
            used BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE password_reset_tokens (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            token VARCHAR(255) UNIQUE NOT NULL,
            email VARCHAR(255) NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_password_reset_tokens_email ON password_reset_tokens(email)')

    # ==========================================================================
    # Billing subscriptions and licenses
    # ==========================================================================
    op.execute('''
        CREATE TABLE subscriptions (
            id VARCHAR(255) PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            status VARCHAR(32) NOT NULL,
            active BOOLEAN NOT NULL DEFAULT false,
            price_id VARCHAR(255),
            period_starts_at TIMESTAMPTZ,
            period_ends_at TIMESTAMPTZ,
            cancel_at_period_end BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_subscriptions_org ON subscriptions(organization_id)')

    op.execute('''
        CREATE TABLE licenses (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            license_key VARCHAR(128) UNIQUE NOT NULL,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            subscription_id VARCHAR(255) REFERENCES subscriptions(id) ON DELETE SET NULL,
            max_domains INTEGER NOT NULL DEFAULT 1,
            activation_count INTEGER NOT NULL DEFAULT 0,
            active BOOLEAN NOT NULL DEFAULT true,
            expires_at TIMESTAMPTZ,
            deleted_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_licenses_org ON licenses(organization_id)')
    op.execute('CREATE INDEX ix_licenses_subscription ON licenses(subscription_id)')

    op.execute('''
        CREATE TABLE license_domain_activations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            license_id UUID NOT NULL REFERENCES licenses(id) ON DELETE CASCADE,
            domain VARCHAR(255) NOT NULL,
            ip_address VARCHAR(64),
            activated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_license_domain UNIQUE (license_id, domain)
        )
    ''')
    op.execute(
        'CREATE INDEX ix_license_domain_activations_domain ON license_domain_activations(domain)'
    )

    op.execute('''
        CREATE TABLE license_activities (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            license_id UUID NOT NULL REFERENCES licenses(id) ON DELETE CASCADE,
            action_type VARCHAR(32) NOT NULL
                CHECK (action_type IN ('ACTIVATE', 'DEACTIVATE', 'AUTO_DEACTIVATE')),
            domain VARCHAR(255) NOT NULL,
            ip_address VARCHAR(64),
            metadata JSONB,
            occurred_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX ix_license_activities_license_time '
        'ON license_activities(license_id, occurred_at)'
    )

    # ==========================================================================
    # Support desk
    # ==========================================================================
    op.execute('''
        CREATE TABLE counters (
            name VARCHAR(64) PRIMARY KEY,
            current_value INTEGER NOT NULL DEFAULT 0
        )
    ''')
    op.execute("INSERT INTO counters (name, current_value) VALUES ('support_ticket_number', 0)")

    op.execute('''
        CREATE TABLE support_tickets (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            ticket_number INTEGER UNIQUE NOT NULL,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            subject VARCHAR(255) NOT NULL,
            priority VARCHAR(32) NOT NULL DEFAULT 'NORMAL'
                CHECK (priority IN ('LOW', 'NORMAL', 'HIGH', 'URGENT')),
            status VARCHAR(32) NOT NULL DEFAULT 'OPEN'
                CHECK (status IN ('OPEN', 'IN_PROGRESS', 'WAITING_CUSTOMER', 'RESOLVED', 'CLOSED')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_support_tickets_user ON support_tickets(user_id)')
    op.execute(
        'CREATE INDEX ix_support_tickets_org_status ON support_tickets(organization_id, status)'
    )

    op.execute('''
        CREATE TABLE support_ticket_messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            ticket_id UUID NOT NULL REFERENCES support_tickets(id) ON DELETE CASCADE,
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            is_staff BOOLEAN NOT NULL DEFAULT false,
            message TEXT NOT NULL,
            message_id VARCHAR(512) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX ix_support_ticket_messages_ticket_time '
        'ON support_ticket_messages(ticket_id, created_at)'
    )

    op.execute('''
        CREATE TABLE support_ticket_message_attachments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            message_id UUID NOT NULL REFERENCES support_ticket_messages(id) ON DELETE CASCADE,
            filename VARCHAR(255) NOT NULL,
            content_type VARCHAR(100) NOT NULL,
            content_id VARCHAR(255),
            size INTEGER NOT NULL,
            hash VARCHAR(64) NOT NULL,
            data BYTEA NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')


def downgrade() -> None:
    """Drop all portal tables."""

    # Reverse order (respecting foreign keys)
    op.execute('DROP TABLE IF EXISTS support_ticket_message_attachments')
    op.execute('DROP TABLE IF EXISTS support_ticket_messages')
    op.execute('DROP TABLE IF EXISTS support_tickets')
    op.execute('DROP TABLE IF EXISTS counters')
    op.execute('DROP TABLE IF EXISTS license_activities')
    op.execute('DROP TABLE IF EXISTS license_domain_activations')
    op.execute('DROP TABLE IF EXISTS licenses')
    op.execute('DROP TABLE IF EXISTS subscriptions')
    op.execute('DROP TABLE IF EXISTS password_reset_tokens')
    op.execute('DROP TABLE IF EXISTS account_activation_tokens')
    op.execute('DROP TABLE IF EXISTS memberships')
    op.execute('DROP TABLE IF EXISTS users')
    op.execute('DROP TABLE IF EXISTS organizations')
