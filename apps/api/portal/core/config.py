"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    APP_NAME: str = "PixelDev Portal"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Proxy/Load Balancer Settings
    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 24 * 7
    PASSWORD_RESET_EXPIRY_HOURS: int = 24

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Frontend (for safe redirects)
    FRONTEND_URL: str = "http://localhost:3000"

    # WordPress plugin API (shared HMAC secret)
    PLUGIN_SECRET_KEY: str = ""
    PLUGIN_SIGNATURE_MAX_AGE_SECONDS: int = 300

    # Stripe Connect (platform account used by the payment proxy)
    STRIPE_CONNECT_CLIENT_ID: str = ""
    STRIPE_CONNECT_CLIENT_SECRET: str = ""  # Platform secret key (sk_...)
    STRIPE_API_VERSION: str = ""  # Empty = account default

    # Billing (our own subscriptions)
    BILLING_STRIPE_SECRET_KEY: str = ""
    BILLING_STRIPE_WEBHOOK_SECRET: str = ""
    LICENSE_DEFAULT_MAX_DOMAINS: int = 1

    # Application fee tiers (percent of the charge amount)
    LICENSED_FEE_PERCENT: int = 0
    UNLICENSED_FEE_PERCENT: int = 2
    MIN_PAYMENT_AMOUNT_CENTS: int = 50

    # Email (Postmark)
    POSTMARK_SERVER_TOKEN: str = ""
    POSTMARK_API_URL: str = "https://api.postmarkapp.com"
    EMAIL_FROM: str = "support@pixeldev.local"
    EMAIL_DOMAIN: str = "pixeldev.local"
    SUPPORT_EMAIL: str = "support@pixeldev.local"
    SUPPORT_EMAIL_INBOUND: str = ""  # Postmark inbound hash address
    SUPPORT_ADMIN_EMAILS: str = ""  # Comma-separated
    POSTMARK_INBOUND_USERNAME: str = ""  # Optional basic auth on inbound webhook
    POSTMARK_INBOUND_PASSWORD: str = ""

    # Inbound attachments
    MAX_ATTACHMENT_BYTES: int = 5 * 1024 * 1024
    MAX_TOTAL_ATTACHMENT_BYTES: int = 20 * 1024 * 1024

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_AUTH: int = 5  # Login attempts
    RATE_LIMIT_API: int = 60  # Session API
    RATE_LIMIT_PLUGIN_LICENSE: int = 10
    RATE_LIMIT_PLUGIN_PAYMENTS: int = 100
    RATE_LIMIT_PLUGIN_CREDENTIALS: int = 10
    REDIS_URL: str = ""  # Empty = process-local limits

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def support_admin_emails_list(self) -> list[str]:
        """Parse SUPPORT_ADMIN_EMAILS into lowercase list."""
        if not self.SUPPORT_ADMIN_EMAILS:
            return []
        return [e.strip().lower() for e in self.SUPPORT_ADMIN_EMAILS.split(",") if e.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"


settings = Settings()
