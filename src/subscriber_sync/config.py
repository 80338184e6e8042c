"""
Central configuration module for Subscriber Sync
Reads and validates environment variables with strict checks for production
"""
import os
import sys
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file if it exists (dev only)
if os.getenv("ENV", "dev").lower() == "dev":
    load_dotenv()


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "5"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "900"))
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))

    # Credential store
    ENCRYPTION_KEY: str = os.getenv("ENCRYPTION_KEY", "")

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_TEST_SECRET_KEY: Optional[str] = os.getenv("STRIPE_TEST_SECRET_KEY")

    # Metering and pricing
    METER_UNIT_SIZE: int = int(os.getenv("METER_UNIT_SIZE", "10000"))
    BASE_PRICE: Decimal = Decimal(os.getenv("BASE_PRICE", "5.00"))
    BASE_TIER_SIZE: int = int(os.getenv("BASE_TIER_SIZE", "10000"))
    ADDITIONAL_TIER_PRICE: Decimal = Decimal(os.getenv("ADDITIONAL_TIER_PRICE", "1.00"))
    ADDITIONAL_TIER_SIZE: int = int(os.getenv("ADDITIONAL_TIER_SIZE", "10000"))

    # Background jobs
    NIGHTLY_SYNC_HOUR: int = int(os.getenv("NIGHTLY_SYNC_HOUR", "2"))
    BILLING_RECOMPUTE_HOUR: int = int(os.getenv("BILLING_RECOMPUTE_HOUR", "5"))
    TOKEN_REFRESH_INTERVAL_MINUTES: int = int(os.getenv("TOKEN_REFRESH_INTERVAL_MINUTES", "5"))
    TOKEN_REFRESH_WINDOW_MINUTES: int = int(os.getenv("TOKEN_REFRESH_WINDOW_MINUTES", "10"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __init__(self):
        """Initialize configuration and validate required variables"""
        self._validate()

    def _validate(self):
        """Validate required configuration based on environment"""
        errors = []

        if self.ENV not in ["dev", "staging", "prod", "test"]:
            errors.append(f"Invalid ENV value: {self.ENV}. Must be 'dev', 'staging', 'prod' or 'test'")

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required but not set")
        elif not self.DATABASE_URL.startswith(("postgresql", "sqlite")):
            errors.append(f"DATABASE_URL must be a PostgreSQL or SQLite connection string (got: {self.DATABASE_URL[:30]}...)")
        elif self.ENV in ["staging", "prod"] and not self.DATABASE_URL.startswith("postgresql"):
            errors.append("DATABASE_URL must be a PostgreSQL connection string in staging/production")

        if not self.ENCRYPTION_KEY:
            errors.append("ENCRYPTION_KEY is required but not set")
        elif len(self.ENCRYPTION_KEY) < 32:
            errors.append(f"ENCRYPTION_KEY must be at least 32 characters (current: {len(self.ENCRYPTION_KEY)})")

        if self.ENV in ["staging", "prod"]:
            if not self.get_stripe_secret_key():
                errors.append(f"STRIPE_{'TEST_' if self.ENV == 'staging' else ''}SECRET_KEY is required in {self.ENV}")

        if self.METER_UNIT_SIZE <= 0:
            errors.append(f"METER_UNIT_SIZE must be positive (got: {self.METER_UNIT_SIZE})")

        # Fail fast in staging/prod
        if errors and self.ENV in ["staging", "prod"]:
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION VALIDATION FAILED", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            sys.exit(1)

        # Warn in dev
        if errors and self.ENV == "dev":
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION WARNINGS (dev mode - continuing)", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)

    @property
    def is_dev(self) -> bool:
        """Check if running in development mode"""
        return self.ENV == "dev"

    @property
    def is_prod(self) -> bool:
        """Check if running in production mode"""
        return self.ENV == "prod"

    @property
    def is_staging(self) -> bool:
        """Check if running in staging mode"""
        return self.ENV == "staging"

    def get_database_url(self) -> str:
        """Get database URL, defaulting to a local SQLite file in dev"""
        if not self.DATABASE_URL and self.ENV in ["dev", "test"]:
            return "sqlite:///./subscriber_sync.db"
        return self.DATABASE_URL

    def get_stripe_secret_key(self) -> Optional[str]:
        """Stripe key for the current environment (test key in staging)"""
        if self.ENV == "staging":
            return self.STRIPE_TEST_SECRET_KEY
        return self.STRIPE_SECRET_KEY


# Create global config instance
config = Config()
