"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.
"""

import os
from functools import lru_cache

from dotenv import load_dotenv

from audit_trail.exceptions import ConfigMissing

# Load .env file into environment variables
load_dotenv()

# Anything shorter than this is treated as missing.
MIN_SECRET_LENGTH = 16


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Audit Trail Service"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "postgresql://localhost:5432/audit_trail"
    )

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON: bool = os.getenv("LOG_JSON", "false").lower() == "true"

    # Keyed digests. Snapshot and proof keys fall back to the row key.
    AUDIT_HASH_SECRET: str = os.getenv("AUDIT_HASH_SECRET", "").strip()
    AUDIT_SNAPSHOT_SECRET: str = os.getenv("AUDIT_SNAPSHOT_SECRET", "").strip()
    AUDIT_PROOF_SECRET: str = os.getenv("AUDIT_PROOF_SECRET", "").strip()

    # Retention (days < 1 disables purging)
    AUDIT_RETENTION_DAYS: int = int(os.getenv("AUDIT_RETENTION_DAYS", "90"))

    # Daily maintenance job
    AUDIT_SCHEDULER_ENABLED: bool = (
        os.getenv("AUDIT_SCHEDULER_ENABLED", "true").lower() == "true"
    )
    AUDIT_SNAPSHOT_HOUR_UTC: int = int(os.getenv("AUDIT_SNAPSHOT_HOUR_UTC", "0"))
    AUDIT_SNAPSHOT_MINUTE_UTC: int = int(
        os.getenv("AUDIT_SNAPSHOT_MINUTE_UTC", "5")
    )
    # Missed days snapshotted per tenant on each run, oldest first
    AUDIT_SNAPSHOT_BACKFILL_MAX_DAYS: int = int(
        os.getenv("AUDIT_SNAPSHOT_BACKFILL_MAX_DAYS", "31")
    )

    # Scan bounds
    AUDIT_VERIFY_DEFAULT_LIMIT: int = int(
        os.getenv("AUDIT_VERIFY_DEFAULT_LIMIT", "20000")
    )
    AUDIT_VERIFY_MAX_LIMIT: int = int(
        os.getenv("AUDIT_VERIFY_MAX_LIMIT", "100000")
    )
    AUDIT_PROOF_MAX_ROWS: int = int(os.getenv("AUDIT_PROOF_MAX_ROWS", "50000"))

    @property
    def hash_secret(self) -> str:
        if len(self.AUDIT_HASH_SECRET) < MIN_SECRET_LENGTH:
            raise ConfigMissing(
                f"AUDIT_HASH_SECRET must be set "
                f"(at least {MIN_SECRET_LENGTH} characters)"
            )
        return self.AUDIT_HASH_SECRET

    @property
    def snapshot_secret(self) -> str:
        return self.AUDIT_SNAPSHOT_SECRET or self.hash_secret

    @property
    def proof_secret(self) -> str:
        return self.AUDIT_PROOF_SECRET or self.hash_secret

    def validate(self) -> None:
        """
        Fail fast when the keyed-digest secrets are unusable.

        Called once at startup. A missing or short secret would make
        every row hash, snapshot and proof bundle meaningless, so the
        process refuses to start instead of degrading silently.
        """
        self.hash_secret
        for name in ("AUDIT_SNAPSHOT_SECRET", "AUDIT_PROOF_SECRET"):
            value = getattr(self, name)
            if value and len(value) < MIN_SECRET_LENGTH:
                raise ConfigMissing(
                    f"{name} is too short "
                    f"(at least {MIN_SECRET_LENGTH} characters)"
                )


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Using lru_cache means the Settings object is created once
    and reused for all subsequent calls. This avoids reading
    environment variables repeatedly.
    """
    return Settings()
