"""Environment-driven settings for the portal backend."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    stripe_secret_key: str | None = None
    stripe_publishable_key: str | None = None
    stripe_webhook_secret: str | None = None
    api_token: str = ""
    db_path: str = "data/portal.db"
    audit_log_path: str | None = None
    audit_log_max_bytes: int = 10_485_760
    audit_log_backup_count: int = 5
    security_alert_webhook_url: str | None = None
    high_value_threshold: float = 1000
    verification_code_ttl_seconds: int = 300
    cors_allow_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Read settings from ``environ`` (defaults to ``os.environ``).

        Empty variables are treated as unset.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            return env.get(name) or None

        origins = get("CORS_ALLOW_ORIGINS") or "*"
        return cls(
            stripe_secret_key=get("STRIPE_SECRET_KEY"),
            stripe_publishable_key=get("STRIPE_PUBLISHABLE_KEY"),
            stripe_webhook_secret=get("STRIPE_WEBHOOK_SECRET"),
            api_token=get("PORTAL_API_TOKEN") or "",
            db_path=get("PORTAL_DB_PATH") or "data/portal.db",
            audit_log_path=get("AUDIT_LOG_PATH"),
            audit_log_max_bytes=int(get("AUDIT_LOG_MAX_BYTES") or "10485760"),
            audit_log_backup_count=int(get("AUDIT_LOG_BACKUP_COUNT") or "5"),
            security_alert_webhook_url=get("SECURITY_ALERT_WEBHOOK_URL"),
            high_value_threshold=float(get("HIGH_VALUE_THRESHOLD") or "1000"),
            verification_code_ttl_seconds=int(get("VERIFICATION_CODE_TTL_SECONDS") or "300"),
            cors_allow_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )
