"""
Configuration and startup security checks for GuardDog.

Why: Student progress data must never be served by an accidentally insecure
deployment. This module loads settings from the environment in one place and
provides a single guard enforcing minimal production safety constraints
without burdening local development.

Permissions: The caller needs no special privileges. The functions read
environment variables; the guard raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Optional

PROD_LIKE_ENVS = frozenset({"prod", "production", "stage", "staging"})


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in PROD_LIKE_ENVS


def _flag(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes")


def _choice(name: str, default: str, allowed: frozenset[str]) -> str:
    value = (os.getenv(name) or default).strip().lower()
    if value not in allowed:
        raise SystemExit(f"Refusing to start: {name} must be one of {sorted(allowed)} (got {value!r}).")
    return value


@dataclass(frozen=True)
class Settings:
    environment: str = "dev"
    store_backend: str = "memory"
    auth_backend: str = "memory"
    database_url: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None
    recompute_inline: bool = True
    debug_errors: bool = False
    worker_lease_seconds: int = 45

    @property
    def prod_like(self) -> bool:
        return _is_prod_like(self.environment)


def load_settings() -> Settings:
    """Read settings from the environment (values from `.env` are already loaded)."""
    lease_raw = os.getenv("WORKER_LEASE_SECONDS", "45")
    try:
        lease = max(1, int(lease_raw))
    except ValueError:
        lease = 45
    return Settings(
        environment=(os.getenv("GUARDDOG_ENV", "dev") or "dev").strip().lower(),
        store_backend=_choice("STORE_BACKEND", "memory", frozenset({"memory", "db"})),
        auth_backend=_choice("AUTH_BACKEND", "memory", frozenset({"memory", "supabase", "jwt"})),
        database_url=(os.getenv("DATABASE_URL") or "").strip() or None,
        supabase_url=(os.getenv("SUPABASE_URL") or "").strip() or None,
        supabase_service_role_key=(os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip() or None,
        supabase_jwt_secret=(os.getenv("SUPABASE_JWT_SECRET") or "").strip() or None,
        recompute_inline=_flag("RECOMPUTE_INLINE", default=True),
        debug_errors=_flag("DEBUG_ERRORS"),
        worker_lease_seconds=lease,
    )


def ensure_secure_config_on_startup(settings: Settings | None = None) -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - In-memory store or in-memory auth must not run in prod-like envs.
    - Supabase Service Role key must be set and not a known dummy placeholder.
    - DATABASE_URL must not explicitly disable TLS.
    - SUPABASE_URL must use https.
    - DEBUG_ERRORS must be off.
    """
    cfg = settings or load_settings()
    if not cfg.prod_like:
        return  # dev/test remain permissive

    # 1) No development adapters in production
    if cfg.store_backend == "memory":
        raise SystemExit("Refusing to start: STORE_BACKEND=memory is not allowed in production/staging.")
    if cfg.auth_backend == "memory":
        raise SystemExit("Refusing to start: AUTH_BACKEND=memory is not allowed in production/staging.")

    # 2) Supabase Service Role key
    srole = (cfg.supabase_service_role_key or "").strip()
    if not srole or srole.upper() == "DUMMY_DO_NOT_USE":
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )

    # 3) Postgres TLS: basic guard to avoid explicit disable
    if "sslmode=disable" in (cfg.database_url or ""):
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    # 4) Supabase endpoint must use HTTPS
    if (cfg.supabase_url or "").strip().lower().startswith("http://"):
        raise SystemExit("Refusing to start: SUPABASE_URL must use https in production (got http).")

    # 5) Error payloads must not carry debug details
    if cfg.debug_errors:
        raise SystemExit("Refusing to start: DEBUG_ERRORS must be false in production/staging.")


__all__ = ["PROD_LIKE_ENVS", "Settings", "ensure_secure_config_on_startup", "load_settings"]
