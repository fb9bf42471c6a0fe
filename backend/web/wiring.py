"""
Dependency wiring for the web adapter.

Why:
    Routes never construct store clients themselves. One `AppServices`
    container is built per process (or per test) and attached to
    `app.state.services`; swapping in-memory adapters for Postgres/Supabase is a
    configuration change, not a code change.

Security:
    Supabase wiring requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY. The
    service-role client stays server-side; no secrets are exposed to clients.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional

from backend.averages.ports import AveragesCacheProtocol, RecomputeQueueProtocol
from backend.averages.repo_memory import InMemoryAveragesCache, InMemoryRecomputeQueue
from backend.averages.service import AveragesService
from backend.averages.workers.health import AveragesWorkerHealthService
from backend.identity_access.directory import SupabaseDirectory, UserDirectoryProtocol
from backend.identity_access.stores import InMemoryDirectory, InMemoryTokenStore
from backend.identity_access.tokens import JWTTokenVerifier, SupabaseTokenVerifier, TokenVerifierProtocol
from backend.school.policy import AccessPolicyEvaluator
from backend.school.ports import SchoolRepoProtocol
from backend.school.repo_memory import InMemorySchoolRepo
from backend.school.services.classrooms import ClassroomsService
from backend.school.services.progress import ProgressService
from backend.school.services.users import UsersService

from .config import Settings, load_settings

logger = logging.getLogger("guarddog.web")


@dataclass
class AppServices:
    settings: Settings
    repo: SchoolRepoProtocol
    cache: AveragesCacheProtocol
    queue: RecomputeQueueProtocol
    tokens: TokenVerifierProtocol
    directory: UserDirectoryProtocol
    policy: AccessPolicyEvaluator
    classrooms: ClassroomsService
    progress: ProgressService
    averages: AveragesService
    users: UsersService
    worker_health: AveragesWorkerHealthService


def assemble_services(
    *,
    settings: Settings,
    repo: SchoolRepoProtocol,
    cache: AveragesCacheProtocol,
    queue: RecomputeQueueProtocol,
    tokens: TokenVerifierProtocol,
    directory: UserDirectoryProtocol,
) -> AppServices:
    """Build use-case services on top of the given adapters."""
    policy = AccessPolicyEvaluator(repo)
    return AppServices(
        settings=settings,
        repo=repo,
        cache=cache,
        queue=queue,
        tokens=tokens,
        directory=directory,
        policy=policy,
        classrooms=ClassroomsService(repo=repo, policy=policy),
        progress=ProgressService(repo=repo, policy=policy, queue=queue),
        averages=AveragesService(repo=repo, cache=cache, policy=policy),
        users=UsersService(repo=repo, policy=policy, directory=directory),
        worker_health=AveragesWorkerHealthService(queue),
    )


def build_memory_services(settings: Optional[Settings] = None) -> AppServices:
    """In-memory adapters for local development and tests."""
    return assemble_services(
        settings=settings or Settings(),
        repo=InMemorySchoolRepo(),
        cache=InMemoryAveragesCache(),
        queue=InMemoryRecomputeQueue(),
        tokens=InMemoryTokenStore(),
        directory=InMemoryDirectory(),
    )


def _supabase_client(settings: Settings) -> Any:
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise SystemExit(
            "Refusing to start: AUTH_BACKEND requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY."
        )
    # Lazy import keeps the optional dependency out of memory-only setups.
    from supabase import create_client

    return create_client(settings.supabase_url, settings.supabase_service_role_key)


def build_services(settings: Optional[Settings] = None) -> AppServices:
    """Wire adapters according to `STORE_BACKEND` and `AUTH_BACKEND`."""
    cfg = settings or load_settings()

    if cfg.store_backend == "db":
        from backend.averages.repo_db import DBAveragesCache, DBRecomputeQueue
        from backend.school.repo_db import DBSchoolRepo

        repo: SchoolRepoProtocol = DBSchoolRepo(cfg.database_url)
        cache: AveragesCacheProtocol = DBAveragesCache(cfg.database_url)
        queue: RecomputeQueueProtocol = DBRecomputeQueue(
            cfg.database_url, lease_seconds=cfg.worker_lease_seconds
        )
    else:
        repo = InMemorySchoolRepo()
        cache = InMemoryAveragesCache()
        queue = InMemoryRecomputeQueue(lease_seconds=cfg.worker_lease_seconds)

    tokens: TokenVerifierProtocol
    directory: UserDirectoryProtocol
    if cfg.auth_backend == "supabase":
        client = _supabase_client(cfg)
        tokens = SupabaseTokenVerifier(client)
        directory = SupabaseDirectory(client)
    elif cfg.auth_backend == "jwt":
        if not cfg.supabase_jwt_secret:
            raise SystemExit("Refusing to start: AUTH_BACKEND=jwt requires SUPABASE_JWT_SECRET.")
        tokens = JWTTokenVerifier(cfg.supabase_jwt_secret)
        directory = SupabaseDirectory(_supabase_client(cfg))
    else:
        tokens = InMemoryTokenStore()
        directory = InMemoryDirectory()

    logger.info("Services wired: store=%s auth=%s", cfg.store_backend, cfg.auth_backend)
    return assemble_services(
        settings=cfg,
        repo=repo,
        cache=cache,
        queue=queue,
        tokens=tokens,
        directory=directory,
    )


__all__ = ["AppServices", "assemble_services", "build_memory_services", "build_services"]
