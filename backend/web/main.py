"GuardDog school progress API"
from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.school.errors import SchoolError

from .auth_utils import PRIVATE_NO_STORE, resolve_principal
from .config import Settings, ensure_secure_config_on_startup, load_settings
from .routes.averages import averages_router
from .routes.classrooms import classrooms_router
from .routes.operations import operations_router
from .routes.progress import progress_router
from .routes.users import users_router
from .wiring import AppServices, build_services


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via GUARDDOG_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("GUARDDOG_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

logger = logging.getLogger("guarddog.web")

_PUBLIC_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico"})

# Routing errors raised by the framework itself, mapped onto the API's codes.
_HTTP_ERROR_CODES = {
    401: ("unauthenticated", "unauthenticated"),
    403: ("forbidden", "forbidden"),
    404: ("not_found", "route_not_found"),
    405: ("method_not_allowed", "method_not_allowed"),
}


def _is_public_path(path: str) -> bool:
    return path in _PUBLIC_PATHS or path.startswith("/docs/")


def _error_response(exc: SchoolError, *, include_debug: bool = False) -> JSONResponse:
    return JSONResponse(
        exc.to_payload(include_debug=include_debug),
        status_code=exc.status_code,
        headers=dict(PRIVATE_NO_STORE),
    )


def create_app(services: AppServices | None = None, *, settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application around one services container.

    Tests pass an in-memory container; the module-level `app` wires adapters
    from the environment.
    """
    cfg = settings or (services.settings if services is not None else load_settings())
    ensure_secure_config_on_startup(cfg)

    app = FastAPI(title="GuardDog", description="Role-scoped school progress API", version="0.1.0")
    app.state.services = services or build_services(cfg)
    include_debug = cfg.debug_errors and not cfg.prod_like

    # --- Auth & Security Middleware ------------------------------------------

    @app.middleware("http")
    async def auth_enforcement(request: Request, call_next):
        path = request.url.path
        if _is_public_path(path):
            return await call_next(request)
        svc: AppServices = request.app.state.services
        try:
            principal, profile = resolve_principal(
                request.headers.get("authorization"),
                tokens=svc.tokens,
                repo=svc.repo,
            )
        except SchoolError as exc:
            if exc.status_code >= 500:
                logger.error("Principal resolution failed: %s", exc.detail)
            return _error_response(exc, include_debug=include_debug)

        # Minimal, read-only identity context for downstream handlers.
        request.state.principal = principal
        request.state.profile = profile
        return await call_next(request)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("Cache-Control", "private, no-store")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response

    # --- Error Mapping -------------------------------------------------------

    @app.exception_handler(SchoolError)
    async def school_error_handler(request: Request, exc: SchoolError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s/%s", request.method, request.url.path, exc.code, exc.detail)
        else:
            logger.info("%s %s rejected: %s/%s", request.method, request.url.path, exc.code, exc.detail)
        return _error_response(exc, include_debug=include_debug)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        error, detail = _HTTP_ERROR_CODES.get(
            exc.status_code,
            ("internal_error", "unexpected") if exc.status_code >= 500 else ("bad_request", "http_error"),
        )
        payload = {"error": error, "detail": detail, "message": str(exc.detail)}
        # Keep framework headers such as `Allow` on 405 responses.
        headers = {**dict(PRIVATE_NO_STORE), **(exc.headers or {})}
        return JSONResponse(payload, status_code=exc.status_code, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()})
        payload = {
            "error": "bad_request",
            "detail": "invalid_payload",
            "message": "Invalid request: " + (", ".join(f for f in fields if f) or "body"),
        }
        return JSONResponse(payload, status_code=400, headers=dict(PRIVATE_NO_STORE))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        payload = {"error": "internal_error", "detail": "unexpected", "message": "Internal server error"}
        return JSONResponse(payload, status_code=500, headers=dict(PRIVATE_NO_STORE))

    # --- Routes --------------------------------------------------------------

    app.include_router(classrooms_router)
    app.include_router(progress_router)
    app.include_router(averages_router)
    app.include_router(users_router)
    app.include_router(operations_router)

    @app.get("/health")
    async def health_check():
        # Minimal health endpoint used by orchestrators and tests.
        return JSONResponse({"status": "ok"}, headers=dict(PRIVATE_NO_STORE))

    @app.get("/me")
    async def get_me(request: Request):
        principal = request.state.principal
        profile = request.state.profile
        return JSONResponse(
            {
                "id": principal.id,
                "role": principal.role.value,
                "schoolId": principal.school_id,
                "mustChangePassword": principal.must_change_password,
                "email": profile.get("email"),
                "firstName": profile.get("first_name"),
                "lastName": profile.get("last_name"),
            },
            headers=dict(PRIVATE_NO_STORE),
        )

    return app


app = create_app()
