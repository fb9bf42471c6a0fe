"""
Bearer token verification for the identity_access bounded context.

Why: Keep token validation outside the web adapter so it can be unit tested
independently and swapped per deployment.

Adapters (all expose `verify(token) -> user_id`):
    - SupabaseTokenVerifier: asks the Supabase auth service who owns the token.
    - JWTTokenVerifier: validates Supabase-issued HS256 JWTs locally with the
      project's JWT secret (audience "authenticated").
    - InMemoryTokenStore (see stores.py): opaque tokens for dev and tests.

Security: Never log raw tokens. Failures carry only a short machine code.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Protocol

from jose import jwt
from jose.exceptions import JOSEError

logger = logging.getLogger("guarddog.identity_access")

SUPABASE_AUDIENCE = "authenticated"
MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers


class TokenVerificationError(Exception):
    """Raised when a bearer token cannot be resolved to a user id."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class TokenVerifierProtocol(Protocol):
    def verify(self, token: str) -> str:
        """Return the identity's user id or raise TokenVerificationError."""
        ...


class SupabaseTokenVerifier:
    """Resolve tokens via `client.auth.get_user(token)` (duck-typed supabase client)."""

    def __init__(self, client: Any):
        self._client = client

    def verify(self, token: str) -> str:
        if not token:
            raise TokenVerificationError("missing_token")
        try:
            res = self._client.auth.get_user(token)
        except Exception as exc:
            logger.info("supabase get_user rejected token: %s", exc.__class__.__name__)
            raise TokenVerificationError("invalid_token") from exc
        user = getattr(res, "user", None)
        if user is None and isinstance(res, dict):
            user = res.get("user")
        user_id = getattr(user, "id", None) if user is not None else None
        if user_id is None and isinstance(user, dict):
            user_id = user.get("id")
        if not user_id:
            raise TokenVerificationError("invalid_token")
        return str(user_id)


class JWTTokenVerifier:
    """Validate HS256 access tokens signed with the Supabase JWT secret."""

    def __init__(self, secret: str, *, audience: str = SUPABASE_AUDIENCE):
        if not secret:
            raise ValueError("JWT secret is required")
        self._secret = secret
        self._audience = audience

    def verify(self, token: str) -> str:
        if not token:
            raise TokenVerificationError("missing_token")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=["HS256"],
                audience=self._audience,
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except JOSEError as exc:
            raise TokenVerificationError("invalid_token") from exc
        _validate_temporal_claims(claims)
        sub = claims.get("sub")
        if not isinstance(sub, str) or not sub:
            raise TokenVerificationError("missing_sub")
        return sub


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise TokenVerificationError("invalid_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise TokenVerificationError("token_expired")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise TokenVerificationError("invalid_token")


__all__ = [
    "JWTTokenVerifier",
    "SupabaseTokenVerifier",
    "TokenVerificationError",
    "TokenVerifierProtocol",
]
