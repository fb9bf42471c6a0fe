"""
Shared authentication utilities.

Why:
    The middleware and `/me` both turn an `Authorization` header into a
    principal. Keeping the steps in one place makes the 401/404 split
    consistent: no or bad token is 401, a valid token without a profile is 404.

Design:
    Pure helpers over the injected token verifier and school store; no FastAPI
    types beyond plain strings.
"""

from __future__ import annotations

from typing import Optional

from backend.identity_access.domain import Principal
from backend.identity_access.tokens import TokenVerificationError, TokenVerifierProtocol
from backend.school.errors import AuthenticationError, ProfileNotFoundError
from backend.school.ports import SchoolRepoProtocol

PRIVATE_NO_STORE = {"Cache-Control": "private, no-store"}


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token of a `Bearer <token>` header, or None."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_principal(
    authorization: Optional[str],
    *,
    tokens: TokenVerifierProtocol,
    repo: SchoolRepoProtocol,
) -> tuple[Principal, dict]:
    """Resolve header -> (principal, profile row).

    Raises:
        AuthenticationError: header missing/malformed or token rejected.
        ProfileNotFoundError: token valid but no usable profile row.
    """
    token = bearer_token(authorization)
    if token is None:
        raise AuthenticationError("missing_token", "Unauthorized")
    try:
        user_id = tokens.verify(token)
    except TokenVerificationError as exc:
        raise AuthenticationError(exc.code, "Unauthorized") from exc
    profile = repo.get_profile(user_id)
    if not profile:
        raise ProfileNotFoundError("profile_not_found", "User profile not found")
    principal = Principal.from_profile(profile)
    if principal is None:
        raise ProfileNotFoundError("unknown_role", "User profile has no valid role")
    return principal, profile
