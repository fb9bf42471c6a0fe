"""Users service layer: head-teacher directory listing and account creation.

Why:
    Account creation spans two systems (auth service and the `profiles`
    table). The service orders the calls so that a failed profile insert never
    leaves an orphaned auth user behind.

Flow for `create_user`:
    1. Validate the payload (400).
    2. Authorize: head teacher with a school (403).
    3. Reject an email that already has a profile (409).
    4. Create the auth user with the email confirmed (409 duplicate, 400 rejected).
    5. Reject a profile id collision (409).
    6. Insert the profile; on failure delete the auth user again (500).
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import List, Optional

from backend.identity_access.directory import UserDirectoryProtocol
from backend.identity_access.domain import LISTABLE_ROLES, Principal, Role
from backend.school.errors import ConflictError, UpstreamStoreError, ValidationError
from backend.school.policy import AccessPolicyEvaluator, ResourceKind
from backend.school.ports import SchoolRepoProtocol

logger = logging.getLogger("guarddog.school.users")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_LISTED_FIELDS = ("id", "first_name", "last_name", "email", "role", "school_id")


def _require_text(value: object, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"missing_{field}",
            "Email, password, role, firstName, and lastName are required",
        )
    return value.strip()


@dataclass
class UsersService:
    """Use cases for the user directory (framework-independent)."""

    repo: SchoolRepoProtocol
    policy: AccessPolicyEvaluator
    directory: UserDirectoryProtocol

    def list_users(self, principal: Principal, *, role: Optional[str]) -> List[dict]:
        if role not in LISTABLE_ROLES:
            raise ValidationError("invalid_role", "Invalid or missing role")
        row_filter = self.policy.read_filter(principal, ResourceKind.USER)
        if row_filter.is_empty:
            return []
        rows = self.repo.list_profiles(row_filter, role=role)
        return [{k: r.get(k) for k in _LISTED_FIELDS} for r in rows]

    def create_user(
        self,
        principal: Principal,
        *,
        email: object,
        password: object,
        role: object,
        first_name: object,
        last_name: object,
        school_id: Optional[str] = None,
        must_change_password: bool = False,
    ) -> dict:
        addr = _require_text(email, "email").lower()
        if not isinstance(password, str) or not password:
            raise ValidationError("missing_password", "Email, password, role, firstName, and lastName are required")
        parsed_role = Role.parse(_require_text(role, "role"))
        if parsed_role is None:
            raise ValidationError("invalid_role", "Role must be one of student, teacher, head_teacher")
        first = _require_text(first_name, "first_name")
        last = _require_text(last_name, "last_name")
        if not _EMAIL_RE.match(addr):
            raise ValidationError("invalid_email", "Email address is not valid")

        target_school = self.policy.authorize_user_create(principal, school_id)

        if self.repo.find_profile_by_email(addr):
            raise ConflictError("duplicate_email", "A user with this email already exists in profiles.")

        user_id = self.directory.create_user(email=addr, password=password)

        if self.repo.get_profile(user_id):
            raise ConflictError("duplicate_user_id", "A user with this ID already exists in profiles.")

        try:
            self.repo.create_profile(
                user_id=user_id,
                email=addr,
                first_name=first,
                last_name=last,
                role=parsed_role.value,
                school_id=target_school,
                must_change_password=bool(must_change_password),
            )
        except (ConflictError, UpstreamStoreError) as exc:
            logger.warning(
                "profile insert failed id=%s detail=%s; removing auth user",
                user_id[-6:],
                exc.detail,
            )
            self.directory.delete_user(user_id)
            raise UpstreamStoreError(
                "profile_insert_failed",
                "Failed to create the user profile",
                debug={"cause": exc.detail},
            ) from exc

        logger.info("user created id=%s role=%s", user_id[-6:], parsed_role.value)
        return {
            "id": user_id,
            "email": addr,
            "role": parsed_role.value,
            "firstName": first,
            "lastName": last,
        }


__all__ = ["UsersService"]
