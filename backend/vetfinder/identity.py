# backend/vetfinder/identity.py
"""
Caller identity.

Authentication happens upstream: the gateway verifies the token and forwards
only the normalized identity as headers (X-User-ID / X-User-Role). The
backend trusts those headers and nothing else.
"""

from dataclasses import dataclass

from fastapi import Header

from .errors import AuthorizationError

ROLE_CLIENT = "user"
ROLE_PROVIDER = "vetcompany"
ROLES = (ROLE_CLIENT, ROLE_PROVIDER)


@dataclass(frozen=True)
class CallerIdentity:
    id: int
    role: str

    @property
    def is_provider_operator(self) -> bool:
        return self.role == ROLE_PROVIDER


def get_caller(
    x_user_id: str | None = Header(None),
    x_user_role: str | None = Header(None),
) -> CallerIdentity:
    if not x_user_id or not x_user_role:
        raise AuthorizationError.unauthenticated()

    try:
        user_id = int(x_user_id)
    except ValueError:
        raise AuthorizationError.unauthenticated("Malformed X-User-ID header") from None

    if user_id <= 0:
        raise AuthorizationError.unauthenticated("Malformed X-User-ID header")
    if x_user_role not in ROLES:
        raise AuthorizationError.unauthenticated(f"Unknown role: {x_user_role}")

    return CallerIdentity(id=user_id, role=x_user_role)
