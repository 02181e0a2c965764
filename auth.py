"""
Request identity.

Sessions are issued upstream (OAuth / credentials login); the gateway in front
of this service forwards the authenticated user as `X-User-Id` and
`X-User-Role`. The core trusts that pair as given.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from errors import Forbidden, Unauthorized

ADMIN = "admin"
USER = "user"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = USER

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def get_identity(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Identity:
    if not x_user_id:
        raise Unauthorized("Unauthorized - Please log in")
    return Identity(user_id=x_user_id, role=(x_user_role or USER).lower())


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Forbidden - Admin access required")
    return identity
