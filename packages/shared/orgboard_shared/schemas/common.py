from enum import Enum
from typing import Optional

from pydantic import BaseModel


class OrgRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"
    OWNER = "owner"


# Ordered list, most junior first
ORG_ROLE_ORDER: list["OrgRole"] = [
    OrgRole.MEMBER,
    OrgRole.ADMIN,
    OrgRole.OWNER,
]


def role_rank(role: "OrgRole | str") -> int:
    """Position of a role in the hierarchy. Raises ValueError for unknown roles."""
    return ORG_ROLE_ORDER.index(OrgRole(role))


def role_satisfies(role: "OrgRole | str", required: "OrgRole | str") -> bool:
    """True when `role` is equal to or senior to `required`."""
    return role_rank(role) >= role_rank(required)


class ErrorKind(str, Enum):
    AUTHENTICATION_REQUIRED = "authentication_required"
    PERMISSION_DENIED = "permission_denied"
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    UNKNOWN = "unknown"


class ErrorBody(BaseModel):
    code: ErrorKind
    message: str
    status: int


class ErrorResponse(BaseModel):
    error: ErrorBody


class MessageResponse(BaseModel):
    message: str
    detail: Optional[str] = None
