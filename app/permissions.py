"""
Family roles, capability predicates and the resolved caller context that
every service function receives.
"""
from dataclasses import dataclass
from enum import Enum


class FamilyRole(str, Enum):
    ADMIN_PARENT = "ADMIN_PARENT"
    PARENT = "PARENT"
    CHILD = "CHILD"


REVIEWER_ROLES = frozenset({FamilyRole.ADMIN_PARENT, FamilyRole.PARENT})


def can_review(role: FamilyRole) -> bool:
    """Parents create, verify, decline and delete tasks and manage points."""
    return role in REVIEWER_ROLES


def can_manage_family(role: FamilyRole) -> bool:
    """Only the admin parent may regenerate the family code or remove other admins."""
    return role == FamilyRole.ADMIN_PARENT


@dataclass(frozen=True)
class AuthContext:
    """The authenticated caller, resolved once per request."""
    user_id: int
    family_id: int
    role: FamilyRole
    name: str = ""

    @property
    def is_parent(self) -> bool:
        return can_review(self.role)
