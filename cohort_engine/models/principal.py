from __future__ import annotations

from dataclasses import dataclass

STUDENT = "student"
INSTRUCTOR = "instructor"
ADMIN = "admin"

STAFF_ROLES = frozenset({INSTRUCTOR, ADMIN})


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Carried through the request via FastAPI's dependency system.
    Token issuance lives outside this service; we only verify.

        user_id: subject from JWT
        roles: platform roles (student, instructor, admin)
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str] | frozenset[str]) -> bool:
        return bool(self.roles & roles)

    @property
    def is_student(self) -> bool:
        return STUDENT in self.roles

    @property
    def is_staff(self) -> bool:
        return self.has_any_role(STAFF_ROLES)
