"""
authz.acls
~~~~~~~~~~
Role-based access to a single checklist.

A caller's role comes from authorship (always OWNER) or from their
``ChecklistShare`` row.  Public checklists are readable by anyone, without
granting any role.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional

from .store import Checklist


class Role(str, Enum):
    OWNER = "OWNER"
    EDITOR = "EDITOR"
    VIEWER = "VIEWER"

    @classmethod
    def parse(cls, value) -> Optional["Role"]:
        try:
            return cls(value)
        except ValueError:
            return None


class Permission(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SUBSCRIBE = "subscribe"
    SHARE = "share"


P = Permission

ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.OWNER: frozenset({P.READ, P.CREATE, P.UPDATE, P.DELETE, P.SUBSCRIBE, P.SHARE}),
    Role.EDITOR: frozenset({P.READ, P.CREATE, P.UPDATE, P.SUBSCRIBE}),
    Role.VIEWER: frozenset({P.READ, P.SUBSCRIBE}),
}

PUBLIC_PERMISSIONS: FrozenSet[Permission] = frozenset({P.READ, P.SUBSCRIBE})


@dataclass(frozen=True, slots=True)
class Access:
    authorized: bool
    reason: str
    role: Optional[Role] = None


class AccessResolver:
    def __init__(
        self,
        store,
        enforce_expiry: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.enforce_expiry = enforce_expiry
        self.clock = clock

    def check(self, checklist_id: str, user_id: str, permission: Permission | str) -> Access:
        permission = Permission(permission)
        checklist = self.store.get_checklist(checklist_id)
        if checklist is None:
            return Access(False, "not_found")

        if checklist.is_public and permission in PUBLIC_PERMISSIONS:
            return Access(True, "public_checklist")

        role, reason = self._role(checklist, user_id)
        if role is None:
            return Access(False, reason)

        # explicit gate, independent of the table below
        if permission is P.SHARE and role is not Role.OWNER:
            return Access(False, "share_requires_owner", role)

        if permission not in ROLE_PERMISSIONS[role]:
            return Access(False, "permission_denied", role)

        return Access(True, "authorized", role)

    def is_author(self, checklist_id: str, user_id: str) -> bool:
        checklist = self.store.get_checklist(checklist_id)
        return checklist is not None and checklist.author == user_id

    def _role(self, checklist: Checklist, user_id: str) -> tuple[Optional[Role], str]:
        if checklist.author == user_id:
            return Role.OWNER, ""

        share = self.store.get_share(checklist.id, user_id)
        if share is None or share.is_pending:
            return None, "no_role"
        if self.enforce_expiry and share.is_expired(self.clock() if self.clock else None):
            return None, "share_expired"

        role = Role.parse(share.role)
        if role is None:
            return None, "no_role"
        return role, ""
