"""
authz.policy
~~~~~~~~~~~~
Which check each GraphQL root field needs.

Plain CRUD fields are described by an :class:`EntityRule` (which entity the
id names, where the id sits in the variables, which permission is needed)
and share a single resolve-then-decide path::

    item id    -> Item.sectionId     -> Section.checklistId -> check
    section id -> Section.checklistId                       -> check
    checklist id                                            -> check

Listing, sharing and subscription fields have their own handlers.  Anything
not in the table is denied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Optional, Tuple

from .acls import AccessResolver, Permission, Role

log = logging.getLogger(__name__)

P = Permission

SUBSCRIPTION_PREFIXES = ("onCreate", "onUpdate", "onDelete")
LIST_SHARES_PREFIX = "listChecklistShare"


@dataclass(frozen=True, slots=True)
class Verdict:
    authorized: bool
    reason: str
    role: Optional[Role] = None
    checklist_id: Optional[str] = None
    section_id: Optional[str] = None
    item_id: Optional[str] = None

    def ids(self) -> Dict[str, str]:
        """Resolved entity ids, keyed the way the audit log names them."""
        pairs = (("checklistId", self.checklist_id), ("sectionId", self.section_id),
                 ("itemId", self.item_id))
        return {k: v for k, v in pairs if v}


def allow(reason: str, **ids: Any) -> Verdict:
    return Verdict(True, reason, **ids)


def deny(reason: str, **ids: Any) -> Verdict:
    return Verdict(False, reason, **ids)


class Entity(str, Enum):
    CHECKLIST = "checklist"
    SECTION = "section"
    ITEM = "item"


MISSING_ID = {
    Entity.CHECKLIST: "missing_checklist_id",
    Entity.SECTION: "missing_section_id",
    Entity.ITEM: "missing_item_id",
}


@dataclass(frozen=True, slots=True)
class EntityRule:
    entity: Entity
    permission: Permission
    path: Tuple[str, ...]


ENTITY_RULES: Dict[str, EntityRule] = {
    "getChecklist": EntityRule(Entity.CHECKLIST, P.READ, ("id",)),
    "updateChecklist": EntityRule(Entity.CHECKLIST, P.UPDATE, ("input", "id")),
    "deleteChecklist": EntityRule(Entity.CHECKLIST, P.DELETE, ("input", "id")),
    "listChecklistSections": EntityRule(Entity.CHECKLIST, P.READ, ("filter", "checklistId", "eq")),
    "createChecklistSection": EntityRule(Entity.CHECKLIST, P.CREATE, ("input", "checklistId")),
    "updateChecklistSection": EntityRule(Entity.SECTION, P.UPDATE, ("input", "id")),
    "deleteChecklistSection": EntityRule(Entity.SECTION, P.DELETE, ("input", "id")),
    "listChecklistItems": EntityRule(Entity.SECTION, P.READ, ("filter", "sectionId", "eq")),
    "createChecklistItem": EntityRule(Entity.SECTION, P.CREATE, ("input", "sectionId")),
    "updateChecklistItem": EntityRule(Entity.ITEM, P.UPDATE, ("input", "id")),
    "deleteChecklistItem": EntityRule(Entity.ITEM, P.DELETE, ("input", "id")),
}


def dig(data: Any, path: Tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value)
    return text or None


Rule = Callable[[Dict[str, Any], str], Verdict]


class PolicyTable:
    def __init__(self, resolver: AccessResolver, store, strict_subscriptions: bool = False):
        self.resolver = resolver
        self.store = store
        self.strict_subscriptions = strict_subscriptions
        self.rules: Dict[str, Rule] = {
            name: partial(self._entity_rule, rule) for name, rule in ENTITY_RULES.items()
        }
        self.rules.update(
            {
                "listChecklists": self._list_checklists,
                "createChecklist": lambda args, caller: allow("create_checklist"),
                "getChecklistShare": self._get_share,
                "createChecklistShare": self._create_share,
                "updateChecklistShare": self._manage_share,
                "deleteChecklistShare": self._manage_share,
            }
        )

    # ------------------------------------------------------------------ #
    # public
    # ------------------------------------------------------------------ #

    def authorize(self, operation: Optional[str], arguments: Dict[str, Any] | None, caller: str) -> Verdict:
        args = arguments if isinstance(arguments, dict) else {}
        if not operation:
            # websocket handshake, no field chosen yet
            return allow("subscription_connection")
        if operation.startswith(SUBSCRIPTION_PREFIXES):
            return self._subscription(operation, args, caller)

        rule = self.rules.get(operation)
        if rule is None and operation.startswith(LIST_SHARES_PREFIX):
            rule = self._list_shares
        if rule is None:
            return deny("unknown_operation")
        return rule(args, caller)

    def decide(self, entity: Entity, target: str, permission: Permission, caller: str) -> Verdict:
        """Walk up to the owning checklist, then check *permission* on it."""
        ids: Dict[str, str] = {}

        if entity is Entity.ITEM:
            ids["item_id"] = target
            item = self.store.get_item(target)
            if item is None:
                return deny("item_not_found", **ids)
            target, entity = item.section_id, Entity.SECTION

        if entity is Entity.SECTION:
            ids["section_id"] = target
            section = self.store.get_section(target)
            if section is None:
                return deny("section_not_found", **ids)
            target = section.checklist_id

        access = self.resolver.check(target, caller, permission)
        return Verdict(access.authorized, access.reason, access.role, checklist_id=target, **ids)

    # ------------------------------------------------------------------ #
    # checklists, sections, items
    # ------------------------------------------------------------------ #

    def _entity_rule(self, rule: EntityRule, args: Dict[str, Any], caller: str) -> Verdict:
        target = _id(dig(args, rule.path))
        if target is None:
            return deny(MISSING_ID[rule.entity])
        return self.decide(rule.entity, target, rule.permission, caller)

    def _list_checklists(self, args: Dict[str, Any], caller: str) -> Verdict:
        if dig(args, ("filter", "author", "eq")) == caller:
            return allow("scoped_list")
        if dig(args, ("filter", "isPublic", "eq")) is True:
            return allow("scoped_list")
        return deny("unscoped_list")

    # ------------------------------------------------------------------ #
    # shares
    # ------------------------------------------------------------------ #

    def _list_shares(self, args: Dict[str, Any], caller: str) -> Verdict:
        if args.get("userId") == caller or dig(args, ("filter", "userId", "eq")) == caller:
            return allow("share_list_own")
        # knowing the token is what the invite link grants
        if _id(dig(args, ("filter", "shareToken", "eq"))):
            return allow("share_list_own")

        checklist_id = _id(dig(args, ("filter", "checklistId", "eq"))) or _id(args.get("checklistId"))
        if checklist_id and self.resolver.is_author(checklist_id, caller):
            return allow("owner_listing_shares", checklist_id=checklist_id)
        return deny("invalid_share_list", checklist_id=checklist_id)

    def _get_share(self, args: Dict[str, Any], caller: str) -> Verdict:
        if args.get("userId") == caller:
            return allow("get_own_share", checklist_id=_id(args.get("checklistId")))
        return deny("cannot_get_other_share", checklist_id=_id(args.get("checklistId")))

    def _create_share(self, args: Dict[str, Any], caller: str) -> Verdict:
        data = args.get("input") or {}
        checklist_id = _id(data.get("checklistId"))

        # accepting an invite; OWNER is never self-service
        if data.get("userId") == caller and Role.parse(data.get("role")) is not Role.OWNER:
            return allow("create_own_share", checklist_id=checklist_id)

        if checklist_id is None:
            return deny("missing_checklist_id")
        if self.resolver.is_author(checklist_id, caller):
            return allow("author_creating_share", checklist_id=checklist_id)
        return deny("not_authorized_to_create_share", checklist_id=checklist_id)

    def _manage_share(self, args: Dict[str, Any], caller: str) -> Verdict:
        checklist_id = _id(args.get("checklistId")) or _id(dig(args, ("input", "checklistId")))
        if checklist_id is None:
            return deny("missing_checklist_id")
        if self.resolver.is_author(checklist_id, caller):
            return allow("author_managing_share", checklist_id=checklist_id)
        return deny("not_authorized_to_manage_share", checklist_id=checklist_id)

    # ------------------------------------------------------------------ #
    # subscriptions
    # ------------------------------------------------------------------ #

    def _subscription(self, operation: str, args: Dict[str, Any], caller: str) -> Verdict:
        if not self.strict_subscriptions:
            return allow("subscription")

        scoped = (
            (Entity.CHECKLIST, ("filter", "checklistId", "eq")),
            (Entity.SECTION, ("filter", "sectionId", "eq")),
        )
        if operation.endswith("Checklist"):
            scoped = ((Entity.CHECKLIST, ("filter", "id", "eq")),) + scoped

        for entity, path in scoped:
            target = _id(dig(args, path))
            if target is not None:
                return self.decide(entity, target, P.SUBSCRIBE, caller)

        if dig(args, ("filter", "author", "eq")) == caller:
            return allow("scoped_subscription")
        log.debug("unscoped subscription %s", operation)
        return deny("unscoped_subscription")
