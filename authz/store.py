"""
authz.store
~~~~~~~~~~~
Typed point reads against the four checklist tables.

Records are parsed into small frozen dataclasses so the policy code never
pokes at raw DynamoDB items.  A miss is ``None``; lookup errors propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from boto3.dynamodb.conditions import Key

from .tables import Environment, ResourceSet, TableLocator

log = logging.getLogger(__name__)

PENDING_PREFIX = "pending_"


@dataclass(frozen=True, slots=True)
class Checklist:
    id: str
    author: Optional[str]
    is_public: bool = False
    title: str = ""

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Checklist":
        return cls(
            id=str(item["id"]),
            author=item.get("author"),
            is_public=item.get("isPublic") is True,
            title=item.get("title") or "",
        )


@dataclass(frozen=True, slots=True)
class Section:
    id: str
    checklist_id: str

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> Optional["Section"]:
        if not item.get("checklistId"):
            return None
        return cls(id=str(item["id"]), checklist_id=str(item["checklistId"]))


@dataclass(frozen=True, slots=True)
class Item:
    id: str
    section_id: str

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> Optional["Item"]:
        if not item.get("sectionId"):
            return None
        return cls(id=str(item["id"]), section_id=str(item["sectionId"]))


@dataclass(frozen=True, slots=True)
class Share:
    checklist_id: str
    user_id: str
    role: Optional[str]
    shared_by: Optional[str] = None
    created_at: Optional[str] = None
    share_token: Optional[str] = None
    expires_at: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Share":
        return cls(
            checklist_id=str(item["checklistId"]),
            user_id=str(item["userId"]),
            role=item.get("role"),
            shared_by=item.get("sharedBy"),
            created_at=item.get("createdAt"),
            share_token=item.get("shareToken"),
            expires_at=item.get("expiresAt"),
            email=item.get("email"),
        )

    @property
    def is_pending(self) -> bool:
        """An unclaimed link invite, not a grant."""
        return self.user_id.startswith(PENDING_PREFIX)

    def is_expired(self, now: datetime | None = None) -> bool:
        if not self.expires_at:
            return False
        expires = parse_timestamp(self.expires_at)
        if expires is None:
            # unreadable expiry fails closed
            return True
        return expires <= (now or datetime.now(tz=timezone.utc))


def parse_timestamp(value: str) -> Optional[datetime]:
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def claimed(shares: List[Share]) -> List[Share]:
    return [s for s in shares if not s.is_pending]


class DynamoStore:
    """Point reads keyed by the physical tables of the current environment."""

    def __init__(self, resource, locator: TableLocator, environment: Environment):
        self.resource = resource
        self.locator = locator
        self.environment = environment

    @property
    def tables(self) -> ResourceSet:
        return self.locator.resolve(self.environment)

    # ------------------------------------------------------------------ #
    # public
    # ------------------------------------------------------------------ #

    def get_checklist(self, checklist_id: str) -> Optional[Checklist]:
        return self._get(self.tables.checklist, {"id": checklist_id}, Checklist.from_item)

    def get_section(self, section_id: str) -> Optional[Section]:
        return self._get(self.tables.section, {"id": section_id}, Section.from_item)

    def get_item(self, item_id: str) -> Optional[Item]:
        return self._get(self.tables.item, {"id": item_id}, Item.from_item)

    def get_share(self, checklist_id: str, user_id: str) -> Optional[Share]:
        return self._get(
            self.tables.share,
            {"checklistId": checklist_id, "userId": user_id},
            Share.from_item,
        )

    def list_shares(self, checklist_id: str) -> List[Share]:
        """Who has access: claimed shares only, pending invites dropped."""
        table = self.resource.Table(self.tables.share)
        kwargs: Dict[str, Any] = {
            "KeyConditionExpression": Key("checklistId").eq(checklist_id)
        }
        shares: List[Share] = []
        while True:
            page = table.query(**kwargs)
            shares.extend(Share.from_item(i) for i in page.get("Items", []))
            if "LastEvaluatedKey" not in page:
                break
            kwargs["ExclusiveStartKey"] = page["LastEvaluatedKey"]
        return claimed(shares)

    # ------------------------------------------------------------------ #
    # private
    # ------------------------------------------------------------------ #

    def _get(self, table_name: str, key: Dict[str, str], parse: Callable):
        item = self.resource.Table(table_name).get_item(Key=key).get("Item")
        if not item:
            log.debug("miss %s %s", table_name, key)
            return None
        return parse(item)
