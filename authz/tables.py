"""
authz.tables
~~~~~~~~~~~~
Physical DynamoDB table names for the current deployment.

Every Amplify deployment of the schema creates its own
``Checklist-<apiId>-<env>`` family of tables in the same account, so the
names are found by listing tables and reading their Amplify tags::

    amplify:deployment-type   sandbox | branch
    amplify:branch-name       main, dev, ...

The result is cached for the life of the process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

log = logging.getLogger(__name__)

SANDBOX = "sandbox"
TAG_DEPLOYMENT_TYPE = "amplify:deployment-type"
TAG_BRANCH_NAME = "amplify:branch-name"


class ResourceResolutionError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class ResourceSet:
    checklist: str
    share: str
    section: str
    item: str


@dataclass(frozen=True, slots=True)
class Environment:
    branch: str = SANDBOX

    @property
    def is_sandbox(self) -> bool:
        return self.branch == SANDBOX

    def matches(self, tags: Dict[str, str]) -> bool:
        deployment_type = tags.get(TAG_DEPLOYMENT_TYPE)
        if self.is_sandbox:
            return deployment_type == SANDBOX
        return deployment_type == "branch" and tags.get(TAG_BRANCH_NAME) == self.branch


# (family, branch) -> ResourceSet.  Filled by recomputation on a miss; two
# cold requests racing just compute the same value twice.
_RESOLVED: Dict[Tuple[str, str], ResourceSet] = {}


def clear_cache() -> None:
    _RESOLVED.clear()


class TableLocator:
    def __init__(self, client, family: str = "Checklist"):
        self.client = client
        self.family = family
        self._kinds: List[Tuple[str, str]] = [
            (f"{family}Share-", "share"),
            (f"{family}Section-", "section"),
            (f"{family}Item-", "item"),
            (f"{family}-", "checklist"),
        ]

    # ------------------------------------------------------------------ #
    # public
    # ------------------------------------------------------------------ #

    def resolve(self, env: Environment) -> ResourceSet:
        key = (self.family, env.branch)
        cached = _RESOLVED.get(key)
        if cached is not None:
            return cached
        resolved = self._discover(env)
        _RESOLVED[key] = resolved
        return resolved

    def classify(self, table_name: str) -> Optional[str]:
        for prefix, kind in self._kinds:
            if table_name.startswith(prefix):
                return kind
        return None

    # ------------------------------------------------------------------ #
    # private
    # ------------------------------------------------------------------ #

    def _discover(self, env: Environment) -> ResourceSet:
        found: Dict[str, str] = {}
        names = self._table_names()

        for name in names:
            kind = self.classify(name)
            if kind is None or kind in found:
                continue
            arn = self._table_arn(name)
            if arn is None:
                continue
            if not env.matches(self._tags(arn)):
                continue
            found[kind] = name
            if len(found) == len(self._kinds):
                break

        missing = [kind for _, kind in self._kinds if kind not in found]
        if missing:
            log.error(
                "table discovery failed family=%s branch=%s sandbox=%s found=%s missing=%s candidates=%d",
                self.family, env.branch, env.is_sandbox, found, missing, len(names),
            )
            raise ResourceResolutionError(
                f"{self.family} tables not found for branch {env.branch!r}: missing {', '.join(missing)}"
            )

        resolved = ResourceSet(**found)
        log.info("table discovery ok branch=%s tables=%s", env.branch, resolved)
        return resolved

    def _table_names(self) -> List[str]:
        names: List[str] = []
        paginator = self.client.get_paginator("list_tables")
        for page in paginator.paginate():
            names.extend(n for n in page.get("TableNames", []) if n.startswith(self.family))
        return names

    def _table_arn(self, name: str) -> Optional[str]:
        try:
            desc = self.client.describe_table(TableName=name)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                log.debug("table vanished during discovery: %s", name)
                return None
            raise
        return desc.get("Table", {}).get("TableArn")

    def _tags(self, arn: str) -> Dict[str, str]:
        """Best effort: tags are metadata, so a failed fetch means no tags."""
        tags: Dict[str, str] = {}
        kwargs = {"ResourceArn": arn}
        try:
            while True:
                page = self.client.list_tags_of_resource(**kwargs)
                tags.update({t["Key"]: t.get("Value", "") for t in page.get("Tags", [])})
                if not page.get("NextToken"):
                    break
                kwargs["NextToken"] = page["NextToken"]
        except ClientError as e:
            log.warning("tag lookup failed for %s: %s", arn, e)
            return {}
        return tags
