"""
authz.core
~~~~~~~~~~
AppSync Lambda authorizer: credential -> caller, query -> root field and
its bound arguments, policy -> verdict, every step audited.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config as BotoConfig

from .acls import AccessResolver
from .auth import CredentialDecodeError, decode_claims
from .config import Config
from .logger import AuditLogger
from .policy import PolicyTable, Verdict
from .query import QueryError, parse_root_field
from .store import DynamoStore
from .tables import Environment, ResourceResolutionError, TableLocator

log = logging.getLogger(__name__)

# one attempt per lookup; a failed read becomes a deny
_BOTO = BotoConfig(connect_timeout=2, read_timeout=3, retries={"total_max_attempts": 1})


def build_authorizer(cfg: Config) -> "Authorizer":
    client = boto3.client("dynamodb", region_name=cfg.region, config=_BOTO)
    resource = boto3.resource("dynamodb", region_name=cfg.region, config=_BOTO)
    locator = TableLocator(client, family=cfg.table_family)
    store = DynamoStore(resource, locator, Environment(cfg.branch))
    return Authorizer(cfg, store)


class Authorizer:
    def __init__(self, cfg: Config, store, audit: AuditLogger | None = None) -> None:
        self.cfg = cfg
        self.store = store
        self.audit = audit or AuditLogger(cfg.log_path, cfg.log_format, cfg.log_level)
        self.resolver = AccessResolver(store, enforce_expiry=cfg.enforce_share_expiry)
        self.policy = PolicyTable(
            self.resolver, store, strict_subscriptions=cfg.strict_subscriptions
        )

    def handle(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Evaluate one authorizer event and build the AppSync response."""
        ctx = event.get("requestContext") or {}
        meta = {"requestId": ctx.get("requestId"), "apiId": ctx.get("apiId")}

        try:
            caller = decode_claims(event.get("authorizationToken")).user_id
        except CredentialDecodeError as e:
            self.audit.deny(None, None, "invalid_token", detail=str(e), **meta)
            return self._response(False)
        if not caller:
            self.audit.deny(None, None, "missing_user_id", **meta)
            return self._response(False)

        try:
            field = parse_root_field(ctx.get("queryString"), ctx.get("variables"))
        except QueryError as e:
            self.audit.deny(caller, None, e.reason, detail=str(e), **meta)
            return self._response(False)

        if field is None:
            verdict = self.authorize(None, {}, caller, **meta)
        else:
            verdict = self.authorize(field.name, field.arguments, caller, **meta)
        return self._response(verdict.authorized)

    def authorize(
        self,
        operation: Optional[str],
        arguments: Dict[str, Any],
        caller: str,
        **meta: Any,
    ) -> Verdict:
        if operation:
            self.audit.request(caller, operation, variables=arguments, **meta)

        try:
            verdict = self.policy.authorize(operation, arguments, caller)
        except ResourceResolutionError as e:
            # deployment misconfiguration: fail the invocation loudly
            self.audit.error(caller, operation, e, **meta)
            raise
        except Exception as e:  # noqa: BLE001
            log.exception("authorization failed operation=%s user=%s", operation, caller)
            self.audit.error(caller, operation, e, **meta)
            verdict = Verdict(False, "internal_error")

        fields = dict(verdict.ids(), **meta)
        if verdict.role is not None:
            fields["role"] = verdict.role.value
        if verdict.authorized:
            self.audit.allow(caller, operation, verdict.reason, **fields)
        else:
            self.audit.deny(caller, operation, verdict.reason, **fields)
        return verdict

    def _response(self, authorized: bool) -> Dict[str, Any]:
        response: Dict[str, Any] = {"isAuthorized": authorized}
        if self.cfg.ttl_override is not None:
            response["ttlOverride"] = self.cfg.ttl_override
        return response
