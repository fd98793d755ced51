import io
import json

import pytest

from authz.core import Authorizer
from authz.logger import AuditLogger
from authz.tables import ResourceResolutionError
from conftest import FakeStore, make_config, make_token


def _event(query, variables=None, user="bob", token=None):
    return {
        "authorizationToken": token if token is not None else make_token({"cognito:username": user}),
        "requestContext": {
            "apiId": "api-1",
            "accountId": "123456789012",
            "requestId": "req-1",
            "queryString": query,
            "operationName": None,
            "variables": variables or {},
        },
    }


class BrokenStore(FakeStore):
    def __init__(self, error):
        super().__init__()
        self.error = error

    def get_checklist(self, checklist_id):
        raise self.error


class TestAuthorizer:
    def setup_method(self):
        self.stream = io.StringIO()
        self.store = FakeStore()
        self.store.add_checklist("c1", "alice")
        self.store.add_share("c1", "bob", "EDITOR")
        self.authz = Authorizer(make_config(), self.store, AuditLogger(stream=self.stream))

    def records(self):
        return [json.loads(line) for line in self.stream.getvalue().splitlines()]

    def test_allow_is_audited(self):
        query = "mutation U($input: UpdateChecklistInput!) { updateChecklist(input: $input) { id } }"
        response = self.authz.handle(_event(query, {"input": {"id": "c1", "title": "x"}}))
        assert response == {"isAuthorized": True}

        request, decision = self.records()
        assert request["stage"] == "REQUEST"
        assert request["operation"] == "updateChecklist"
        assert request["requestId"] == "req-1"
        assert decision["type"] == "AUTHZ"
        assert (decision["stage"], decision["reason"], decision["role"]) == ("ALLOW", "authorized", "EDITOR")
        assert (decision["user"], decision["checklistId"]) == ("bob", "c1")
        assert decision["ts"].endswith("Z")

    def test_deny(self):
        query = "mutation { deleteChecklist(input: {id: \"c1\"}) { id } }"
        response = self.authz.handle(_event(query, {"input": {"id": "c1"}}))
        assert response == {"isAuthorized": False}
        assert self.records()[-1]["reason"] == "permission_denied"

    def test_connection_without_field(self):
        response = self.authz.handle(_event(""))
        assert response == {"isAuthorized": True}
        (record,) = self.records()
        assert (record["stage"], record["reason"]) == ("ALLOW", "subscription_connection")

    def test_bad_token(self):
        response = self.authz.handle(_event("query { getChecklist(id: 1) { id } }", token="garbage"))
        assert response == {"isAuthorized": False}
        assert self.records()[-1]["reason"] == "invalid_token"

    def test_token_without_user(self):
        token = make_token({"email": "x@example.com"})
        response = self.authz.handle(_event("query { getChecklist { id } }", token=token))
        assert response == {"isAuthorized": False}
        assert self.records()[-1]["reason"] == "missing_user_id"

    def test_missing_token(self):
        event = _event("query { getChecklist { id } }")
        del event["authorizationToken"]
        assert self.authz.handle(event) == {"isAuthorized": False}

    def test_unknown_operation(self):
        response = self.authz.handle(_event("mutation { resetEverything { ok } }"))
        assert response == {"isAuthorized": False}
        assert self.records()[-1]["reason"] == "unknown_operation"

    def test_unexpected_error_denies(self):
        authz = Authorizer(make_config(), BrokenStore(RuntimeError("boom")), AuditLogger(stream=self.stream))
        response = authz.handle(_event("query { getChecklist(id: $id) { id } }", {"id": "c1"}))
        assert response == {"isAuthorized": False}
        stages = [(r["stage"], r.get("reason")) for r in self.records()]
        assert stages[-2:] == [("ERROR", "internal_error"), ("DENY", "internal_error")]
        assert "RuntimeError: boom" in self.records()[-2]["error"]

    def test_resolution_error_is_fatal(self):
        error = ResourceResolutionError("Checklist tables not found")
        authz = Authorizer(make_config(), BrokenStore(error), AuditLogger(stream=self.stream))
        with pytest.raises(ResourceResolutionError):
            authz.handle(_event("query { getChecklist(id: $id) { id } }", {"id": "c1"}))
        assert self.records()[-1]["stage"] == "ERROR"

    def test_ttl_override(self):
        authz = Authorizer(make_config(ttl_override=300), self.store, AuditLogger(stream=self.stream))
        assert authz.handle(_event("")) == {"isAuthorized": True, "ttlOverride": 300}

    def test_strict_subscriptions_flag(self):
        authz = Authorizer(make_config(strict_subscriptions=True), self.store, AuditLogger(stream=self.stream))
        event = _event("subscription { onCreateChecklistItem { id } }", user="stranger")
        assert authz.handle(event) == {"isAuthorized": False}
        assert self.authz.handle(event) == {"isAuthorized": True}



class TestRootSelection:
    def setup_method(self):
        self.stream = io.StringIO()
        self.store = FakeStore()
        self.store.add_checklist("mine", "mallory")
        self.store.add_checklist("victim", "alice")
        self.authz = Authorizer(make_config(), self.store, AuditLogger(stream=self.stream))

    def last(self):
        return json.loads(self.stream.getvalue().splitlines()[-1])

    def test_second_aliased_field_is_denied(self):
        query = (
            "query($id: ID!, $x: ID!) {"
            " getChecklist(id: $id) { title }"
            " b: getChecklist(id: $x) { title } }"
        )
        event = _event(query, {"id": "mine", "x": "victim"}, user="mallory")
        assert self.authz.handle(event) == {"isAuthorized": False}
        assert self.last()["reason"] == "multiple_root_fields"
        assert ("checklist", "victim") not in self.store.calls

    def test_argument_bound_to_other_variable(self):
        query = "query($id: ID!, $x: ID!) { getChecklist(id: $x) { title } }"
        event = _event(query, {"id": "mine", "x": "victim"}, user="mallory")
        assert self.authz.handle(event) == {"isAuthorized": False}
        record = self.last()
        assert (record["reason"], record["checklistId"]) == ("no_role", "victim")

    def test_renamed_variable_is_followed(self):
        query = "query($x: ID!) { getChecklist(id: $x) { title } }"
        event = _event(query, {"x": "mine"}, user="mallory")
        assert self.authz.handle(event) == {"isAuthorized": True}

    def test_unbound_variable_is_ignored(self):
        query = "query { listChecklistShares(filter: {checklistId: {eq: \"victim\"}}) { items { userId } } }"
        event = _event(query, {"userId": "mallory"}, user="mallory")
        assert self.authz.handle(event) == {"isAuthorized": False}

    def test_fragment_at_root_is_denied(self):
        query = "query { ...Everything } fragment Everything on Query { getChecklist(id: \"victim\") { id } }"
        assert self.authz.handle(_event(query, user="mallory")) == {"isAuthorized": False}
        assert self.last()["reason"] == "unsupported_query"
