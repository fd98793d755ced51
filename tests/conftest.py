"""In-memory stand-ins for DynamoDB and the entity store."""

import base64
import json

import pytest
from botocore.exceptions import ClientError

from authz import tables
from authz.config import Config
from authz.store import Checklist, Item, Section, Share


def make_token(claims, scheme="Token: "):
    def seg(obj):
        raw = json.dumps(obj).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    return f"{scheme}{seg({'alg': 'RS256', 'kid': 'k1'})}.{seg(claims)}.sig"


def make_config(**overrides):
    values = dict(
        region=None,
        branch="sandbox",
        table_family="Checklist",
        log_path="",
        log_format="json",
        log_level="INFO",
        enforce_share_expiry=True,
        strict_subscriptions=False,
        ttl_override=None,
    )
    values.update(overrides)
    return Config(**values)


class FakeStore:
    def __init__(self):
        self.checklists = {}
        self.sections = {}
        self.items = {}
        self.shares = {}
        self.calls = []

    def add_checklist(self, id, author, is_public=False):
        self.checklists[id] = Checklist(id=id, author=author, is_public=is_public)

    def add_section(self, id, checklist_id):
        self.sections[id] = Section(id=id, checklist_id=checklist_id)

    def add_item(self, id, section_id):
        self.items[id] = Item(id=id, section_id=section_id)

    def add_share(self, checklist_id, user_id, role, **extra):
        self.shares[(checklist_id, user_id)] = Share(checklist_id, user_id, role, **extra)

    def get_checklist(self, checklist_id):
        self.calls.append(("checklist", checklist_id))
        return self.checklists.get(checklist_id)

    def get_section(self, section_id):
        self.calls.append(("section", section_id))
        return self.sections.get(section_id)

    def get_item(self, item_id):
        self.calls.append(("item", item_id))
        return self.items.get(item_id)

    def get_share(self, checklist_id, user_id):
        self.calls.append(("share", checklist_id, user_id))
        return self.shares.get((checklist_id, user_id))


class _Paginator:
    def __init__(self, client):
        self.client = client

    def paginate(self):
        self.client.list_calls += 1
        names = sorted(self.client.tables)
        for start in range(0, len(names), self.client.page_size):
            yield {"TableNames": names[start:start + self.client.page_size]}


class FakeDynamoClient:
    """Just enough of the low-level client for table discovery."""

    def __init__(self, page_size=100):
        self.tables = {}
        self.page_size = page_size
        self.list_calls = 0
        self.broken_tags = set()

    def add_table(self, name, deployment_type=None, branch=None):
        tags = []
        if deployment_type:
            tags.append({"Key": "amplify:deployment-type", "Value": deployment_type})
        if branch:
            tags.append({"Key": "amplify:branch-name", "Value": branch})
        arn = f"arn:aws:dynamodb:us-east-1:123456789012:table/{name}"
        self.tables[name] = {"arn": arn, "tags": tags}

    def add_family(self, suffix, deployment_type, branch=None, family="Checklist"):
        for kind in ("", "Share", "Section", "Item"):
            self.add_table(f"{family}{kind}-{suffix}", deployment_type, branch)

    def get_paginator(self, name):
        assert name == "list_tables"
        return _Paginator(self)

    def describe_table(self, TableName):
        if TableName not in self.tables:
            raise ClientError(
                {"Error": {"Code": "ResourceNotFoundException", "Message": "gone"}},
                "DescribeTable",
            )
        return {"Table": {"TableName": TableName, "TableArn": self.tables[TableName]["arn"]}}

    def list_tags_of_resource(self, ResourceArn):
        name = ResourceArn.rsplit("/", 1)[1]
        if name in self.broken_tags:
            raise ClientError(
                {"Error": {"Code": "AccessDeniedException", "Message": "no"}},
                "ListTagsOfResource",
            )
        return {"Tags": self.tables[name]["tags"]}


class FakeTable:
    def __init__(self, key_names):
        self.key_names = key_names
        self.items = []
        self.page_size = 100

    def put(self, **item):
        self.items.append(item)

    def get_item(self, Key):
        for item in self.items:
            if all(item.get(k) == v for k, v in Key.items()):
                return {"Item": dict(item)}
        return {}

    def query(self, KeyConditionExpression, ExclusiveStartKey=None):
        key, value = KeyConditionExpression.get_expression()["values"]
        matches = [i for i in self.items if i.get(key.name) == value]
        start = ExclusiveStartKey["offset"] if ExclusiveStartKey else 0
        page = {"Items": matches[start:start + self.page_size]}
        if start + self.page_size < len(matches):
            page["LastEvaluatedKey"] = {"offset": start + self.page_size}
        return page


class FakeResource:
    def __init__(self):
        self.tables = {}

    def add(self, name, *key_names):
        self.tables[name] = FakeTable(key_names)
        return self.tables[name]

    def Table(self, name):
        return self.tables[name]


@pytest.fixture(autouse=True)
def _fresh_table_cache():
    tables.clear_cache()
    yield
    tables.clear_cache()
