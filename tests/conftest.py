from __future__ import annotations

import os

# boto3.resource() is created at import time in the handlers and needs a region.
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-3")

import pytest  # noqa: E402


class FakeTable:
    """In-memory stand-in for a boto3 DynamoDB Table, keyed like the real one."""

    name = "broker-live-state-test"

    def __init__(self, error: Exception | None = None, table_status: str = "ACTIVE"):
        self.items: dict[tuple[str, str], dict] = {}
        self.error = error
        self.table_status = table_status
        self.put_calls = 0

    def put_item(self, Item):  # noqa: N803
        self.put_calls += 1
        if self.error is not None:
            raise self.error
        self.items[(Item["user_id"], Item["broker_account"])] = Item
        return {}


@pytest.fixture
def fake_table_cls():
    return FakeTable
