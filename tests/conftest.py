"""Shared test fixtures for gridcast."""

from __future__ import annotations

import asyncio
import copy
import re
from typing import Any

import pytest

from gridcast.config import settings
from gridcast.core.tables import TableRegistry
from gridcast.models.updates import ChangeEvent
from gridcast.streams.feed import ChangeFeed, PollResult

# The app lifespan must never reach for real DynamoDB Streams in tests.
settings.streams_enabled = False


# ---------------------------------------------------------------------------
# In-memory DynamoDB
# ---------------------------------------------------------------------------

_ASSIGNMENT = re.compile(
    r"(#\w+)\s*=\s*(?:if_not_exists\(\s*(#\w+)\s*,\s*(:\w+)\s*\)|(:\w+))"
)


class FakeTable:
    """Just enough of a boto3 ``Table`` for the record stores."""

    def __init__(self, name: str, key_name: str) -> None:
        self.name = name
        self.key_name = key_name
        self.items: dict[str, dict[str, Any]] = {}
        self.scan_page_size: int | None = None

    def get_item(self, Key: dict[str, str]) -> dict[str, Any]:
        item = self.items.get(Key[self.key_name])
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def put_item(self, Item: dict[str, Any]) -> dict[str, Any]:
        self.items[Item[self.key_name]] = copy.deepcopy(Item)
        return {}

    def delete_item(self, Key: dict[str, str]) -> dict[str, Any]:
        self.items.pop(Key[self.key_name], None)
        return {}

    def update_item(
        self,
        Key: dict[str, str],
        UpdateExpression: str,
        ExpressionAttributeNames: dict[str, str],
        ExpressionAttributeValues: dict[str, Any],
        ReturnValues: str = "NONE",
    ) -> dict[str, Any]:
        key = Key[self.key_name]
        item = self.items.setdefault(key, {self.key_name: key})
        for target, guard_name, guard_value, value in _ASSIGNMENT.findall(
            UpdateExpression
        ):
            attribute = ExpressionAttributeNames[target]
            if guard_name:
                if ExpressionAttributeNames[guard_name] not in item:
                    item[attribute] = copy.deepcopy(ExpressionAttributeValues[guard_value])
            else:
                item[attribute] = copy.deepcopy(ExpressionAttributeValues[value])
        return {"Attributes": copy.deepcopy(item)}

    def scan(self, **kwargs: Any) -> dict[str, Any]:
        keys = sorted(self.items)
        start = 0
        if "ExclusiveStartKey" in kwargs:
            start = keys.index(kwargs["ExclusiveStartKey"][self.key_name]) + 1
        end = len(keys) if self.scan_page_size is None else start + self.scan_page_size
        page = keys[start:end]
        response: dict[str, Any] = {"Items": [copy.deepcopy(self.items[k]) for k in page]}
        if end < len(keys):
            response["LastEvaluatedKey"] = {self.key_name: page[-1]}
        return response


class FakeDynamoResource:
    """Just enough of a boto3 DynamoDB service resource."""

    def __init__(self, **key_names: str) -> None:
        self.key_names = key_names
        self.tables: dict[str, FakeTable] = {}
        self.batch_calls = 0

    def Table(self, name: str) -> FakeTable:  # noqa: N802 - boto3 naming
        if name not in self.tables:
            self.tables[name] = FakeTable(name, self.key_names.get(name, "id"))
        return self.tables[name]

    def batch_get_item(self, RequestItems: dict[str, Any]) -> dict[str, Any]:
        self.batch_calls += 1
        responses: dict[str, list[dict[str, Any]]] = {}
        for name, request in RequestItems.items():
            table = self.Table(name)
            found = []
            for key in request["Keys"]:
                item = table.items.get(key[table.key_name])
                if item is not None:
                    found.append(copy.deepcopy(item))
            responses[name] = found
        return {"Responses": responses, "UnprocessedKeys": {}}


@pytest.fixture
def dynamo() -> FakeDynamoResource:
    return FakeDynamoResource(Layouts="layoutId", Ads="adId")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def make_ad(ad_id: str, ad_type: str = "Text", title: str | None = None) -> dict[str, Any]:
    return {
        "adId": ad_id,
        "type": ad_type,
        "content": {"title": title or f"Ad {ad_id}", "description": ""},
        "styles": {},
    }


def make_layout(layout_id: str = "L1", cells: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """A 2x2 layout record. ``cells`` override the default grid items."""
    if cells is None:
        cells = [
            {
                "index": 0,
                "row": 0,
                "column": 0,
                "scheduledAds": [
                    {"scheduledTime": "08:00", "adId": "A"},
                    {"scheduledTime": "14:00", "adId": "B"},
                ],
            },
            {
                "index": 1,
                "row": 0,
                "column": 1,
                "rowSpan": 2,
                "scheduledAds": [{"scheduledTime": "09:00", "adId": "C"}],
            },
            {
                "index": 2,
                "row": 1,
                "column": 0,
                "hidden": True,
                "scheduledAds": [{"scheduledTime": "00:00", "adId": "A"}],
            },
        ]
    return {"layoutId": layout_id, "rows": 2, "columns": 2, "gridItems": cells}


@pytest.fixture
def registry() -> TableRegistry:
    return TableRegistry.from_settings(settings)


# ---------------------------------------------------------------------------
# Change feed
# ---------------------------------------------------------------------------


class FakeChangeFeed(ChangeFeed):
    """Scripted feed.

    ``streams`` maps table → stream handle (or None), ``shards`` maps stream →
    shard ids, and ``batches`` maps shard → list of PollResult / Exception
    returned by successive polls. A shard whose script runs out returns no
    next cursor, which ends its loop.
    """

    def __init__(
        self,
        streams: dict[str, str | None],
        shards: dict[str, list[str]],
        batches: dict[str, list[PollResult | Exception]],
    ) -> None:
        self.streams = streams
        self.shards = shards
        self.batches = {k: list(v) for k, v in batches.items()}
        self.polls: list[str] = []

    async def describe_stream_for_table(self, table: str) -> str | None:
        value = self.streams.get(table)
        if isinstance(value, Exception):
            raise value
        return value

    async def list_shards(self, stream: str) -> list[str]:
        return list(self.shards.get(stream, []))

    async def open_cursor(self, stream: str, shard: str, position: str = "LATEST") -> str | None:
        return f"{shard}#0"

    async def poll(self, cursor: str, limit: int) -> PollResult:
        shard, _, step = cursor.partition("#")
        self.polls.append(cursor)
        script = self.batches.get(shard, [])
        if not script:
            return PollResult(events=[], next_cursor=None)
        result = script.pop(0)
        if isinstance(result, Exception):
            raise result
        return PollResult(events=result.events, next_cursor=f"{shard}#{int(step) + 1}")


def change(table: str, kind: str, image: dict[str, Any]) -> ChangeEvent:
    return ChangeEvent(source_table=table, event_kind=kind, new_image=image)


# ---------------------------------------------------------------------------
# Viewer transport
# ---------------------------------------------------------------------------


class FakeTransport:
    """Async-context-manager WebSocket stand-in.

    Yields ``messages`` then either stays open (``hold=True``) until
    ``drop()`` is called, or ends as a server-side close.
    """

    def __init__(
        self,
        messages: list[str] | None = None,
        hold: bool = True,
        fail: Exception | None = None,
    ) -> None:
        self.messages = list(messages or [])
        self.hold = hold
        self.fail = fail
        self.sent: list[str] = []
        self._dropped = asyncio.Event()

    async def __aenter__(self) -> FakeTransport:
        if self.fail is not None:
            raise self.fail
        return self

    async def __aexit__(self, *exc: object) -> bool:
        return False

    async def send(self, data: str) -> None:
        self.sent.append(data)

    def drop(self) -> None:
        self._dropped.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        if self.hold:
            await self._dropped.wait()


class FakeConnector:
    """Hands out scripted transports; once the script runs out, ``default()``."""

    def __init__(self, *transports: FakeTransport, default=None) -> None:
        self.script = list(transports)
        self.default = default or (lambda: FakeTransport(fail=ConnectionRefusedError("refused")))
        self.urls: list[str] = []
        self.handed_out: list[FakeTransport] = []

    @property
    def calls(self) -> int:
        return len(self.urls)

    def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        transport = self.script.pop(0) if self.script else self.default()
        self.handed_out.append(transport)
        return transport


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Spin the loop until ``predicate()`` is true."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
