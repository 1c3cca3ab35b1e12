"""GridCast — Change Feed.

Narrow interface to a table change-capture feed plus its DynamoDB Streams
implementation. Stream records are normalised into ``ChangeEvent`` objects
so nothing downstream sees DynamoDB's attribute-value encoding.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import BotoCoreError, ClientError

from gridcast.config import settings
from gridcast.models.updates import ChangeEvent, EventKind
from gridcast.persistence.dynamo import to_plain
from gridcast.core.logging import get_logger

logger = get_logger("streams.feed")

LATEST = "LATEST"
SHARD_PAGE_SIZE = 100  # DescribeStream maximum


class ChangeFeedError(Exception):
    """Raised when the change feed cannot be described or polled."""


@dataclass(frozen=True)
class PollResult:
    """One batch read from a shard cursor."""

    events: List[ChangeEvent] = field(default_factory=list)
    next_cursor: Optional[str] = None


class ChangeFeed(ABC):
    """Abstract change-capture feed.

    Handles are opaque strings: a stream handle per table, a shard handle
    per partition, and a cursor that advances with every poll.
    """

    @abstractmethod
    async def describe_stream_for_table(self, table: str) -> Optional[str]:
        """Return the table's current stream handle, or None if it has none."""
        ...

    @abstractmethod
    async def list_shards(self, stream: str) -> List[str]:
        ...

    @abstractmethod
    async def open_cursor(
        self, stream: str, shard: str, position: str = LATEST
    ) -> Optional[str]:
        ...

    @abstractmethod
    async def poll(self, cursor: str, limit: int) -> PollResult:
        """Fetch up to ``limit`` records and the cursor to continue from."""
        ...


_deserializer = TypeDeserializer()


def unmarshall(image: Dict[str, Any]) -> Dict[str, Any]:
    """Decode a DynamoDB ``NewImage`` into plain Python values."""
    return to_plain({k: _deserializer.deserialize(v) for k, v in image.items()})


def to_change_event(table: str, record: Dict[str, Any]) -> Optional[ChangeEvent]:
    """Normalise one stream record. Returns None for unrecognised event names."""
    try:
        kind = EventKind(record.get("eventName", ""))
    except ValueError:
        logger.warning(
            f"Skipping record with event name {record.get('eventName')!r}",
            extra={"table": table},
        )
        return None
    image = record.get("dynamodb", {}).get("NewImage") or {}
    return ChangeEvent(source_table=table, event_kind=kind, new_image=unmarshall(image))


class DynamoDBChangeFeed(ChangeFeed):
    """DynamoDB Streams backed feed.

    boto3 is blocking, so every call runs in a worker thread to keep the
    event loop free for the hub and the other shard loops.
    """

    def __init__(self, dynamodb_client=None, streams_client=None):
        kwargs = settings.aws_client_kwargs
        if settings.dynamodb_endpoint_url:
            kwargs["endpoint_url"] = settings.dynamodb_endpoint_url
        self.dynamodb = dynamodb_client or boto3.client("dynamodb", **kwargs)
        self.streams = streams_client or boto3.client("dynamodbstreams", **kwargs)

    async def _call(self, fn, **params) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(fn, **params)
        except (ClientError, BotoCoreError) as e:
            raise ChangeFeedError(str(e)) from e

    async def describe_stream_for_table(self, table: str) -> Optional[str]:
        data = await self._call(self.dynamodb.describe_table, TableName=table)
        return data.get("Table", {}).get("LatestStreamArn")

    async def list_shards(self, stream: str) -> List[str]:
        shards: List[str] = []
        params: Dict[str, Any] = {"StreamArn": stream, "Limit": SHARD_PAGE_SIZE}
        while True:
            data = await self._call(self.streams.describe_stream, **params)
            description = data.get("StreamDescription", {})
            shards.extend(s["ShardId"] for s in description.get("Shards", []))
            last = description.get("LastEvaluatedShardId")
            if not last:
                break
            params["ExclusiveStartShardId"] = last
        return shards

    async def open_cursor(
        self, stream: str, shard: str, position: str = LATEST
    ) -> Optional[str]:
        data = await self._call(
            self.streams.get_shard_iterator,
            StreamArn=stream,
            ShardId=shard,
            ShardIteratorType=position,
        )
        return data.get("ShardIterator")

    async def poll(self, cursor: str, limit: int) -> PollResult:
        data = await self._call(
            self.streams.get_records, ShardIterator=cursor, Limit=limit
        )
        table = self._table_from_records(data.get("Records", []))
        events = []
        for record in data.get("Records", []):
            event = to_change_event(table, record)
            if event is not None:
                events.append(event)
        return PollResult(events=events, next_cursor=data.get("NextShardIterator"))

    @staticmethod
    def _table_from_records(records: List[Dict[str, Any]]) -> str:
        """Table name from a record's ``eventSourceARN`` (``…:table/<name>/stream/…``)."""
        for record in records:
            arn = record.get("eventSourceARN", "")
            if ":table/" in arn:
                return arn.split(":table/", 1)[1].split("/", 1)[0]
        return ""
