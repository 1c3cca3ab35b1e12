"""GridCast — DynamoDB Resource & Record Store.

Thin key-value access to the record tables: get, batch-get, scan, put,
update and delete. Everything above this layer deals in plain dicts.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from gridcast.config import settings
from gridcast.core.logging import get_logger

logger = get_logger("persistence.dynamo")

BATCH_GET_LIMIT = 100  # DynamoDB BatchGetItem ceiling
MAX_UNPROCESSED_RETRIES = 5


class StoreError(Exception):
    """Raised when a record table operation fails."""


def create_dynamodb_resource():
    """Build the boto3 DynamoDB resource from settings."""
    kwargs = settings.aws_client_kwargs
    if settings.dynamodb_endpoint_url:
        kwargs["endpoint_url"] = settings.dynamodb_endpoint_url
        logger.info(f"DynamoDB endpoint override: {settings.dynamodb_endpoint_url}")
    return boto3.resource("dynamodb", **kwargs)


def to_plain(value: Any) -> Any:
    """Convert DynamoDB Decimals (recursively) into int/float for JSON."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, set):
        return sorted(to_plain(v) for v in value)
    return value


class RecordStore:
    """Key-value access to one table keyed by a single attribute."""

    def __init__(self, resource, table_name: str, key_name: str):
        self.resource = resource
        self.table_name = table_name
        self.key_name = key_name
        self.table = resource.Table(table_name)

    def _key(self, key: str) -> Dict[str, str]:
        return {self.key_name: key}

    def get_by_id(self, key: str) -> Optional[Dict[str, Any]]:
        """Fetch one record, or None if it does not exist."""
        try:
            result = self.table.get_item(Key=self._key(key))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"get_item failed on {self.table_name} for {key}: {e}")
            raise StoreError(f"Failed to fetch {key} from {self.table_name}") from e
        item = result.get("Item")
        return to_plain(item) if item else None

    def batch_get_by_ids(self, keys: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch many records; missing keys are simply absent from the result."""
        unique = list(dict.fromkeys(k for k in keys if k))
        if not unique:
            return []

        items: List[Dict[str, Any]] = []
        for start in range(0, len(unique), BATCH_GET_LIMIT):
            chunk = [self._key(k) for k in unique[start : start + BATCH_GET_LIMIT]]
            request = {self.table_name: {"Keys": chunk}}
            for attempt in range(MAX_UNPROCESSED_RETRIES + 1):
                try:
                    response = self.resource.batch_get_item(RequestItems=request)
                except (ClientError, BotoCoreError) as e:
                    logger.error(f"batch_get_item failed on {self.table_name}: {e}")
                    raise StoreError(
                        f"Failed to batch-fetch from {self.table_name}"
                    ) from e
                items.extend(response.get("Responses", {}).get(self.table_name, []))
                request = response.get("UnprocessedKeys") or {}
                if not request:
                    break
            else:
                logger.warning(
                    f"Gave up on unprocessed keys in {self.table_name} "
                    f"after {MAX_UNPROCESSED_RETRIES} retries"
                )
        return to_plain(items)

    def scan(self) -> List[Dict[str, Any]]:
        """Read the whole table, following pagination."""
        items: List[Dict[str, Any]] = []
        kwargs: Dict[str, Any] = {}
        while True:
            try:
                response = self.table.scan(**kwargs)
            except (ClientError, BotoCoreError) as e:
                logger.error(f"scan failed on {self.table_name}: {e}")
                raise StoreError(f"Failed to scan {self.table_name}") from e
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        logger.info(f"Scanned {len(items)} records from {self.table_name}")
        return to_plain(items)

    def put(self, record: Dict[str, Any]) -> None:
        try:
            self.table.put_item(Item=record)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"put_item failed on {self.table_name}: {e}")
            raise StoreError(f"Failed to write to {self.table_name}") from e

    def update(
        self,
        key: str,
        expression: str,
        names: Dict[str, str],
        values: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Apply an UpdateExpression and return the record as it now stands."""
        try:
            response = self.table.update_item(
                Key=self._key(key),
                UpdateExpression=expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"update_item failed on {self.table_name} for {key}: {e}")
            raise StoreError(f"Failed to update {key} in {self.table_name}") from e
        return to_plain(response.get("Attributes", {}))

    def delete(self, key: str) -> None:
        try:
            self.table.delete_item(Key=self._key(key))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"delete_item failed on {self.table_name} for {key}: {e}")
            raise StoreError(f"Failed to delete {key} from {self.table_name}") from e
