"""DynamoDB session backend for production deployments."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import aioboto3
from boto3.dynamodb.conditions import Attr

logger = logging.getLogger(__name__)


class DynamoDBSessionBackend:
    """Session backend using AWS DynamoDB.

    Table schema:
        Partition key: session_id (S)
        Attributes: data (S, JSON-encoded), updated_at (N), ttl (N)

    Enable TTL on the `ttl` attribute for automatic cleanup. DynamoDB may
    take hours to reap expired items, so ``gc`` also deletes them eagerly.
    Session values must be JSON-serializable.
    """

    def __init__(
        self,
        table_name: str = "sessions",
        max_age: int = 1440,
        endpoint_url: str = "",
        region_name: str = "us-west-2",
    ) -> None:
        self._table_name = table_name
        self._max_age = max_age
        self._session = aioboto3.Session()
        self._endpoint_url = endpoint_url or None
        self._region_name = region_name

    def _resource(self):
        return self._session.resource(
            "dynamodb",
            endpoint_url=self._endpoint_url,
            region_name=self._region_name,
        )

    async def load(self, session_id: str) -> dict[str, Any] | None:
        async with self._resource() as dynamodb:
            table = await dynamodb.Table(self._table_name)
            response = await table.get_item(Key={"session_id": session_id})

        item = response.get("Item")
        if item is None:
            return None

        updated_at = float(item.get("updated_at", 0))
        if time.time() - updated_at > self._max_age:
            await self.delete(session_id)
            return None

        return json.loads(item["data"])

    async def save(self, session_id: str, data: dict[str, Any]) -> None:
        now = time.time()
        async with self._resource() as dynamodb:
            table = await dynamodb.Table(self._table_name)
            await table.put_item(
                Item={
                    "session_id": session_id,
                    "data": json.dumps(data),
                    "updated_at": int(now),
                    "ttl": int(now + self._max_age),
                }
            )

    async def delete(self, session_id: str) -> None:
        async with self._resource() as dynamodb:
            table = await dynamodb.Table(self._table_name)
            await table.delete_item(Key={"session_id": session_id})

    async def gc(self, max_lifetime: int) -> int:
        cutoff = int(time.time() - max_lifetime)
        removed = 0
        async with self._resource() as dynamodb:
            table = await dynamodb.Table(self._table_name)
            scan_kwargs: dict[str, Any] = {
                "FilterExpression": Attr("updated_at").lt(cutoff),
                "ProjectionExpression": "session_id",
            }
            while True:
                response = await table.scan(**scan_kwargs)
                for item in response.get("Items", []):
                    await table.delete_item(Key={"session_id": item["session_id"]})
                    removed += 1
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        logger.debug("DynamoDB gc removed %d sessions from %s", removed, self._table_name)
        return removed
