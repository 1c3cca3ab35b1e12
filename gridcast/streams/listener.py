"""GridCast — Change Stream Listener.

Watches every registered table's change stream and feeds inserts and
modifications through the classifier into the broadcast hub.

One asyncio task polls each shard. Streams and shards are discovered once,
at start; shards that appear later are not picked up until restart. A
shard's loop stops on its first poll error without affecting the others.
"""

import asyncio
from typing import Dict, List, Optional

from gridcast.config import settings
from gridcast.core.tables import TableRegistry
from gridcast.models.updates import ChangeEvent
from gridcast.realtime.hub import BroadcastHub
from gridcast.streams.classifier import classify
from gridcast.streams.feed import LATEST, ChangeFeed
from gridcast.core.logging import get_logger

logger = get_logger("streams.listener")


class ChangeStreamListener:
    """Starts and owns the per-shard poll loops."""

    def __init__(
        self,
        feed: ChangeFeed,
        registry: TableRegistry,
        hub: BroadcastHub,
        poll_interval: Optional[float] = None,
        poll_limit: Optional[int] = None,
    ):
        self.feed = feed
        self.registry = registry
        self.hub = hub
        self.poll_interval = (
            settings.stream_poll_interval if poll_interval is None else poll_interval
        )
        self.poll_limit = poll_limit or settings.stream_poll_limit
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def active_shards(self) -> List[str]:
        """Keys (``table/shard``) of poll loops still running."""
        return [key for key, task in self._tasks.items() if not task.done()]

    async def start(self) -> int:
        """Discover streams and shards and start polling.

        Returns:
            Number of shard loops started.
        """
        started = 0
        for table in self.registry:
            try:
                started += await self._watch_table(table)
            except Exception as e:
                logger.error(
                    f"Error setting up stream listener for {table}: {e}",
                    extra={"table": table},
                )
        logger.info(f"Change stream listener started with {started} shard loop(s)")
        return started

    async def _watch_table(self, table: str) -> int:
        stream = await self.feed.describe_stream_for_table(table)
        if not stream:
            logger.error(f"Stream is not enabled for table {table}", extra={"table": table})
            return 0

        shards = await self.feed.list_shards(stream)
        if not shards:
            logger.warning(f"No shards available in the stream for table {table}", extra={"table": table})
            return 0

        logger.info(f"Listening to {len(shards)} shard(s) of {table}", extra={"table": table})
        started = 0
        for shard in shards:
            cursor = await self.feed.open_cursor(stream, shard, LATEST)
            if not cursor:
                logger.warning(
                    f"No cursor for shard {shard}", extra={"table": table, "shard_id": shard}
                )
                continue
            key = f"{table}/{shard}"
            self._tasks[key] = asyncio.create_task(
                self.poll_shard(table, shard, cursor), name=f"poll:{key}"
            )
            started += 1
        return started

    async def poll_shard(self, table: str, shard: str, cursor: Optional[str]) -> None:
        """Poll one shard until the feed closes it or a poll fails."""
        log_extra = {"table": table, "shard_id": shard}
        while cursor:
            try:
                result = await self.feed.poll(cursor, self.poll_limit)
            except Exception as e:
                logger.error(f"Error polling stream for {table}: {e}", extra=log_extra)
                break

            for event in result.events:
                self._dispatch(table, event)

            cursor = result.next_cursor
            await asyncio.sleep(self.poll_interval)

        logger.info(f"Stopped polling shard {shard}", extra=log_extra)

    def _dispatch(self, table: str, event: ChangeEvent) -> None:
        if not event.is_upsert:
            return
        if event.source_table != table:
            event = event.model_copy(update={"source_table": table})
        update = classify(self.registry, event)
        logger.debug(
            f"Change from {table} for {update.routing_key or '<no key>'}",
            extra={"table": table, "update_type": update.update_kind.value},
        )
        self.hub.publish(update)

    async def stop(self) -> None:
        """Cancel all poll loops (application shutdown)."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Change stream listener stopped")
