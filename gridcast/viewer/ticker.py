"""GridCast — Render Ticker.

APScheduler interval job that re-resolves a viewer's cells so a new
scheduled slot shows up without any layout change.
"""

from typing import Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from gridcast.config import settings
from gridcast.scheduling.resolver import current_time_string
from gridcast.viewer.client import ViewerClient
from gridcast.core.logging import get_logger

logger = get_logger("viewer.ticker")

DisplayMap = Dict[int, Optional[str]]


class RenderTicker:
    """Re-resolves a viewer's layout on a fixed interval."""

    def __init__(
        self,
        viewer: ViewerClient,
        interval: Optional[int] = None,
        on_change: Optional[Callable[[DisplayMap], None]] = None,
    ):
        self.viewer = viewer
        self.interval = interval or settings.viewer_resolve_interval
        self.on_change = on_change
        self.displayed: DisplayMap = {}
        self.scheduler = AsyncIOScheduler()

    def tick(self, now: Optional[str] = None) -> DisplayMap:
        """Resolve once; notify ``on_change`` if any cell switched ads."""
        now = now or current_time_string()
        displayed = self.viewer.displayed_ads(now)
        if displayed != self.displayed:
            logger.info(f"Cells changed at {now}: {displayed}")
            self.displayed = displayed
            if self.on_change is not None:
                self.on_change(displayed)
        return displayed

    async def refresh(self) -> None:
        """Scheduled job. Runs on the event loop that owns the viewer."""
        try:
            self.tick()
        except Exception as e:
            logger.error(f"Render tick failed: {e}")

    def start(self) -> None:
        self.scheduler.add_job(
            self.refresh,
            "interval",
            seconds=self.interval,
            id="render_tick",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Render ticker started. Re-resolving every {self.interval}s")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Render ticker stopped")
