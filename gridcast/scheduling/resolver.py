"""GridCast — Scheduled Ad Resolver.

Picks the ad a grid cell shows right now from its day of scheduled
assignments:

- the assignment that started most recently (latest ``scheduledTime`` ≤ now)
- otherwise, before anything has started, the soonest upcoming one

Times are zero-padded ``HH:mm`` strings compared lexicographically, so a
schedule that wraps past midnight is not treated specially. ``now`` is
always passed in; callers re-resolve on their own timer.
"""

from dataclasses import dataclass
from datetime import datetime
from functools import reduce
from typing import List, Optional, Sequence
from urllib.parse import quote

from gridcast.models.records import Ad, GridItem, Layout, ScheduledAdAssignment

DEFAULT_S3_REGION = "ap-southeast-1"


def current_time_string(moment: Optional[datetime] = None) -> str:
    """Format a local time as ``HH:mm``."""
    moment = moment or datetime.now()
    return moment.strftime("%H:%M")


def resolve_scheduled_ad(
    scheduled_ads: Sequence[ScheduledAdAssignment], now: str
) -> Optional[ScheduledAdAssignment]:
    """Return the assignment to render at ``now``, or None for no assignments.

    Among equal ``scheduledTime`` values the latest started is the last in
    input order, while the soonest upcoming is the first.
    """
    if not scheduled_ads:
        return None

    available = [a for a in scheduled_ads if a.scheduled_time <= now]
    if available:
        return reduce(
            lambda latest, current: (
                current if current.scheduled_time >= latest.scheduled_time else latest
            ),
            available,
        )

    return reduce(
        lambda soonest, current: (
            current if current.scheduled_time < soonest.scheduled_time else soonest
        ),
        scheduled_ads,
    )


@dataclass(frozen=True)
class RenderedCell:
    """A visible cell with its active assignment and CSS grid placement."""

    item: GridItem
    assignment: ScheduledAdAssignment

    @property
    def grid_row(self) -> str:
        start = self.item.row + 1
        return f"{start} / {start + self.item.row_span}"

    @property
    def grid_column(self) -> str:
        start = self.item.column + 1
        return f"{start} / {start + self.item.col_span}"

    @property
    def ad(self) -> Optional[Ad]:
        return self.assignment.ad


def resolve_layout(layout: Layout, now: str) -> List[RenderedCell]:
    """Resolve every cell of a layout. Hidden and empty cells are left out."""
    cells: List[RenderedCell] = []
    for item in layout.grid_items:
        if item.hidden:
            continue
        assignment = resolve_scheduled_ad(item.scheduled_ads, now)
        if assignment is not None:
            cells.append(RenderedCell(item=item, assignment=assignment))
    return cells


def media_url(ad: Ad) -> Optional[str]:
    """Where a viewer loads an ad's media from.

    Prefers an explicit ``mediaUrl`` or ``src``; otherwise builds the S3
    object URL with each key segment URL-encoded.
    """
    content = ad.content
    if content.media_url or content.src:
        return content.media_url or content.src
    if content.s3_bucket and content.s3_key:
        region = content.s3_region or DEFAULT_S3_REGION
        encoded = "/".join(quote(segment, safe="") for segment in content.s3_key.split("/"))
        return f"https://{content.s3_bucket}.s3.{region}.amazonaws.com/{encoded}"
    return None
