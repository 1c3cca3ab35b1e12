"""GridCast — Layout Store.

Layouts are read whole: the record carries its grid items and each item's
scheduled ads. Ads are joined in separately by id.
"""

from typing import Dict, Iterable, List, Optional

from gridcast.models.records import Ad, Layout
from gridcast.persistence.dynamo import RecordStore
from gridcast.core.logging import get_logger

logger = get_logger("persistence.layouts")

LAYOUT_KEY = "layoutId"


def hydrate_layout(layout: Layout, ads: Iterable[Ad]) -> Layout:
    """Return a copy of ``layout`` with every assignment's ``ad`` attached.

    Assignments whose ad is unknown get ``ad=None``.
    """
    ads_by_id: Dict[str, Ad] = {ad.ad_id: ad for ad in ads}
    items = []
    for item in layout.grid_items:
        assignments = [
            assignment.model_copy(update={"ad": ads_by_id.get(assignment.ad_id or "")})
            for assignment in item.scheduled_ads
        ]
        items.append(item.model_copy(update={"scheduled_ads": assignments}))
    return layout.model_copy(update={"grid_items": items})


class LayoutStore:
    """Layouts table access."""

    def __init__(self, records: RecordStore):
        self.records = records

    def get_layout(self, layout_id: str) -> Optional[Layout]:
        item = self.records.get_by_id(layout_id)
        if item is None:
            logger.info(f"No layout found with layoutId: {layout_id}")
            return None
        return Layout.model_validate(item)

    def list_layouts(self) -> List[Layout]:
        return [Layout.model_validate(item) for item in self.records.scan()]
