"""GridCast — Ad Store.

Ads are upserted so the original ``createdAt`` survives every later save;
``updatedAt`` is refreshed on each write.
"""

from datetime import datetime, timezone
from typing import List, Optional, Sequence

from gridcast.models.records import Ad
from gridcast.persistence.dynamo import RecordStore
from gridcast.core.logging import get_logger

logger = get_logger("persistence.ads")

AD_KEY = "adId"

SAVE_EXPRESSION = (
    "SET #type = :type, #content = :content, #styles = :styles, "
    "#updatedAt = :updatedAt, #createdAt = if_not_exists(#createdAt, :createdAt)"
)
UPDATE_EXPRESSION = (
    "SET #type = :type, #content = :content, #styles = :styles, "
    "#updatedAt = :updatedAt"
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AdStore:
    """Ads table access."""

    def __init__(self, records: RecordStore):
        self.records = records

    def get_ad(self, ad_id: str) -> Optional[Ad]:
        item = self.records.get_by_id(ad_id)
        if item is None:
            logger.info(f"No ad found with adId: {ad_id}")
            return None
        return Ad.model_validate(item)

    def get_ads_by_ids(self, ad_ids: Sequence[str]) -> List[Ad]:
        if not ad_ids:
            return []
        return [Ad.model_validate(item) for item in self.records.batch_get_by_ids(ad_ids)]

    def list_ads(self) -> List[Ad]:
        return [Ad.model_validate(item) for item in self.records.scan()]

    def save_ad(self, ad: Ad) -> Ad:
        """Create or update an ad, keeping the first ``createdAt`` ever written."""
        now = _now_iso()
        names = {
            "#type": "type",
            "#content": "content",
            "#styles": "styles",
            "#updatedAt": "updatedAt",
            "#createdAt": "createdAt",
        }
        values = {
            ":type": ad.type.value,
            ":content": ad.content.to_record(),
            ":styles": ad.styles or {},
            ":updatedAt": now,
            ":createdAt": ad.created_at or now,
        }
        attributes = self.records.update(ad.ad_id, SAVE_EXPRESSION, names, values)
        logger.info(f"Ad {ad.ad_id} saved")
        return Ad.model_validate({AD_KEY: ad.ad_id, **attributes})

    def update_ad(self, ad: Ad) -> Ad:
        """Overwrite an ad's fields without touching ``createdAt``."""
        names = {
            "#type": "type",
            "#content": "content",
            "#styles": "styles",
            "#updatedAt": "updatedAt",
        }
        values = {
            ":type": ad.type.value,
            ":content": ad.content.to_record(),
            ":styles": ad.styles or {},
            ":updatedAt": _now_iso(),
        }
        attributes = self.records.update(ad.ad_id, UPDATE_EXPRESSION, names, values)
        logger.info(f"Ad {ad.ad_id} updated")
        return Ad.model_validate({AD_KEY: ad.ad_id, **attributes})

    def delete_ad(self, ad_id: str) -> None:
        self.records.delete(ad_id)
        logger.info(f"Ad {ad_id} deleted")
