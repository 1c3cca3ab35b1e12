"""GridCast — Viewer Client.

Loads a layout over the REST API, keeps it live through the session
lifecycle manager, and answers which ad each cell is showing right now.
"""

from typing import Any, Dict, List, Optional, Sequence

import httpx

from gridcast.config import settings
from gridcast.models.records import Ad, Layout
from gridcast.models.updates import UpdateKind
from gridcast.persistence.layout_store import hydrate_layout
from gridcast.scheduling.resolver import RenderedCell, current_time_string, resolve_layout
from gridcast.viewer.session import Connector, SessionLifecycleManager
from gridcast.core.logging import get_logger

logger = get_logger("viewer.client")

# Initial snapshot the server sends right after a subscribe
LAYOUT_DATA = "layoutData"
LAYOUT_MESSAGES = (UpdateKind.LAYOUT.value, LAYOUT_DATA)
REFETCH_MESSAGES = (UpdateKind.GRID_ITEM.value, UpdateKind.SCHEDULED_AD.value)


class ViewerAPIError(Exception):
    """Raised when the GridCast API returns an error."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


class ViewerClient:
    """One screen's view of one layout."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        ws_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        connector: Optional[Connector] = None,
        reconnect_delay: Optional[float] = None,
        max_reconnect_attempts: Optional[int] = None,
    ):
        self.api_url = (api_url or settings.viewer_api_url).rstrip("/")
        self._client = http_client
        self.layout: Optional[Layout] = None
        self.error: Optional[str] = None
        self.sessions = SessionLifecycleManager(
            on_message=self._on_message,
            url=ws_url,
            connector=connector,
            prepare=self._load_layout,
            on_error=self._on_error,
            reconnect_delay=reconnect_delay,
            max_reconnect_attempts=max_reconnect_attempts,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.api_url, timeout=30.0)
        return self._client

    async def close(self) -> None:
        await self.sessions.close()
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── REST ──

    async def _request(self, method: str, path: str, body: Any = None) -> Any:
        client = await self._get_client()
        try:
            resp = await client.request(method, f"{self.api_url}{path}", json=body)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            detail = (
                e.response.json().get("detail", str(e))
                if e.response.headers.get("content-type", "").startswith(
                    "application/json"
                )
                else str(e)
            )
            raise ViewerAPIError(detail, e.response.status_code) from e
        except httpx.RequestError as e:
            raise ViewerAPIError(f"Request to {path} failed: {e}") from e

    async def list_layouts(self) -> List[Layout]:
        data = await self._request("GET", "/api/layouts")
        return [Layout.model_validate(item) for item in data]

    async def fetch_ads(self, ad_ids: Sequence[str]) -> List[Ad]:
        if not ad_ids:
            return []
        data = await self._request("POST", "/api/ads/batchGet", {"adIds": list(ad_ids)})
        return [Ad.model_validate(item) for item in data]

    async def fetch_layout(self, layout_id: str) -> Layout:
        """Fetch a layout and join in every ad it schedules."""
        data = await self._request("GET", f"/api/layouts/{layout_id}")
        layout = Layout.model_validate(data)
        ads = await self.fetch_ads(layout.ad_ids())
        return hydrate_layout(layout, ads)

    # ── Live subscription ──

    async def select_layout(self, layout_id: str) -> None:
        """Show ``layout_id`` and follow its updates."""
        await self.sessions.select(layout_id)

    async def _load_layout(self, layout_id: str) -> None:
        self.layout = None
        self.error = None
        try:
            self.layout = await self.fetch_layout(layout_id)
        except ViewerAPIError as e:
            self.error = str(e)
            raise
        logger.info("Layout loaded", extra={"layout_id": layout_id})

    def _on_error(self, layout_id: str, error: Exception) -> None:
        self.error = str(error)

    def _known_ads(self) -> Dict[str, Ad]:
        known: Dict[str, Ad] = {}
        if self.layout is not None:
            for item in self.layout.grid_items:
                for assignment in item.scheduled_ads:
                    if assignment.ad is not None:
                        known[assignment.ad.ad_id] = assignment.ad
        return known

    async def _replace_layout(self, layout: Layout) -> None:
        known = self._known_ads()
        missing = [ad_id for ad_id in layout.ad_ids() if ad_id not in known]
        ads = list(known.values()) + await self.fetch_ads(missing)
        self.layout = hydrate_layout(layout, ads)

    async def _on_message(self, layout_id: str, message: Dict[str, Any]) -> None:
        kind = message.get("type")
        data = message.get("data") or {}

        if kind in LAYOUT_MESSAGES and data.get("layoutId") == layout_id:
            await self._replace_layout(Layout.model_validate(data))
            logger.info("Layout replaced", extra={"layout_id": layout_id, "update_type": kind})
        elif kind in REFETCH_MESSAGES and data.get("layoutId") == layout_id:
            self.layout = await self.fetch_layout(layout_id)
            logger.info("Layout re-fetched", extra={"layout_id": layout_id, "update_type": kind})
        elif kind == UpdateKind.AD.value and self.layout is not None:
            ad = Ad.model_validate(data)
            if ad.ad_id in self.layout.ad_ids():
                ads = {**self._known_ads(), ad.ad_id: ad}
                self.layout = hydrate_layout(self.layout, ads.values())

    # ── Rendering ──

    def cells(self, now: Optional[str] = None) -> List[RenderedCell]:
        if self.layout is None:
            return []
        return resolve_layout(self.layout, now or current_time_string())

    def displayed_ads(self, now: Optional[str] = None) -> Dict[int, Optional[str]]:
        """``cell index → adId`` currently on screen."""
        return {cell.item.index: cell.assignment.ad_id for cell in self.cells(now)}
