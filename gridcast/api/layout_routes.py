"""GridCast — Layout API Routes."""

from fastapi import APIRouter, Depends, HTTPException

from gridcast.api.deps import get_layout_store
from gridcast.persistence.dynamo import StoreError
from gridcast.persistence.layout_store import LayoutStore
from gridcast.core.logging import get_logger

logger = get_logger("api.layouts")

router = APIRouter(prefix="/api/layouts", tags=["Layouts"])


@router.get("")
def list_layouts(store: LayoutStore = Depends(get_layout_store)):
    """All layouts, without ads joined in."""
    try:
        return [layout.to_record() for layout in store.list_layouts()]
    except StoreError as e:
        logger.error(f"Listing layouts failed: {e}")
        raise HTTPException(status_code=500, detail="Internal server error.")


@router.get("/{layout_id}")
def get_layout(layout_id: str, store: LayoutStore = Depends(get_layout_store)):
    """One layout with its grid items and scheduled ad ids."""
    try:
        layout = store.get_layout(layout_id)
    except StoreError as e:
        logger.error(f"Fetching layout {layout_id} failed: {e}")
        raise HTTPException(status_code=500, detail="Internal server error.")
    if layout is None:
        raise HTTPException(status_code=404, detail=f"Layout {layout_id} not found.")
    return layout.to_record()
