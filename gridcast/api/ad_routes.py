"""GridCast — Ad API Routes."""

import uuid
from typing import List, Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gridcast.api.deps import get_ad_store, get_media_storage
from gridcast.models.records import Ad, AdContent, AdType
from gridcast.persistence.ad_store import AdStore
from gridcast.persistence.dynamo import StoreError
from gridcast.storage.media import MediaStorage, MediaStorageError, build_media_key
from gridcast.core.logging import get_logger

logger = get_logger("api.ads")

router = APIRouter(prefix="/api/ads", tags=["Ads"])

UPLOADABLE_TYPES = ("image", "video")


# ── Request Models ──


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BatchGetRequest(CamelModel):
    """Request body for POST /api/ads/batchGet."""

    ad_ids: List[str]


class UploadAdRequest(CamelModel):
    """Request body for POST /api/ads/upload."""

    file_name: str = Field(min_length=1)
    content_type: str = Field(min_length=1)
    type: str
    title: Optional[str] = None
    description: Optional[str] = None


class UpdateAdRequest(CamelModel):
    """Request body for PUT /api/ads/{ad_id}."""

    type: str
    content: AdContent
    styles: Dict[str, Any] = Field(default_factory=dict)


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error {action}: {e}")
    return HTTPException(status_code=500, detail="Internal server error.")


# ── Endpoints ──


@router.get("")
def list_ads(store: AdStore = Depends(get_ad_store)):
    try:
        return [ad.to_record() for ad in store.list_ads()]
    except StoreError as e:
        raise _internal_error("fetching all ads", e)


@router.post("/batchGet")
def batch_get_ads(request: BatchGetRequest, store: AdStore = Depends(get_ad_store)):
    """Fetch the ads with the given ids; unknown ids are skipped."""
    try:
        return [ad.to_record() for ad in store.get_ads_by_ids(request.ad_ids)]
    except StoreError as e:
        raise _internal_error("fetching ads by adIds", e)


@router.post("/upload", status_code=201)
def upload_ad(
    request: UploadAdRequest,
    store: AdStore = Depends(get_ad_store),
    media: MediaStorage = Depends(get_media_storage),
):
    """Register an image/video ad and return a presigned URL to upload its media."""
    if request.type.lower() not in UPLOADABLE_TYPES:
        raise HTTPException(
            status_code=400, detail="Invalid or unsupported ad data provided."
        )

    ad_type = AdType.parse(request.type)
    s3_key = build_media_key(ad_type, request.file_name)
    try:
        upload_url = media.upload_url(s3_key, request.content_type)
        ad = store.save_ad(
            Ad(
                ad_id=str(uuid.uuid4()),
                type=ad_type,
                content=AdContent(
                    title=request.title or "Untitled",
                    description=request.description or "",
                    s3_key=s3_key,
                    s3_bucket=media.bucket,
                    src=media.public_url(s3_key),
                ),
            )
        )
    except (StoreError, MediaStorageError) as e:
        raise _internal_error("uploading ad", e)

    logger.info(f"Ad {ad.ad_id} registered for upload at {s3_key}")
    return {
        "message": "Ad uploaded successfully.",
        "s3Url": upload_url,
        "adData": ad.to_record(),
    }


@router.put("/{ad_id}")
def update_ad(
    ad_id: str, request: UpdateAdRequest, store: AdStore = Depends(get_ad_store)
):
    try:
        ad_type = AdType.parse(request.type)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown ad type {request.type}.")
    try:
        if store.get_ad(ad_id) is None:
            raise HTTPException(status_code=404, detail=f"Ad {ad_id} not found.")
        ad = store.update_ad(
            Ad(ad_id=ad_id, type=ad_type, content=request.content, styles=request.styles)
        )
    except StoreError as e:
        raise _internal_error(f"updating ad {ad_id}", e)
    return ad.to_record()


@router.delete("/{ad_id}")
def delete_ad(ad_id: str, store: AdStore = Depends(get_ad_store)):
    try:
        store.delete_ad(ad_id)
    except StoreError as e:
        raise _internal_error(f"deleting ad {ad_id}", e)
    return {"message": f"Ad with ID {ad_id} deleted successfully."}


@router.get("/{ad_id}/media")
def get_ad_media(
    ad_id: str,
    store: AdStore = Depends(get_ad_store),
    media: MediaStorage = Depends(get_media_storage),
):
    """Time-limited download URL for an ad's media object."""
    try:
        ad = store.get_ad(ad_id)
    except StoreError as e:
        raise _internal_error(f"fetching ad {ad_id}", e)
    if ad is None:
        raise HTTPException(status_code=404, detail=f"Ad {ad_id} not found.")
    if not ad.content.s3_key:
        raise HTTPException(status_code=404, detail=f"Ad {ad_id} has no stored media.")
    try:
        url = media.download_url(ad.content.s3_key)
    except MediaStorageError as e:
        raise _internal_error(f"presigning media for {ad_id}", e)
    return {"adId": ad_id, "url": url, "expiresIn": media.expires_in}
