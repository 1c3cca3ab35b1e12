"""GridCast — Media Object Storage.

Ad media lives in S3. Operators upload through a time-limited presigned PUT
URL; private objects are served through presigned GET URLs.
"""

import time
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from gridcast.config import settings
from gridcast.models.records import AdType
from gridcast.core.logging import get_logger

logger = get_logger("storage.media")

MEDIA_FOLDERS = {AdType.IMAGE: "images", AdType.VIDEO: "videos"}


class MediaStorageError(Exception):
    """Raised when a presigned URL cannot be generated."""


def build_media_key(ad_type: AdType, file_name: str, now_ms: Optional[int] = None) -> str:
    """``images/1700000000000-cat.png`` style key for an uploaded file."""
    folder = MEDIA_FOLDERS.get(ad_type)
    if folder is None:
        raise ValueError(f"{ad_type.value} ads have no media")
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{folder}/{stamp}-{file_name}"


class MediaStorage:
    """Presigned URL generation for one bucket."""

    def __init__(
        self,
        client=None,
        bucket: Optional[str] = None,
        region: Optional[str] = None,
        expires_in: Optional[int] = None,
    ):
        self.client = client or boto3.client("s3", **settings.aws_client_kwargs)
        self.bucket = bucket or settings.s3_bucket_name
        self.region = region or settings.aws_region
        self.expires_in = expires_in or settings.presigned_url_expiry

    def _presign(self, operation: str, params: dict) -> str:
        try:
            return self.client.generate_presigned_url(
                operation, Params=params, ExpiresIn=self.expires_in
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Presigning {operation} for {params.get('Key')} failed: {e}")
            raise MediaStorageError(f"Could not presign {operation}") from e

    def upload_url(self, key: str, content_type: str) -> str:
        return self._presign(
            "put_object",
            {"Bucket": self.bucket, "Key": key, "ContentType": content_type},
        )

    def download_url(self, key: str) -> str:
        return self._presign("get_object", {"Bucket": self.bucket, "Key": key})

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
