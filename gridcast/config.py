"""GridCast — Central Configuration via Pydantic Settings."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── AWS ──
    aws_region: str = "ap-southeast-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    dynamodb_endpoint_url: Optional[str] = None  # DynamoDB Local in dev

    # ── Record tables ──
    dynamodb_table_layouts: str = "Layouts"
    dynamodb_table_griditems: str = "GridItems"
    dynamodb_table_scheduledads: str = "ScheduledAds"
    dynamodb_table_ads: str = "Ads"

    # ── Object storage ──
    s3_bucket_name: str = ""
    presigned_url_expiry: int = 3600  # seconds

    # ── Change streams ──
    streams_enabled: bool = True
    stream_poll_interval: float = 5.0  # seconds between polls per shard
    stream_poll_limit: int = 100  # records per poll

    # ── Broadcast hub ──
    hub_queue_size: int = 100  # outbound messages buffered per viewer

    # ── Viewer client ──
    viewer_api_url: str = "http://localhost:8000"
    viewer_ws_url: str = "ws://localhost:8000/ws"
    viewer_reconnect_delay: float = 5.0
    viewer_max_reconnect_attempts: int = 5
    viewer_resolve_interval: int = 60  # seconds between cell re-resolution

    # ── App ──
    log_level: str = "INFO"

    @property
    def aws_client_kwargs(self) -> dict:
        """Keyword arguments shared by every boto3 client we create."""
        kwargs: dict = {"region_name": self.aws_region}
        if self.aws_access_key_id and self.aws_secret_access_key:
            kwargs["aws_access_key_id"] = self.aws_access_key_id
            kwargs["aws_secret_access_key"] = self.aws_secret_access_key
        return kwargs

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
