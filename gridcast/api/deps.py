"""GridCast — Route Dependencies.

Stores are built once in the app lifespan and kept on ``app.state``.
"""

from fastapi import Request

from gridcast.persistence.ad_store import AdStore
from gridcast.persistence.layout_store import LayoutStore
from gridcast.realtime.hub import BroadcastHub
from gridcast.storage.media import MediaStorage


def get_ad_store(request: Request) -> AdStore:
    return request.app.state.ad_store


def get_layout_store(request: Request) -> LayoutStore:
    return request.app.state.layout_store


def get_media_storage(request: Request) -> MediaStorage:
    return request.app.state.media_storage


def get_hub(request: Request) -> BroadcastHub:
    return request.app.state.hub
