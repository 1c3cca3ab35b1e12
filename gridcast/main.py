"""GridCast — FastAPI Application Entry Point.

Real-time synchronisation service for grid layouts of scheduled ads.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from gridcast.config import settings
from gridcast.core.tables import TableRegistry, TableRole
from gridcast.persistence.dynamo import RecordStore, create_dynamodb_resource
from gridcast.persistence.ad_store import AD_KEY, AdStore
from gridcast.persistence.layout_store import LAYOUT_KEY, LayoutStore
from gridcast.realtime.hub import BroadcastHub
from gridcast.storage.media import MediaStorage
from gridcast.streams.feed import DynamoDBChangeFeed
from gridcast.streams.listener import ChangeStreamListener
from gridcast.api.layout_routes import router as layout_router
from gridcast.api.ad_routes import router as ad_router
from gridcast.api.ws_routes import router as ws_router
from gridcast.api.deps import get_hub
from gridcast.core.logging import get_logger

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("GridCast starting up...")
    # Fails fast on an incomplete or ambiguous table mapping
    registry = TableRegistry.from_settings(settings)
    logger.info(f"Watching tables: {', '.join(registry.table_names)}")

    resource = create_dynamodb_resource()
    app.state.registry = registry
    app.state.hub = BroadcastHub()
    app.state.layout_store = LayoutStore(
        RecordStore(resource, registry.table_for(TableRole.LAYOUTS), LAYOUT_KEY)
    )
    app.state.ad_store = AdStore(
        RecordStore(resource, registry.table_for(TableRole.ADS), AD_KEY)
    )
    app.state.media_storage = MediaStorage()

    listener = None
    if settings.streams_enabled:
        listener = ChangeStreamListener(DynamoDBChangeFeed(), registry, app.state.hub)
        await listener.start()
    else:
        logger.info("Change streams disabled via config")
    app.state.listener = listener

    yield

    if listener is not None:
        await listener.stop()
    logger.info("GridCast shut down")


app = FastAPI(
    title="GridCast",
    description="Live grid layouts of scheduled ads — change capture, broadcast and scheduling.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(layout_router)
app.include_router(ad_router)
app.include_router(ws_router)


@app.get("/health", tags=["System"])
async def health_check(request: Request, hub: BroadcastHub = Depends(get_hub)):
    """Health check endpoint."""
    listener = getattr(request.app.state, "listener", None)
    return {
        "status": "healthy",
        "service": "gridcast",
        "version": "1.0.0",
        "viewers": hub.session_count,
        "active_shards": len(listener.active_shards) if listener else 0,
    }
