"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be overridden in tests
- Configuration is centralized

The storage client and the HTTP client are process-wide: the lifespan in
main.py creates them once and parks them on app.state. Everything built
from them here is per request and holds no shared mutable state.
"""

import logging
from typing import Annotated

import httpx
from fastapi import Depends, HTTPException, Request, status

from ..config.settings import Settings, get_settings
from ..core.relay.access import AccessUrlIssuer
from ..core.relay.pipeline import MediaRelayPipeline
from ..infrastructure.storage.client import StorageClient
from ..infrastructure.whatsapp.media import WhatsAppMediaSource

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Process-wide Clients
# ---------------------------------------------------------------------------

def get_storage_client(request: Request) -> StorageClient:
    """Provide the storage client created at startup."""
    client = getattr(request.app.state, "storage_client", None)
    if client is None:
        logger.error("Storage client requested before startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage is not initialized",
        )
    return client


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Provide the shared HTTP client used for media downloads."""
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        logger.error("HTTP client requested before startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Media downloader is not initialized",
        )
    return client


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_media_source(
    settings: Annotated[Settings, Depends(get_settings)],
    http_client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> WhatsAppMediaSource:
    """Provide a media source bound to the shared HTTP client."""
    return WhatsAppMediaSource(
        http_client,
        media_host=settings.media_host,
        timeout_seconds=settings.fetch_timeout_seconds,
    )


def get_relay_pipeline(
    settings: Annotated[Settings, Depends(get_settings)],
    storage: Annotated[StorageClient, Depends(get_storage_client)],
    media_source: Annotated[WhatsAppMediaSource, Depends(get_media_source)],
) -> MediaRelayPipeline:
    """
    Provide a relay pipeline for one request.

    Cheap to build: it only holds references to the shared clients.
    """
    issuer = AccessUrlIssuer(storage, default_ttl_seconds=settings.signed_url_expire)
    return MediaRelayPipeline(
        storage=storage,
        media_source=media_source,
        issuer=issuer,
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
SettingsDep = Annotated[Settings, Depends(get_settings)]
StorageClientDep = Annotated[StorageClient, Depends(get_storage_client)]
RelayPipelineDep = Annotated[MediaRelayPipeline, Depends(get_relay_pipeline)]
