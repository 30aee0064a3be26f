"""
Shared dependencies for FastAPI endpoints.

The backing store and HTTP client are created once in the app lifespan and
stored on app.state; endpoints receive them through these providers.
"""

from typing import Annotated

import httpx
from fastapi import Depends, Request

from file_relay.core.config import settings
from file_relay.storage.backend import BackingStore
from file_relay.transfer.coordinator import ChunkedUploadCoordinator
from file_relay.transfer.proxy import RangeProxy


async def get_http_client(request: Request) -> httpx.AsyncClient:
    """Shared outbound HTTP client."""
    return request.app.state.http_client


async def get_backing_store(request: Request) -> BackingStore:
    """Backing store constructed at startup."""
    return request.app.state.store


# Dependency annotations
HTTPClient = Annotated[httpx.AsyncClient, Depends(get_http_client)]
Store = Annotated[BackingStore, Depends(get_backing_store)]


async def get_coordinator(store: Store) -> ChunkedUploadCoordinator:
    return ChunkedUploadCoordinator(
        store=store,
        single_upload_limit=settings.SINGLE_UPLOAD_LIMIT,
        chunk_size=settings.CHUNK_SIZE,
    )


async def get_range_proxy(store: Store, http: HTTPClient) -> RangeProxy:
    return RangeProxy(
        store=store,
        http=http,
        segment_size=settings.STREAM_SEGMENT_SIZE,
        connect_timeout=settings.RELAY_CONNECT_TIMEOUT,
        read_timeout=settings.RELAY_READ_TIMEOUT,
    )


Coordinator = Annotated[ChunkedUploadCoordinator, Depends(get_coordinator)]
Proxy = Annotated[RangeProxy, Depends(get_range_proxy)]
