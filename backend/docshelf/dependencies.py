from dataclasses import dataclass

import httpx
from fastapi import HTTPException, Request
from sqlalchemy.orm import sessionmaker

from docshelf.config import Settings
from docshelf.services.delivery_cache import DeliveryCache
from docshelf.services.document_service import DocumentIngestor, SqlDocumentLocator
from docshelf.services.object_store import ObjectStore, S3ObjectStore, build_s3_client


@dataclass
class Services:
    """Long-lived collaborators, built once per process and shared by requests."""

    object_store: ObjectStore
    delivery_cache: DeliveryCache
    ingestor: DocumentIngestor
    http_client: httpx.AsyncClient


def build_services(settings: Settings, session_factory: sessionmaker) -> Services:
    object_store = S3ObjectStore(
        build_s3_client(settings),
        settings.storage_bucket,
        default_url_ttl=settings.signed_url_ttl_seconds,
    )
    locator = SqlDocumentLocator(session_factory)
    http_client = httpx.AsyncClient(timeout=settings.fetch_timeout_seconds)
    cache = DeliveryCache(
        object_store,
        locator,
        http_client,
        ttl_seconds=settings.cache_ttl_seconds,
        sweep_interval_seconds=settings.cache_sweep_interval_seconds,
    )
    return Services(
        object_store=object_store,
        delivery_cache=cache,
        ingestor=DocumentIngestor(object_store, key_index=locator),
        http_client=http_client,
    )


async def close_services(services: Services) -> None:
    await services.delivery_cache.stop()
    await services.http_client.aclose()


async def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services
