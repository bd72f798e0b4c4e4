from fastapi import FastAPI, HTTPException, Query, Depends, Header
from contextlib import asynccontextmanager
import logging
from typing import Optional
from pydantic import BaseModel

from aggregator import StreamMonitor
from capacity import summarize_capacity
from catalog import Catalog, load_catalog
from config import settings, VERSION
from errors import NoEffectiveProvider, NotFound, UpstreamUnreachable
from models import ContentKind
from proxy_client import M3uProxyClient
from resolver import AliasResolver
from status_cache import ProviderStatusCache, create_snapshot_store
from xtream_client import XtreamStatusClient

# Set up logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


# Global catalog, capacity cache and monitor
catalog = load_catalog(settings.CATALOG_FILE) if settings.CATALOG_FILE else Catalog()
xtream_client = XtreamStatusClient()
status_cache = ProviderStatusCache(
    fetcher=xtream_client.fetch_for_context, store=create_snapshot_store())
resolver = AliasResolver(catalog, status_cache)
proxy_client = M3uProxyClient()
stream_monitor = StreamMonitor(proxy_client, lookup=catalog.display_info)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info(
        f"⚡️ stream router starting up (m3u-proxy at {settings.PROXY_API_URL})")

    yield

    logger.info("stream router shutting down...")
    await status_cache.close()
    await xtream_client.close()
    await proxy_client.close()


app = FastAPI(
    title="stream router",
    version=VERSION,
    description="Capacity-aware playlist alias routing and m3u-proxy stream monitoring",
    lifespan=lifespan,
    root_path=settings.ROOT_PATH,
)


async def verify_token(
    x_api_token: Optional[str] = Header(None, alias="X-API-Token"),
    api_token: Optional[str] = Query(
        None, description="stream router API token (alternative to X-API-Token header)")
):
    """
    Guard every route with API_TOKEN when it is configured.

    The token is read from the X-API-Token header, or from the api_token query
    parameter for clients that cannot set headers. Authentication is disabled
    when API_TOKEN is unset.
    """
    if not settings.API_TOKEN:
        return True

    provided_token = x_api_token or api_token

    if not provided_token:
        raise HTTPException(
            status_code=401,
            detail="stream router requires an API token via the X-API-Token header or api_token query parameter.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if provided_token != settings.API_TOKEN:
        logger.warning("Rejected request with an invalid stream router API token")
        raise HTTPException(
            status_code=403,
            detail="Invalid stream router API token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return True


class ResolveResponse(BaseModel):
    """Response model for a resolved stream URL."""
    url: str
    provider_context_id: Optional[str]
    context_type: Optional[str]


@app.get("/", dependencies=[Depends(verify_token)])
async def root():
    return {
        "status": "running",
        "message": "stream router is running",
        "version": VERSION,
    }


@app.get("/health", dependencies=[Depends(verify_token)])
async def health_check():
    return {
        "status": "healthy",
        "version": VERSION,
        "playlists": len(catalog.providers),
        "aliases": len(catalog.aliases),
        "capacity_cache_ttl": status_cache.ttl,
        "redis_enabled": settings.REDIS_ENABLED,
    }


@app.get("/resolve/{kind}/{item_id}", dependencies=[Depends(verify_token)])
async def resolve_stream(kind: ContentKind, item_id: int) -> ResolveResponse:
    """Resolve the playable URL for a channel or episode, failing over to aliases when saturated"""
    try:
        resolved = await resolver.resolve_by_id(kind, item_id)
        return ResolveResponse(
            url=resolved.url,
            provider_context_id=resolved.provider_context_id,
            context_type=resolved.context.context_type.value if resolved.context else None,
        )
    except NotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except NoEffectiveProvider as e:
        raise HTTPException(status_code=409, detail=e.message)
    except Exception as e:
        logger.error(f"Error resolving {kind.value} {item_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/monitor", dependencies=[Depends(verify_token)])
async def get_monitor_report():
    """Current streams, their clients and global stats from m3u-proxy"""
    try:
        report = await stream_monitor.get_report()
        return report.to_dict()
    except Exception as e:
        logger.error(f"Error building stream report: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.delete("/monitor/streams/{stream_id}", dependencies=[Depends(verify_token)])
async def stop_stream(stream_id: str):
    """Stop a stream via m3u-proxy and return the refreshed report"""
    try:
        result, report = await stream_monitor.stop_stream(stream_id)
        return {
            "success": result.success,
            "message": result.message,
            "report": report.to_dict(),
        }
    except Exception as e:
        logger.error(f"Error stopping stream {stream_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/providers/{provider_id}/status", dependencies=[Depends(verify_token)])
async def get_provider_status(provider_id: int):
    """Live connection usage and account expiry for a playlist"""
    try:
        provider = catalog.get_provider(provider_id)
        snapshot = await status_cache.get_snapshot(provider)
        return {
            "provider_context_id": provider.context_id,
            "xtream_info": summarize_capacity(snapshot),
        }
    except NotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except UpstreamUnreachable as e:
        raise HTTPException(status_code=502, detail=e.message)
    except Exception as e:
        logger.error(f"Error getting status for playlist {provider_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
