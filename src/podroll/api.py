"""FastAPI app exposing the cached podcast roll.

Public routes are read-only JSON. Management routes (dashboard, settings,
manual sync, clear and resync) live on a separate router so the host can
mount them behind its own authentication.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import quote

import structlog
from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import Field

from podroll import __version__
from podroll.config import get_settings
from podroll.ingestion.normalizer import CamelModel
from podroll.logging import setup_logging_from_settings
from podroll.query import (
    DEFAULT_LIMIT,
    EpisodePage,
    EpisodeView,
    NotFound,
    QueryService,
    SourceList,
    Unavailable,
)
from podroll.storage import PodrollStore, StoreUnavailable
from podroll.sync import SyncRunResult, SyncScheduler, resolve_urls, save_settings

logger = structlog.get_logger(__name__)

_store: PodrollStore | None = None
_scheduler: SyncScheduler | None = None


def get_store() -> PodrollStore:
    global _store
    if _store is None:
        _store = PodrollStore()
    return _store


def get_scheduler() -> SyncScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = SyncScheduler(get_store(), get_settings().sync)
    return _scheduler


def get_query() -> QueryService:
    return QueryService(get_store())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging_from_settings(settings)

    scheduler = get_scheduler()
    urls = await resolve_urls(get_store(), settings.sync)
    if urls.episodes_url:
        scheduler.start()
    else:
        logger.warning("No episodesUrl configured, sync disabled")

    yield

    await scheduler.stop()
    get_store().close()


def _unavailable_response(result: Unavailable) -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": result.message})


public_router = APIRouter(prefix="/api", tags=["public"])


@public_router.get("/episodes", response_model=EpisodePage)
def list_episodes(
    limit: int = Query(DEFAULT_LIMIT, description="Page size (max 200)"),
    offset: int = Query(0, description="Episodes to skip"),
    source: str | None = Query(None, description="Filter by podcast title"),
):
    """List cached episodes, newest first."""
    result = get_query().list_episodes(limit=limit, offset=offset, source=source)
    if isinstance(result, Unavailable):
        return _unavailable_response(result)
    return result


@public_router.get("/episodes/{episode_id}", response_model=EpisodeView)
def get_episode(episode_id: str):
    result = get_query().get_episode(episode_id)
    if isinstance(result, Unavailable):
        return _unavailable_response(result)
    if isinstance(result, NotFound):
        return JSONResponse(status_code=404, content={"error": result.message})
    return EpisodeView.from_episode(result)


@public_router.get("/sources", response_model=SourceList)
def list_sources(category: str | None = Query(None, description="Filter by category")):
    """List podcast sources from the latest OPML snapshot."""
    result = get_query().list_sources(category=category)
    if isinstance(result, Unavailable):
        return _unavailable_response(result)
    return result


@public_router.get("/status")
def status():
    result = get_query().get_status()
    if isinstance(result, Unavailable):
        return JSONResponse(
            status_code=503, content={"status": "unavailable", "message": result.message}
        )
    return {
        "status": "ok",
        "episodes": {"count": result.episode_count, "lastSync": result.last_episodes_sync},
        "sources": {"count": result.source_count, "lastSync": result.last_sources_sync},
    }


class SettingsUpdate(CamelModel):
    episodes_url: str = Field(default="", description="Override for the episode list URL")
    opml_url: str = Field(default="", description="Override for the OPML URL")


admin_router = APIRouter(tags=["management"])


def _redirect(query: str) -> RedirectResponse:
    return RedirectResponse(f"{get_settings().sync.mount_path}?{query}", status_code=303)


def _redirect_error(message: str) -> RedirectResponse:
    return _redirect(f"error={quote(message)}")


def _redirect_run(result: SyncRunResult, done: str) -> RedirectResponse:
    if result.error:
        return _redirect_error(result.error)
    return _redirect(done)


@admin_router.get("")
async def dashboard():
    """Sync statistics and configuration for the operator dashboard."""
    settings = get_settings()
    scheduler = get_scheduler()
    result = await asyncio.to_thread(get_query().get_status)
    if isinstance(result, Unavailable):
        return _unavailable_response(result)

    urls = await resolve_urls(get_store(), settings.sync)
    return {
        "stats": result.model_dump(mode="json", by_alias=True),
        "config": {
            "episodesUrl": "Configured" if urls.episodes_url else "Not set",
            "opmlUrl": "Configured" if urls.opml_url else "Not set",
            "syncInterval": settings.sync.sync_interval,
        },
        "running": scheduler.running,
    }


@admin_router.post("/settings")
def update_settings(update: SettingsUpdate):
    try:
        save_settings(get_store(), update.episodes_url, update.opml_url)
    except StoreUnavailable as e:
        return _unavailable_response(Unavailable(message=str(e)))
    return _redirect("saved=true")


@admin_router.post("/sync")
async def sync():
    """Run a sync now."""
    result = await get_scheduler().trigger()
    return _redirect_run(result, "synced=true")


@admin_router.post("/clear-resync")
async def clear_resync():
    """Drop cached episodes, sources and sync metadata, then sync from scratch."""
    try:
        result = await get_scheduler().clear_and_resync()
    except StoreUnavailable as e:
        return _unavailable_response(Unavailable(message=str(e)))
    return _redirect_run(result, "cleared=true")


app = FastAPI(
    title="Podroll",
    description="Podcast roll - cached episodes and OPML sources",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled API error", path=request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc)})


_mount_path = get_settings().sync.mount_path
app.include_router(public_router, prefix=_mount_path)
app.include_router(admin_router, prefix=_mount_path)
