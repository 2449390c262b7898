"""Background sync scheduler.

One run procedure (resolve URLs, fetch, normalize, reconcile) is driven by
three triggers: a single delayed run at startup, a fixed interval timer,
and manual calls from the management API or CLI. A single-flight lock
guarantees at most one run at a time; overlapping triggers are refused
with an "already running" result instead of queueing a second fetch.
"""

import asyncio
import contextlib
import uuid
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, Field

from podroll.config import SyncSettings
from podroll.ingestion import (
    FetchError,
    ParseError,
    RemoteFetcher,
    normalize_episodes,
    parse_opml,
)
from podroll.storage import PodrollStore, StoreUnavailable
from podroll.sync.reconciler import Reconciler
from podroll.sync.resolver import resolve_urls

logger = structlog.get_logger(__name__)


class PipelineResult(BaseModel):
    """Outcome of one pipeline (episodes or sources) within a run."""

    stage: str
    success: bool
    skipped: bool = False
    total: int = 0
    inserted: int | None = None
    updated: int | None = None
    error: str | None = None
    cause: str | None = None


class SyncRunResult(BaseModel):
    """Combined outcome of a sync run."""

    trigger: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    already_running: bool = False
    episodes: PipelineResult | None = None
    sources: PipelineResult | None = None

    @property
    def success(self) -> bool:
        if self.already_running or self.episodes is None or self.sources is None:
            return False
        return self.episodes.success and self.sources.success

    @property
    def error(self) -> str | None:
        """First error message of the run, if any."""
        if self.already_running:
            return "Sync already running"
        for result in (self.episodes, self.sources):
            if result is not None and result.error:
                return f"{result.stage}: {result.error}"
        return None


def _failure(stage: str, error: Exception) -> PipelineResult:
    if isinstance(error, FetchError):
        cause = error.cause
    elif isinstance(error, ParseError):
        cause = "parse"
    else:
        cause = "store"
    logger.error("Sync pipeline failed", stage=stage, cause=cause, error=str(error))
    return PipelineResult(stage=stage, success=False, error=str(error), cause=cause)


class SyncScheduler:
    """Lifecycle object owning the sync timers and the single-flight guard."""

    def __init__(
        self,
        store: PodrollStore,
        config: SyncSettings,
        fetcher: RemoteFetcher | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: Cache store written by the reconciler.
            config: Static sync configuration (URLs, interval, caps, timeouts).
            fetcher: Remote fetcher; one with the configured User-Agent is
                created if omitted.
        """
        self.store = store
        self.config = config
        self.fetcher = fetcher or RemoteFetcher(user_agent=config.user_agent)
        self.reconciler = Reconciler(store)
        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []
        self.last_result: SyncRunResult | None = None
        self.logger = logger.bind(component="scheduler")

    @property
    def running(self) -> bool:
        """True while a sync run is in progress."""
        return self._lock.locked()

    @property
    def started(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """Schedule the initial delayed run and the interval timer.

        Must be called from within a running event loop.
        """
        if self.started:
            self.logger.warning("Background sync already started")
            return
        self._tasks = [
            asyncio.create_task(self._initial_run(), name="podroll-initial-sync"),
            asyncio.create_task(self._interval_loop(), name="podroll-interval-sync"),
        ]
        self.logger.info(
            "Background sync started",
            interval_s=self.config.sync_interval / 1000,
            initial_delay_s=self.config.initial_delay / 1000,
        )

    async def stop(self) -> None:
        """Cancel the timers. A run in progress is cancelled with them."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        self.logger.info("Background sync stopped")

    async def trigger(self) -> SyncRunResult:
        """Manual trigger; refused if a run is already in flight."""
        return await self.run_once(trigger="manual")

    async def run_once(self, trigger: str = "manual") -> SyncRunResult:
        """Run one sync unless another run holds the single-flight lock."""
        if self._lock.locked():
            self.logger.info("Sync already running, skipping", trigger=trigger)
            return SyncRunResult(trigger=trigger, already_running=True)
        async with self._lock:
            return await self._run(trigger)

    async def clear_and_resync(self) -> SyncRunResult:
        """Delete cached episodes, sources and meta (keeping settings), then sync.

        Raises:
            StoreUnavailable: If the cache cannot be cleared.
        """
        if self._lock.locked():
            self.logger.info("Sync already running, not clearing")
            return SyncRunResult(trigger="clear-resync", already_running=True)
        async with self._lock:
            await asyncio.to_thread(self.store.clear)
            self.logger.info("Cleared all data, starting fresh sync")
            return await self._run("clear-resync")

    async def _run(self, trigger: str) -> SyncRunResult:
        with structlog.contextvars.bound_contextvars(run_id=uuid.uuid4().hex[:8], trigger=trigger):
            self.logger.info("Running sync")
            urls = await resolve_urls(self.store, self.config)
            episodes, sources = await asyncio.gather(
                self._sync_episodes(urls.episodes_url),
                self._sync_sources(urls.opml_url),
            )
            result = SyncRunResult(trigger=trigger, episodes=episodes, sources=sources)
            self.last_result = result
            self.logger.info("Sync finished", success=result.success)
            return result

    async def _sync_episodes(self, url: str) -> PipelineResult:
        if not url:
            return PipelineResult(
                stage="episodes", success=False, error="No episodesUrl configured"
            )
        try:
            items = await self.fetcher.fetch_episodes(
                url, self.config.fetch_timeout, self.config.fetch_count
            )
            episodes = normalize_episodes(items)
            stats = await self.reconciler.reconcile_episodes(episodes, self.config.max_episodes)
        except (FetchError, ParseError, StoreUnavailable) as e:
            return _failure("episodes", e)

        return PipelineResult(
            stage="episodes",
            success=True,
            total=stats.total,
            inserted=stats.inserted,
            updated=stats.updated,
        )

    async def _sync_sources(self, url: str) -> PipelineResult:
        if not url:
            return PipelineResult(stage="sources", success=True, skipped=True)
        try:
            xml_text = await self.fetcher.fetch_sources(url, self.config.fetch_timeout)
            sources = parse_opml(xml_text)
            stats = await self.reconciler.reconcile_sources(sources)
        except (FetchError, ParseError, StoreUnavailable) as e:
            return _failure("sources", e)

        return PipelineResult(stage="sources", success=True, total=stats.total)

    async def _initial_run(self) -> None:
        await asyncio.sleep(self.config.initial_delay / 1000)
        await self._scheduled_run("initial")

    async def _interval_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sync_interval / 1000)
            await self._scheduled_run("scheduled")

    async def _scheduled_run(self, trigger: str) -> None:
        # The timer must outlive a failing run; the next tick is the retry.
        try:
            await self.run_once(trigger=trigger)
        except Exception:
            self.logger.exception("Unexpected error in scheduled sync", trigger=trigger)
