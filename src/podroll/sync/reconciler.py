"""Reconciliation of normalized records into the store.

Episodes are upserted one at a time and never deleted. Sources are
replaced wholesale by each OPML snapshot. Store calls are blocking, so
they run in worker threads to keep the event loop free for API reads.
"""

import asyncio
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel

from podroll.ingestion.normalizer import Episode, Source
from podroll.storage import (
    META_EPISODES_SYNC,
    META_SOURCES_SYNC,
    PodrollStore,
    UpsertOutcome,
)

logger = structlog.get_logger(__name__)


class EpisodeReconcileStats(BaseModel):
    total: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0


class SourceReconcileStats(BaseModel):
    total: int = 0


class Reconciler:
    """Sole writer of episodes, sources and sync metadata."""

    def __init__(self, store: PodrollStore) -> None:
        self.store = store
        self.logger = logger.bind(component="reconciler")

    async def reconcile_episodes(
        self, episodes: list[Episode], max_episodes: int
    ) -> EpisodeReconcileStats:
        """Upsert the head of the batch and record a ``lastEpisodesSync`` entry.

        Args:
            episodes: Normalized episodes in upstream order.
            max_episodes: Cap applied before any diffing; the first N win.

        Returns:
            EpisodeReconcileStats: Insert/update split for this run.

        Raises:
            StoreUnavailable: If the store cannot be reached. Upserts already
                applied stay applied; the next run re-applies the batch.
        """
        batch = episodes[:max_episodes]
        stats = EpisodeReconcileStats(total=len(batch))

        for episode in batch:
            outcome = await asyncio.to_thread(self.store.upsert_episode, episode)
            if outcome is UpsertOutcome.INSERTED:
                stats.inserted += 1
            elif outcome is UpsertOutcome.UPDATED:
                stats.updated += 1
            else:
                stats.unchanged += 1

        await asyncio.to_thread(
            self.store.put_meta,
            META_EPISODES_SYNC,
            {
                "episodeCount": stats.total,
                "inserted": stats.inserted,
                "updated": stats.updated,
            },
            datetime.now(UTC),
        )

        self.logger.info(
            "Synced episodes",
            total=stats.total,
            inserted=stats.inserted,
            updated=stats.updated,
            dropped=len(episodes) - len(batch),
        )
        return stats

    async def reconcile_sources(self, sources: list[Source]) -> SourceReconcileStats:
        """Replace the stored source set and record a ``lastSourcesSync`` entry."""
        count = await asyncio.to_thread(self.store.replace_sources, sources)
        await asyncio.to_thread(
            self.store.put_meta,
            META_SOURCES_SYNC,
            {"sourceCount": count},
            datetime.now(UTC),
        )
        self.logger.info("Synced sources", total=count)
        return SourceReconcileStats(total=count)
