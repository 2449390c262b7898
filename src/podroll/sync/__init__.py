"""Sync engine: reconciliation, URL resolution and the background scheduler."""

from podroll.sync.reconciler import EpisodeReconcileStats, Reconciler, SourceReconcileStats
from podroll.sync.resolver import EffectiveUrls, resolve_urls, save_settings
from podroll.sync.scheduler import PipelineResult, SyncRunResult, SyncScheduler

__all__ = [
    "Reconciler",
    "EpisodeReconcileStats",
    "SourceReconcileStats",
    "EffectiveUrls",
    "resolve_urls",
    "save_settings",
    "SyncScheduler",
    "SyncRunResult",
    "PipelineResult",
]
