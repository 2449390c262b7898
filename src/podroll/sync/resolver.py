"""Effective sync URLs: operator overrides persisted in the store win over static config."""

import asyncio
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel

from podroll.config import SyncSettings
from podroll.storage import META_SETTINGS, PodrollStore, StoreUnavailable, SyncMeta

logger = structlog.get_logger(__name__)


class EffectiveUrls(BaseModel):
    episodes_url: str = ""
    opml_url: str = ""


def merge_urls(config: SyncSettings, meta: SyncMeta | None) -> EffectiveUrls:
    """Overlay non-empty ``settings`` fields onto the static config."""
    overrides = meta.data if meta else {}
    return EffectiveUrls(
        episodes_url=overrides.get("episodesUrl") or config.episodes_url,
        opml_url=overrides.get("opmlUrl") or config.opml_url,
    )


async def resolve_urls(store: PodrollStore, config: SyncSettings) -> EffectiveUrls:
    """Resolve the URLs a sync run should use.

    A missing settings record, or any storage failure, silently falls back
    to the static configuration.
    """
    try:
        meta = await asyncio.to_thread(store.get_meta, META_SETTINGS)
    except StoreUnavailable as e:
        logger.warning("Settings unavailable, using static config", error=str(e))
        meta = None
    return merge_urls(config, meta)


def save_settings(store: PodrollStore, episodes_url: str, opml_url: str) -> SyncMeta:
    """Persist operator URL overrides. Empty values defer to static config.

    Raises:
        StoreUnavailable: If the store cannot be reached.
    """
    meta = store.put_meta(
        META_SETTINGS,
        {"episodesUrl": episodes_url.strip(), "opmlUrl": opml_url.strip()},
        datetime.now(UTC),
    )
    logger.info(
        "Saved settings",
        episodes_url_set=bool(meta.data["episodesUrl"]),
        opml_url_set=bool(meta.data["opmlUrl"]),
    )
    return meta
