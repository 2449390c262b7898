"""Read-only queries over the cached store.

Every operation returns an ``Unavailable`` result instead of raising when
the store cannot be reached. Reads never wait on a sync run and may see a
partially applied batch.
"""

from datetime import datetime

import structlog
from pydantic import BaseModel

from podroll.ingestion.normalizer import CamelModel, Enclosure, Episode, Source
from podroll.storage import (
    META_EPISODES_SYNC,
    META_SOURCES_SYNC,
    PodrollStore,
    StoreUnavailable,
)

logger = structlog.get_logger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


class Unavailable(BaseModel):
    message: str = "Database not available"


class NotFound(BaseModel):
    id: str
    message: str = "Episode not found"


class PodcastRef(CamelModel):
    title: str
    url: str
    feed_url: str


class EpisodeView(CamelModel):
    """API representation of an episode."""

    id: str
    title: str
    url: str
    published: datetime
    content: str
    author: str
    enclosure: Enclosure | None
    podcast: PodcastRef | None
    categories: list[str]

    @classmethod
    def from_episode(cls, episode: Episode) -> "EpisodeView":
        podcast = None
        if episode.origin is not None:
            podcast = PodcastRef(
                title=episode.origin.title,
                url=episode.origin.html_url,
                feed_url=episode.origin.feed_url,
            )
        return cls(
            id=episode.id,
            title=episode.title,
            url=episode.url,
            published=episode.published,
            content=episode.content,
            author=episode.author,
            enclosure=episode.enclosure,
            podcast=podcast,
            categories=episode.categories,
        )


class EpisodePage(CamelModel):
    items: list[EpisodeView]
    total: int
    limit: int
    offset: int
    has_more: bool


class SourceView(CamelModel):
    title: str
    xml_url: str
    html_url: str
    category: str


class SourceList(CamelModel):
    items: list[SourceView]
    total: int
    categories: list[str] | None


class StoreStatus(CamelModel):
    episode_count: int
    source_count: int
    last_episodes_sync: datetime | None
    last_sources_sync: datetime | None


def clamp_paging(limit: int | None, offset: int | None) -> tuple[int, int]:
    """Apply the default and maximum page size; negative offsets become 0."""
    limit = limit if limit and limit > 0 else DEFAULT_LIMIT
    return min(limit, MAX_LIMIT), max(offset or 0, 0)


class QueryService:
    """Serves paginated and filtered reads of episodes and sources."""

    def __init__(self, store: PodrollStore) -> None:
        self.store = store
        self.logger = logger.bind(component="query")

    def list_episodes(
        self,
        limit: int | None = DEFAULT_LIMIT,
        offset: int | None = 0,
        source: str | None = None,
    ) -> EpisodePage | Unavailable:
        """List episodes newest first, optionally filtered by podcast title."""
        limit, offset = clamp_paging(limit, offset)
        try:
            episodes, total = self.store.list_episodes(limit=limit, offset=offset, source=source)
        except StoreUnavailable as e:
            return self._unavailable(e)

        return EpisodePage(
            items=[EpisodeView.from_episode(ep) for ep in episodes],
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(episodes) < total,
        )

    def get_episode(self, episode_id: str) -> Episode | NotFound | Unavailable:
        try:
            episode = self.store.get_episode(episode_id)
        except StoreUnavailable as e:
            return self._unavailable(e)
        return episode if episode is not None else NotFound(id=episode_id)

    def list_sources(self, category: str | None = None) -> SourceList | Unavailable:
        """List sources by (category, OPML order) with the distinct categories."""
        try:
            sources: list[Source] = self.store.list_sources(category=category)
        except StoreUnavailable as e:
            return self._unavailable(e)

        categories = list(dict.fromkeys(s.category for s in sources if s.category))
        return SourceList(
            items=[
                SourceView(
                    title=s.title, xml_url=s.xml_url, html_url=s.html_url, category=s.category
                )
                for s in sources
            ],
            total=len(sources),
            categories=categories or None,
        )

    def get_status(self) -> StoreStatus | Unavailable:
        try:
            episodes_meta = self.store.get_meta(META_EPISODES_SYNC)
            sources_meta = self.store.get_meta(META_SOURCES_SYNC)
            return StoreStatus(
                episode_count=self.store.count_episodes(),
                source_count=self.store.count_sources(),
                last_episodes_sync=episodes_meta.timestamp if episodes_meta else None,
                last_sources_sync=sources_meta.timestamp if sources_meta else None,
            )
        except StoreUnavailable as e:
            return self._unavailable(e)

    def _unavailable(self, error: StoreUnavailable) -> Unavailable:
        self.logger.warning("Store unavailable", error=str(error))
        return Unavailable(message=str(error))
