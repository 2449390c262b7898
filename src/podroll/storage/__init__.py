"""Storage module using SQLAlchemy for the cached episodes, sources and sync metadata."""

import enum
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import Engine, create_engine, delete, func, select
from sqlalchemy.exc import ArgumentError, DatabaseError, NoSuchModuleError
from sqlalchemy.orm import Session, sessionmaker

from podroll.config import get_settings
from podroll.ingestion.normalizer import Episode, Source
from podroll.storage.models import Base, EpisodeRecord, MetaRecord, SourceRecord

logger = structlog.get_logger(__name__)

META_EPISODES_SYNC = "lastEpisodesSync"
META_SOURCES_SYNC = "lastSourcesSync"
META_SETTINGS = "settings"


class StoreUnavailable(Exception):
    """Raised when no database is configured or it cannot be reached."""

    pass


class UpsertOutcome(enum.Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class SyncMeta(BaseModel):
    """A keyed metadata record."""

    key: str
    timestamp: datetime
    data: dict[str, Any] = Field(default_factory=dict)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we write is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class PodrollStore:
    """SQLAlchemy wrapper owning the episode, source and meta collections.

    Every public method runs in its own short transaction, so each episode
    upsert is atomic on its own and readers never wait on a whole sync run.
    """

    def __init__(self, database_url: str | None = None) -> None:
        """Initialize the store.

        Args:
            database_url: SQLAlchemy URL. Defaults to ``storage.url`` from
                settings; an empty string means no store is configured.
        """
        self.database_url = (
            database_url if database_url is not None else get_settings().storage.url
        )
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None
        self.logger = logger.bind(component="store")

    @property
    def engine(self) -> Engine:
        """Lazy-initialize the engine and create tables on first use."""
        if self._engine is None:
            if not self.database_url:
                raise StoreUnavailable("Database not configured")
            try:
                connect_args = (
                    {"check_same_thread": False}
                    if self.database_url.startswith("sqlite")
                    else {}
                )
                engine = create_engine(self.database_url, connect_args=connect_args)
                Base.metadata.create_all(engine)
            except (ArgumentError, NoSuchModuleError, DatabaseError) as e:
                raise StoreUnavailable(f"Database not available: {e}") from e
            self._engine = engine
            self.logger.info("Database ready", url=engine.url.render_as_string())
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        """Session factory bound to the lazily created engine."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except DatabaseError as e:
            session.rollback()
            raise StoreUnavailable(f"Database not available: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Dispose the engine and its connection pool."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None

    # Episodes

    def upsert_episode(self, episode: Episode) -> UpsertOutcome:
        """Insert or fully replace an episode keyed by its id.

        Returns:
            UNCHANGED if the stored content (ignoring ``fetched_at``) is
            identical; nothing is written in that case.
        """
        data = episode.model_dump(mode="json")
        with self._session() as session:
            record = session.get(EpisodeRecord, episode.id)
            if record is None:
                session.add(
                    EpisodeRecord(
                        id=episode.id,
                        published=episode.published,
                        origin_title=episode.origin.title if episode.origin else None,
                        data=data,
                        fetched_at=episode.fetched_at,
                    )
                )
                return UpsertOutcome.INSERTED

            existing = {k: v for k, v in record.data.items() if k != "fetched_at"}
            if existing == episode.content_key():
                return UpsertOutcome.UNCHANGED

            record.published = episode.published
            record.origin_title = episode.origin.title if episode.origin else None
            record.data = data
            record.fetched_at = episode.fetched_at
            return UpsertOutcome.UPDATED

    def get_episode(self, episode_id: str) -> Episode | None:
        with self._session() as session:
            record = session.get(EpisodeRecord, episode_id)
            return Episode.model_validate(record.data) if record else None

    def list_episodes(
        self, limit: int, offset: int = 0, source: str | None = None
    ) -> tuple[list[Episode], int]:
        """Page through episodes, newest first.

        Args:
            limit: Page size.
            offset: Rows to skip.
            source: Case-insensitive substring of the origin title.

        Returns:
            The page and the total number of matching episodes.
        """
        stmt = select(EpisodeRecord)
        if source:
            stmt = stmt.where(EpisodeRecord.origin_title.icontains(source, autoescape=True))

        with self._session() as session:
            total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
            records = session.scalars(
                stmt.order_by(EpisodeRecord.published.desc(), EpisodeRecord.id)
                .offset(offset)
                .limit(limit)
            ).all()
            return [Episode.model_validate(r.data) for r in records], total

    def count_episodes(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(EpisodeRecord)) or 0

    # Sources

    def replace_sources(self, sources: list[Source]) -> int:
        """Replace the whole source set with a fresh OPML snapshot."""
        with self._session() as session:
            session.execute(delete(SourceRecord))
            session.add_all(
                SourceRecord(
                    title=s.title,
                    xml_url=s.xml_url,
                    html_url=s.html_url,
                    type=s.type,
                    category=s.category,
                    order=s.order,
                    fetched_at=s.fetched_at,
                )
                for s in sources
            )
        self.logger.info("Replaced sources", count=len(sources))
        return len(sources)

    def list_sources(self, category: str | None = None) -> list[Source]:
        """List sources ordered by category, then original OPML position."""
        stmt = select(SourceRecord)
        if category:
            stmt = stmt.where(SourceRecord.category.icontains(category, autoescape=True))

        with self._session() as session:
            records = session.scalars(
                stmt.order_by(SourceRecord.category, SourceRecord.order)
            ).all()
            return [
                Source(
                    title=r.title,
                    xml_url=r.xml_url,
                    html_url=r.html_url,
                    type=r.type,
                    category=r.category,
                    order=r.order,
                    fetched_at=_as_utc(r.fetched_at),
                )
                for r in records
            ]

    def count_sources(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(SourceRecord)) or 0

    # Meta

    def get_meta(self, key: str) -> SyncMeta | None:
        with self._session() as session:
            record = session.get(MetaRecord, key)
            if record is None:
                return None
            return SyncMeta(key=record.key, timestamp=_as_utc(record.timestamp), data=record.data)

    def put_meta(
        self, key: str, data: dict[str, Any], timestamp: datetime | None = None
    ) -> SyncMeta:
        """Create or overwrite the metadata record for ``key``."""
        timestamp = timestamp or datetime.now(UTC)
        with self._session() as session:
            record = session.get(MetaRecord, key)
            if record is None:
                session.add(MetaRecord(key=key, timestamp=timestamp, data=data))
            else:
                record.timestamp = timestamp
                record.data = data
        return SyncMeta(key=key, timestamp=timestamp, data=data)

    def clear(self, preserve: tuple[str, ...] = (META_SETTINGS,)) -> None:
        """Delete all episodes, sources and meta records except ``preserve`` keys."""
        with self._session() as session:
            session.execute(delete(EpisodeRecord))
            session.execute(delete(SourceRecord))
            session.execute(delete(MetaRecord).where(MetaRecord.key.not_in(preserve)))
        self.logger.info("Cleared cache", preserved=list(preserve))


__all__ = [
    "PodrollStore",
    "StoreUnavailable",
    "SyncMeta",
    "UpsertOutcome",
    "META_EPISODES_SYNC",
    "META_SOURCES_SYNC",
    "META_SETTINGS",
]
