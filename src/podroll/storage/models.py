"""SQLAlchemy ORM models for the cached episodes, sources and sync metadata."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class EpisodeRecord(Base):
    """Cached episode.

    The full canonical episode lives in ``data``; ``published`` and
    ``origin_title`` are copied out as columns for sorting and filtering.
    """

    __tablename__ = "podroll_episodes"

    id: Mapped[str] = mapped_column(String(512), primary_key=True)
    published: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    origin_title: Mapped[Optional[str]] = mapped_column(String(512))
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_podroll_episodes_published", "published"),)


class SourceRecord(Base):
    """Feed entry from the latest OPML snapshot."""

    __tablename__ = "podroll_sources"

    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    xml_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    html_url: Mapped[str] = mapped_column(String(2048), default="")
    type: Mapped[str] = mapped_column(String(32), default="rss")
    category: Mapped[str] = mapped_column(String(512), default="")
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class MetaRecord(Base):
    """Keyed sync metadata (``lastEpisodesSync``, ``lastSourcesSync``, ``settings``)."""

    __tablename__ = "podroll_meta"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
