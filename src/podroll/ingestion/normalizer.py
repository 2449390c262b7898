"""Normalization of aggregator records into canonical episodes and sources.

Two input shapes are supported: the greader-style JSON item list served by
the aggregator, and an OPML outline tree. Everything here is pure; no I/O.
"""

import hashlib
import xml.etree.ElementTree as ET
from datetime import UTC, datetime
from typing import Annotated, Any

import structlog
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

logger = structlog.get_logger(__name__)

SHORT_ID_LENGTH = 12

# Order matters: "&amp;" first so "&amp;lt;" decodes exactly one level.
_HTML_ENTITIES = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)


class ParseError(ValueError):
    """Raised when an upstream payload is not well-formed JSON or XML."""

    pass


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys for API consumers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Enclosure(CamelModel):
    """Audio attachment of an episode."""

    url: str = Field(description="Media URL (entity-decoded)")
    type: str = Field(default="audio/mpeg", description="MIME type")
    length: int = Field(default=0, description="Size in bytes")


class Origin(CamelModel):
    """Identity of the feed an episode came from."""

    stream_id: str = ""
    title: str = ""
    html_url: str = ""
    feed_url: str = ""


class Episode(CamelModel):
    """Canonical podcast episode record."""

    id: str = Field(description="Stable identifier, unique key for upserts")
    guid: str = Field(default="", description="Upstream GUID")
    title: str = Field(default="Untitled Episode")
    url: str = Field(default="", description="Canonical link, else first alternate")
    published: datetime = Field(description="Publication time")
    content: str = Field(default="", description="HTML body")
    author: str = ""
    enclosure: Enclosure | None = None
    origin: Origin | None = None
    categories: list[str] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def content_key(self) -> dict[str, Any]:
        """Serialized form without the write timestamp, used for change detection."""
        return self.model_dump(mode="json", exclude={"fetched_at"})


class Source(CamelModel):
    """A feed entry from the OPML subscription list."""

    title: str
    xml_url: str
    html_url: str = ""
    type: str = "rss"
    category: str = ""
    order: int = 0
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# Raw greader records. Every field is optional; presence varies by feed.
# Unusable shapes degrade to "missing" so one odd field never drops an item.


def _text_or_none(value: Any) -> Any:
    if isinstance(value, str):
        return value
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    return None


RawText = Annotated[str | None, BeforeValidator(_text_or_none)]


def _objects_only(value: Any) -> list[Any]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


class RawLink(BaseModel):
    model_config = ConfigDict(extra="ignore")

    href: RawText = None


class RawContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: RawText = None


class RawEnclosure(BaseModel):
    model_config = ConfigDict(extra="ignore")

    href: RawText = None
    url: RawText = None
    type: RawText = None
    length: Any = None


class RawOrigin(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    stream_id: RawText = Field(default=None, alias="streamId")
    title: RawText = None
    html_url: RawText = Field(default=None, alias="htmlUrl")
    feed_url: RawText = Field(default=None, alias="feedUrl")


class RawEpisode(BaseModel):
    """A greader item as delivered by the aggregator."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    provider_id: RawText = Field(default=None, alias="frss:id")
    id: RawText = None
    guid: RawText = None
    title: RawText = None
    published: Any = None
    canonical: list[RawLink] = Field(default_factory=list)
    alternate: list[RawLink] = Field(default_factory=list)
    content: RawContent | None = None
    summary: RawContent | None = None
    author: RawText = None
    enclosure: list[RawEnclosure] = Field(default_factory=list)
    origin: RawOrigin | None = None
    categories: list[str] = Field(default_factory=list)

    @field_validator("canonical", "alternate", "enclosure", mode="before")
    @classmethod
    def _object_list(cls, value: Any) -> list[Any]:
        return _objects_only(value)

    @field_validator("content", "summary", "origin", mode="before")
    @classmethod
    def _object_or_none(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("categories", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [category for category in value if isinstance(category, str)]


def decode_html_entities(value: str | None) -> str | None:
    """Decode the XML entities the aggregator leaves in URLs embedded in JSON."""
    if not value:
        return value
    for entity, char in _HTML_ENTITIES:
        value = value.replace(entity, char)
    return value


def _parse_published(value: Any, now: datetime) -> datetime:
    """Convert Unix-epoch seconds to a datetime, falling back to ``now``."""
    if value is None or isinstance(value, bool):
        return now
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return now
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return now


def _safe_int(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (ValueError, TypeError):
        return 0


def _synthesize_id(raw: RawEpisode) -> str:
    """Derive a stable id for items carrying no identifier at all."""
    link = next((link.href for link in raw.canonical + raw.alternate if link.href), "")
    seed = f"{raw.title or ''}|{link}|{raw.published or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:SHORT_ID_LENGTH]


def normalize_episode(raw: RawEpisode | dict[str, Any], now: datetime | None = None) -> Episode:
    """Transform one greader item into an Episode.

    Args:
        raw: Raw item, either already parsed or as a decoded JSON object.
        now: Fetch time, used for ``fetched_at`` and missing publish dates.

    Returns:
        Episode: Canonical record.

    Raises:
        pydantic.ValidationError: If ``raw`` is a dict of the wrong shape.
    """
    if not isinstance(raw, RawEpisode):
        raw = RawEpisode.model_validate(raw)
    now = now or datetime.now(UTC)

    enclosure = None
    if raw.enclosure:
        first = raw.enclosure[0]
        enclosure = Enclosure(
            url=decode_html_entities(first.href or first.url) or "",
            type=first.type or "audio/mpeg",
            length=_safe_int(first.length),
        )

    origin = None
    if raw.origin is not None:
        origin = Origin(
            stream_id=raw.origin.stream_id or "",
            title=raw.origin.title or "",
            html_url=decode_html_entities(raw.origin.html_url) or "",
            feed_url=decode_html_entities(raw.origin.feed_url) or "",
        )

    url = ""
    if raw.canonical:
        url = raw.canonical[0].href or ""
    elif raw.alternate:
        url = raw.alternate[0].href or ""

    bodies = [body.content for body in (raw.content, raw.summary) if body and body.content]

    return Episode(
        id=raw.provider_id or raw.guid or raw.id or _synthesize_id(raw),
        guid=raw.guid or raw.id or "",
        title=raw.title or "Untitled Episode",
        url=decode_html_entities(url) or "",
        published=_parse_published(raw.published, now),
        content=max(bodies, key=len, default=""),
        author=raw.author or "",
        enclosure=enclosure,
        origin=origin,
        categories=raw.categories,
        fetched_at=now,
    )


def normalize_episodes(items: list[Any], now: datetime | None = None) -> list[Episode]:
    """Normalize a batch, keeping upstream order and dropping malformed items."""
    now = now or datetime.now(UTC)
    episodes = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            logger.warning("Skipping non-object episode item", index=index)
            continue
        try:
            episodes.append(normalize_episode(item, now=now))
        except ValidationError as e:
            logger.warning("Skipping malformed episode item", index=index, error=str(e))
    return episodes


def _outline_source(outline: ET.Element, category: str, now: datetime) -> Source | None:
    xml_url = outline.get("xmlUrl")
    if not xml_url:
        return None
    return Source(
        title=outline.get("text") or outline.get("title") or "Unknown",
        xml_url=xml_url,
        html_url=outline.get("htmlUrl") or "",
        type=outline.get("type") or "rss",
        category=category,
        fetched_at=now,
    )


def parse_opml(xml_text: str, now: datetime | None = None) -> list[Source]:
    """Parse an OPML document into sources in document order.

    Top-level outlines with children are category groups; top-level outlines
    with an ``xmlUrl`` are uncategorized feeds. Anything without an
    ``xmlUrl`` is dropped. Nesting deeper than two levels is not followed.

    Args:
        xml_text: OPML document.
        now: Fetch time stamped on every source.

    Returns:
        list[Source]: Sources with ``order`` set to their document position.

    Raises:
        ParseError: If the document is not well-formed XML.
    """
    now = now or datetime.now(UTC)
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ParseError(f"Malformed OPML: {e}") from e

    # Note: Empty Element is falsy, so we can't use `or` here
    body = root.find("body")
    if body is None:
        return []

    sources: list[Source] = []
    for outline in body.findall("outline"):
        children = outline.findall("outline")
        if children:
            category = outline.get("text") or outline.get("title") or ""
            candidates = [_outline_source(child, category, now) for child in children]
        else:
            candidates = [_outline_source(outline, "", now)]
        sources.extend(source for source in candidates if source is not None)

    for order, source in enumerate(sources):
        source.order = order
    return sources
