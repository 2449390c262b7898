"""Aggregator ingestion: remote fetchers and record normalization."""

from podroll.ingestion.fetcher import FetchError, RemoteFetcher
from podroll.ingestion.normalizer import (
    Enclosure,
    Episode,
    Origin,
    ParseError,
    Source,
    decode_html_entities,
    normalize_episode,
    normalize_episodes,
    parse_opml,
)

__all__ = [
    "RemoteFetcher",
    "FetchError",
    "ParseError",
    "Episode",
    "Enclosure",
    "Origin",
    "Source",
    "decode_html_entities",
    "normalize_episode",
    "normalize_episodes",
    "parse_opml",
]
