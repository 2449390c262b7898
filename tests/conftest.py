"""Pytest configuration and shared fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from podroll.config import SyncSettings
from podroll.ingestion.normalizer import Episode, Origin, Source
from podroll.storage import PodrollStore

SAMPLE_OPML = """<?xml version="1.0" encoding="UTF-8"?>
<opml version="2.0">
  <head><title>Subscriptions</title></head>
  <body>
    <outline text="Tech" title="Tech">
      <outline text="Syntax" type="rss" xmlUrl="https://feed.syntax.fm/rss" htmlUrl="https://syntax.fm"/>
      <outline title="Changelog" xmlUrl="https://changelog.com/podcast/feed"/>
    </outline>
    <outline text="Standalone Show" xmlUrl="https://example.com/standalone.xml"/>
  </body>
</opml>
"""


@pytest.fixture
def sample_raw_item() -> dict:
    """A greader item as returned by the aggregator."""
    return {
        "id": "tag:google.com,2005:reader/item/0006123",
        "frss:id": "1700000000123456",
        "guid": "https://example.com/episodes/42",
        "title": "Episode 42: Shipping It",
        "published": 1700000000,
        "canonical": [{"href": "https://example.com/episodes/42?a=1&amp;b=2"}],
        "alternate": [{"href": "https://example.com/alt/42"}],
        "summary": {"content": "<p>Short</p>"},
        "content": {"content": "<p>The full show notes for episode 42.</p>"},
        "author": "Jane Host",
        "enclosure": [
            {
                "href": "https://cdn.example/a&amp;b.mp3",
                "type": "audio/mpeg",
                "length": "12345",
            }
        ],
        "origin": {
            "streamId": "feed/12",
            "title": "Example Podcast",
            "htmlUrl": "https://example.com",
            "feedUrl": "https://example.com/feed.xml",
        },
        "categories": ["user/-/state/com.google/reading-list", "tech"],
    }


@pytest.fixture
def sample_opml() -> str:
    return SAMPLE_OPML


@pytest.fixture
def sync_config() -> SyncSettings:
    return SyncSettings(
        episodes_url="https://aggregator.test/greader",
        opml_url="https://aggregator.test/opml",
        sync_interval=60_000,
        initial_delay=0,
        fetch_count=50,
        max_episodes=10,
        fetch_timeout=1_000,
    )


@pytest.fixture
def store(tmp_path: Path):
    """A store backed by a temporary SQLite file."""
    store = PodrollStore(f"sqlite:///{tmp_path / 'podroll.db'}")
    yield store
    store.close()


def make_episode(index: int, podcast: str = "Example Podcast", **overrides) -> Episode:
    """Build an episode published ``index`` hours after a fixed epoch."""
    fields = {
        "id": f"ep-{index}",
        "guid": f"guid-{index}",
        "title": f"Episode {index}",
        "url": f"https://example.com/{index}",
        "published": datetime(2024, 1, 1, tzinfo=UTC) + timedelta(hours=index),
        "content": f"<p>Notes {index}</p>",
        "origin": Origin(title=podcast, html_url="https://example.com"),
    }
    fields.update(overrides)
    return Episode(**fields)


def make_source(index: int, category: str = "", **overrides) -> Source:
    fields = {
        "title": f"Show {index}",
        "xml_url": f"https://example.com/{index}.xml",
        "category": category,
        "order": index,
    }
    fields.update(overrides)
    return Source(**fields)
