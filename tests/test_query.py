"""Tests for the read-only QueryService."""

from conftest import make_episode, make_source

from podroll.ingestion.normalizer import Enclosure
from podroll.query import (
    EpisodePage,
    NotFound,
    QueryService,
    SourceList,
    StoreStatus,
    Unavailable,
)
from podroll.storage import META_EPISODES_SYNC, PodrollStore


def _seed_episodes(store: PodrollStore, count: int = 5) -> None:
    for i in range(count):
        store.upsert_episode(make_episode(i))


class TestListEpisodes:
    def test_pages_are_disjoint_and_ordered(self, store) -> None:
        _seed_episodes(store)
        query = QueryService(store)

        first = query.list_episodes(limit=2, offset=0)
        second = query.list_episodes(limit=2, offset=2)
        both = query.list_episodes(limit=4, offset=0)

        assert [ep.id for ep in first.items] == ["ep-4", "ep-3"]
        assert [ep.id for ep in second.items] == ["ep-2", "ep-1"]
        assert [ep.id for ep in first.items + second.items] == [ep.id for ep in both.items]
        assert first.has_more
        assert second.has_more

    def test_last_page_has_no_more(self, store) -> None:
        _seed_episodes(store)

        page = QueryService(store).list_episodes(limit=2, offset=4)

        assert [ep.id for ep in page.items] == ["ep-0"]
        assert page.total == 5
        assert not page.has_more

    def test_limit_defaults_and_cap(self, store) -> None:
        query = QueryService(store)

        assert query.list_episodes(limit=None).limit == 50
        assert query.list_episodes(limit=0).limit == 50
        assert query.list_episodes(limit=1000).limit == 200
        assert query.list_episodes(offset=-3).offset == 0

    def test_source_filter(self, store) -> None:
        store.upsert_episode(make_episode(1, podcast="Syntax"))
        store.upsert_episode(make_episode(2, podcast="The Changelog"))

        page = QueryService(store).list_episodes(source="syn")

        assert isinstance(page, EpisodePage)
        assert [ep.id for ep in page.items] == ["ep-1"]
        assert page.total == 1

    def test_view_shape(self, store) -> None:
        store.upsert_episode(
            make_episode(1, enclosure=Enclosure(url="https://cdn.example/a&b.mp3", length=10))
        )

        data = QueryService(store).list_episodes().model_dump(mode="json", by_alias=True)

        item = data["items"][0]
        assert item["podcast"] == {
            "title": "Example Podcast",
            "url": "https://example.com",
            "feedUrl": "",
        }
        assert item["enclosure"]["url"] == "https://cdn.example/a&b.mp3"
        assert data["hasMore"] is False


class TestGetEpisode:
    def test_found(self, store) -> None:
        store.upsert_episode(make_episode(1))
        assert QueryService(store).get_episode("ep-1").title == "Episode 1"

    def test_not_found(self, store) -> None:
        result = QueryService(store).get_episode("missing")
        assert isinstance(result, NotFound)
        assert result.id == "missing"


class TestListSources:
    def test_categories_and_order(self, store) -> None:
        store.replace_sources(
            [
                make_source(0, category="Tech"),
                make_source(1, category="Tech"),
                make_source(2, category=""),
            ]
        )

        result = QueryService(store).list_sources()

        assert isinstance(result, SourceList)
        assert result.total == 3
        assert result.categories == ["Tech"]
        assert [s.category for s in result.items] == ["", "Tech", "Tech"]

    def test_no_categories_is_none(self, store) -> None:
        store.replace_sources([make_source(0)])
        assert QueryService(store).list_sources().categories is None

    def test_category_filter(self, store) -> None:
        store.replace_sources([make_source(0, category="Tech"), make_source(1, category="News")])

        result = QueryService(store).list_sources(category="NEW")

        assert [s.title for s in result.items] == ["Show 1"]
        assert result.categories == ["News"]


class TestGetStatus:
    def test_counts_and_last_sync(self, store) -> None:
        _seed_episodes(store, 2)
        store.replace_sources([make_source(0)])
        meta = store.put_meta(META_EPISODES_SYNC, {"episodeCount": 2})

        status = QueryService(store).get_status()

        assert isinstance(status, StoreStatus)
        assert status.episode_count == 2
        assert status.source_count == 1
        assert status.last_episodes_sync == meta.timestamp
        assert status.last_sources_sync is None


class TestUnavailable:
    def test_every_operation_returns_unavailable(self) -> None:
        query = QueryService(PodrollStore(""))

        assert isinstance(query.list_episodes(), Unavailable)
        assert isinstance(query.get_episode("x"), Unavailable)
        assert isinstance(query.list_sources(), Unavailable)
        assert isinstance(query.get_status(), Unavailable)


class TestCorruptDatabase:
    def test_status_is_unavailable(self, tmp_path) -> None:
        path = tmp_path / "podroll.db"
        path.write_bytes(b"this is not a sqlite database" * 64)

        result = QueryService(PodrollStore(f"sqlite:///{path}")).get_status()

        assert isinstance(result, Unavailable)
