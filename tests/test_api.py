"""Tests for the FastAPI app."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_episode, make_source
from fastapi.testclient import TestClient

from podroll.api import app
from podroll.storage import META_EPISODES_SYNC, META_SETTINGS, PodrollStore, StoreUnavailable
from podroll.sync import PipelineResult, SyncRunResult

BASE = "/podrollapi"


@pytest.fixture
def mock_scheduler():
    scheduler = MagicMock()
    scheduler.running = False
    ok = SyncRunResult(
        trigger="manual",
        episodes=PipelineResult(stage="episodes", success=True, total=1, inserted=1, updated=0),
        sources=PipelineResult(stage="sources", success=True, total=0),
    )
    scheduler.trigger = AsyncMock(return_value=ok)
    scheduler.clear_and_resync = AsyncMock(
        return_value=ok.model_copy(update={"trigger": "clear-resync"})
    )
    return scheduler


@pytest.fixture
def client(store, mock_scheduler):
    import podroll.api as api_module

    api_module._store = store
    api_module._scheduler = mock_scheduler
    yield TestClient(app)
    api_module._store = None
    api_module._scheduler = None


@pytest.fixture
def offline_client(mock_scheduler):
    import podroll.api as api_module

    api_module._store = PodrollStore("")
    api_module._scheduler = mock_scheduler
    yield TestClient(app)
    api_module._store = None
    api_module._scheduler = None


class TestEpisodes:
    def test_list_episodes(self, client, store):
        for i in range(3):
            store.upsert_episode(make_episode(i))

        response = client.get(f"{BASE}/api/episodes?limit=2")

        assert response.status_code == 200
        data = response.json()
        assert [item["id"] for item in data["items"]] == ["ep-2", "ep-1"]
        assert data["total"] == 3
        assert data["hasMore"] is True
        assert data["items"][0]["podcast"]["title"] == "Example Podcast"

    def test_list_episodes_source_filter(self, client, store):
        store.upsert_episode(make_episode(1, podcast="Syntax"))
        store.upsert_episode(make_episode(2, podcast="Changelog"))

        response = client.get(f"{BASE}/api/episodes", params={"source": "syntax"})

        assert [item["id"] for item in response.json()["items"]] == ["ep-1"]

    def test_get_episode(self, client, store):
        store.upsert_episode(make_episode(7))

        response = client.get(f"{BASE}/api/episodes/ep-7")

        assert response.status_code == 200
        assert response.json()["title"] == "Episode 7"

    def test_get_episode_not_found(self, client):
        response = client.get(f"{BASE}/api/episodes/nonexistent")
        assert response.status_code == 404
        assert response.json() == {"error": "Episode not found"}

    def test_store_unavailable(self, offline_client):
        response = offline_client.get(f"{BASE}/api/episodes")
        assert response.status_code == 503
        assert "error" in response.json()


class TestSources:
    def test_list_sources(self, client, store):
        store.replace_sources([make_source(0, category="Tech"), make_source(1)])

        response = client.get(f"{BASE}/api/sources")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["categories"] == ["Tech"]
        assert data["items"][1]["xmlUrl"] == "https://example.com/0.xml"

    def test_store_unavailable(self, offline_client):
        assert offline_client.get(f"{BASE}/api/sources").status_code == 503


class TestStatus:
    def test_ok(self, client, store):
        store.upsert_episode(make_episode(1))
        store.put_meta(META_EPISODES_SYNC, {"episodeCount": 1})

        response = client.get(f"{BASE}/api/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["episodes"]["count"] == 1
        assert data["episodes"]["lastSync"] is not None
        assert data["sources"] == {"count": 0, "lastSync": None}

    def test_unavailable(self, offline_client):
        response = offline_client.get(f"{BASE}/api/status")
        assert response.status_code == 503
        assert response.json()["status"] == "unavailable"


class TestManagement:
    def test_dashboard(self, client, store):
        store.upsert_episode(make_episode(1))

        response = client.get(BASE)

        assert response.status_code == 200
        data = response.json()
        assert data["stats"]["episodeCount"] == 1
        assert data["running"] is False
        assert data["config"]["syncInterval"] > 0
        assert data["config"]["episodesUrl"] in ("Configured", "Not set")

    def test_save_settings_redirects(self, client, store):
        response = client.post(
            f"{BASE}/settings",
            json={"episodesUrl": " https://b.test/greader ", "opmlUrl": ""},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert response.headers["location"] == f"{BASE}?saved=true"
        assert store.get_meta(META_SETTINGS).data["episodesUrl"] == "https://b.test/greader"

    def test_sync_redirects(self, client, mock_scheduler):
        response = client.post(f"{BASE}/sync", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == f"{BASE}?synced=true"
        mock_scheduler.trigger.assert_awaited_once()

    def test_sync_already_running_redirects_with_error(self, client, mock_scheduler):
        mock_scheduler.trigger.return_value = SyncRunResult(trigger="manual", already_running=True)

        response = client.post(f"{BASE}/sync", follow_redirects=False)

        assert response.headers["location"] == f"{BASE}?error=Sync%20already%20running"

    def test_clear_resync_redirects(self, client, mock_scheduler):
        response = client.post(f"{BASE}/clear-resync", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == f"{BASE}?cleared=true"

    def test_clear_resync_store_unavailable(self, client, mock_scheduler):
        mock_scheduler.clear_and_resync.side_effect = StoreUnavailable("Database not configured")

        response = client.post(f"{BASE}/clear-resync", follow_redirects=False)

        assert response.status_code == 503
        assert response.json() == {"error": "Database not configured"}


class TestErrors:
    def test_unexpected_error_is_500(self, mock_scheduler):
        import podroll.api as api_module

        broken = MagicMock()
        broken.list_sources.side_effect = RuntimeError("boom")
        api_module._store = broken
        api_module._scheduler = mock_scheduler
        try:
            response = TestClient(app, raise_server_exceptions=False).get(f"{BASE}/api/sources")
        finally:
            api_module._store = None
            api_module._scheduler = None

        assert response.status_code == 500
        assert response.json() == {"error": "boom"}
