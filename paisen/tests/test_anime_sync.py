"""Tests for syncing a MAL list into the local DB with progress reporting."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from sqlalchemy.exc import SQLAlchemyError

from paisen.anime_sync import AnimeSyncService
from paisen.errors import ProviderRejectedError
from paisen.mal_api import MalApi
from paisen.models import AnimeEntry
from paisen.sync_progress import SyncProgressTracker


def _item(mal_id, title, status="watching", watched=1):
    return {
        "node": {
            "id": mal_id,
            "title": title,
            "media_type": "tv",
            "status": "currently_airing",
            "num_episodes": 12,
            "my_list_status": {"status": status, "score": 7, "num_episodes_watched": watched},
        }
    }


def _mal_api(lists):
    api = MagicMock(spec=MalApi)
    api.get_anime_list.side_effect = lambda status: lists.get(status, [])
    return api


def test_sync_creates_entries_and_completes(db, store, user):
    tracker = SyncProgressTracker()
    api = _mal_api({"watching": [_item(1, "A"), _item(2, "B")], "completed": [_item(3, "C", "completed", 12)]})
    orm_user = store.find_user("alice")

    result = AnimeSyncService(db, orm_user, api, tracker, "s1").sync()

    assert result.success
    assert result.stats.created == 3
    assert result.stats.processed == 3
    progress = tracker.get_progress("s1")
    assert progress.status == "completed"
    assert progress.percentage == 100
    assert progress.total_items == 3
    assert progress.added_entries == 3
    assert db.query(AnimeEntry).count() == 3
    assert store.find_user("alice").last_sync_created == 3


def test_fresh_entries_are_skipped_unless_forced(db, store, user):
    tracker = SyncProgressTracker()
    orm_user = store.find_user("alice")
    AnimeSyncService(db, orm_user, _mal_api({"watching": [_item(1, "A", watched=1)]}), tracker, "s1").sync()

    result = AnimeSyncService(db, orm_user, _mal_api({"watching": [_item(1, "A", watched=5)]}), tracker, "s2").sync()
    assert result.stats.skipped == 1
    # List status still refreshed on skip
    assert db.query(AnimeEntry).one().num_episodes_watched == 5

    result = AnimeSyncService(db, orm_user, _mal_api({"watching": [_item(1, "A2")]}), tracker, "s3").sync(force_update=True)
    assert result.stats.updated == 1
    assert db.query(AnimeEntry).one().title == "A2"


def test_stale_entries_are_updated(db, store, user):
    tracker = SyncProgressTracker()
    orm_user = store.find_user("alice")
    AnimeSyncService(db, orm_user, _mal_api({"watching": [_item(1, "A")]}), tracker, "s1").sync()
    entry = db.query(AnimeEntry).one()
    entry.last_synced_at = datetime.now(timezone.utc) - timedelta(hours=48)
    db.commit()

    result = AnimeSyncService(db, orm_user, _mal_api({"watching": [_item(1, "A (new title)")]}), tracker, "s2").sync()
    assert result.stats.updated == 1
    assert db.query(AnimeEntry).one().title == "A (new title)"


def test_fetch_error_for_one_status_is_counted(db, store, user):
    tracker = SyncProgressTracker()
    api = MagicMock(spec=MalApi)

    def get_list(status):
        if status == "dropped":
            raise ProviderRejectedError("boom", status_code=500)
        return [_item(1, "A")] if status == "watching" else []

    api.get_anime_list.side_effect = get_list
    result = AnimeSyncService(db, store.find_user("alice"), api, tracker, "s1").sync()
    assert result.success
    assert result.stats.errors == 1
    assert result.stats.created == 1
    assert tracker.get_progress("s1").error_entries == 1


def test_unauthorized_fails_the_session(db, store, user):
    tracker = SyncProgressTracker()
    api = MagicMock(spec=MalApi)
    api.get_anime_list.side_effect = ProviderRejectedError("unauthorized", status_code=401)
    result = AnimeSyncService(db, store.find_user("alice"), api, tracker, "s1").sync()
    assert not result.success
    progress = tracker.get_progress("s1")
    assert progress.status == "failed"
    assert "Sync failed" in progress.message


def test_malformed_item_counts_as_error(db, store, user):
    tracker = SyncProgressTracker()
    api = _mal_api({"watching": [{"node": {"title": "no id"}}, _item(2, "B")]})
    result = AnimeSyncService(db, store.find_user("alice"), api, tracker, "s1").sync()
    assert result.stats.errors == 1
    assert result.stats.created == 1
    assert tracker.get_progress("s1").error_entries == 1


def test_html_maintenance_page_fails_the_session(db, store, user, make_response):
    tracker = SyncProgressTracker()
    page = make_response(200, None, text="<html>MyAnimeList is under maintenance</html>")
    with patch("paisen.mal_api.httpx.get", return_value=page):
        result = AnimeSyncService(db, store.find_user("alice"), MalApi("at"), tracker, "s1").sync(["watching"])
    assert not result.success
    progress = tracker.get_progress("s1")
    assert progress.status == "failed"
    assert "invalid JSON" in progress.message


def test_unknown_status_fails_the_session(db, store, user):
    tracker = SyncProgressTracker()
    result = AnimeSyncService(db, store.find_user("alice"), _mal_api({}), tracker, "s1").sync(["binged"])
    assert not result.success
    assert tracker.get_progress("s1").status == "failed"


def test_unexpected_error_still_reaches_a_terminal_status(db, store, user):
    tracker = SyncProgressTracker()
    api = MagicMock(spec=MalApi)
    api.get_anime_list.side_effect = RuntimeError("boom")
    result = AnimeSyncService(db, store.find_user("alice"), api, tracker, "s1").sync(["watching"])
    assert not result.success
    assert tracker.get_progress("s1").status == "failed"


def test_non_dict_items_count_as_errors(db, store, user):
    tracker = SyncProgressTracker()
    api = _mal_api({"watching": ["not-an-item", {"node": {"id": 3, "title": "C"}, "list_status": "bogus"}, _item(2, "B")]})
    result = AnimeSyncService(db, store.find_user("alice"), api, tracker, "s1").sync(["watching"])
    assert result.success
    assert result.stats.errors == 2
    assert result.stats.created == 1
    assert tracker.get_progress("s1").status == "completed"


def test_stats_write_failure_keeps_completed_status(db, store, user):
    tracker = SyncProgressTracker()
    service = AnimeSyncService(db, store.find_user("alice"), _mal_api({"watching": [_item(1, "A")]}), tracker, "s1")
    with patch.object(AnimeSyncService, "_record_stats", side_effect=SQLAlchemyError("disk full")):
        result = service.sync(["watching"])
    assert result.success
    assert tracker.get_progress("s1").status == "completed"
    assert db.query(AnimeEntry).count() == 1
