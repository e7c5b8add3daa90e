"""
Sync a user's MAL anime list into the local anime_entries table, reporting progress
to the SyncProgressTracker under the job's session id.
"""
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from paisen.config import SYNC_FRESHNESS_HOURS
from paisen.constants import USER_STATUS
from paisen.errors import PaisenError
from paisen.mal_api import MalApi
from paisen.models import AnimeEntry, User
from paisen.sync_progress import SyncProgressTracker

logger = logging.getLogger(__name__)

DEFAULT_STATUSES = tuple(USER_STATUS)


def new_session_id(username: str) -> str:
    return f"sync_{username}_{int(time.time() * 1000)}"


@dataclass
class SyncStats:
    processed: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0
    skipped: int = 0


@dataclass
class SyncResult:
    success: bool
    session_id: str
    message: str
    stats: SyncStats = field(default_factory=SyncStats)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "sessionId": self.session_id,
            "message": self.message,
            "stats": asdict(self.stats),
        }


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _apply_list_status(entry: AnimeEntry, list_status: dict | None) -> None:
    if not list_status:
        return
    entry.list_status = list_status.get("status")
    entry.score = list_status.get("score") or 0
    entry.num_episodes_watched = list_status.get("num_episodes_watched") or 0
    entry.is_rewatching = bool(list_status.get("is_rewatching"))
    entry.start_date = list_status.get("start_date")
    entry.finish_date = list_status.get("finish_date")


def _apply_node(entry: AnimeEntry, node: dict) -> None:
    entry.title = node.get("title", "")
    entry.genres = node.get("genres") or []
    entry.media_type = node.get("media_type")
    entry.status = node.get("status")
    entry.num_episodes = node.get("num_episodes") or 0
    entry.average_episode_duration = node.get("average_episode_duration")
    entry.start_season = node.get("start_season")
    entry.updated_on_mal = node.get("updated_at")
    entry.last_synced_at = datetime.now(timezone.utc)


class AnimeSyncService:
    def __init__(
        self,
        db: Session,
        user: User,
        mal_api: MalApi,
        tracker: SyncProgressTracker,
        session_id: str | None = None,
    ):
        self.db = db
        self.user = user
        self.mal_api = mal_api
        self.tracker = tracker
        self.session_id = session_id or new_session_id(user.username)
        self.stats = SyncStats()

    def sync(self, statuses: tuple[str, ...] | list[str] = DEFAULT_STATUSES, *, force_update: bool = False) -> SyncResult:
        logger.info("Starting anime list sync for %s (session=%s)", self.user.username, self.session_id)
        self.stats = SyncStats()
        self.tracker.start(self.session_id, 0, "Fetching anime list from MyAnimeList...")
        try:
            unknown = [s for s in statuses if s not in USER_STATUS]
            if unknown:
                raise ValueError(f"Unknown list status: {', '.join(unknown)}")
            items = self._fetch(statuses)
            self.tracker.update(
                self.session_id,
                total_items=len(items),
                message=f"Processing {len(items)} anime entries...",
            )
            for item in items:
                self._process(item, force_update=force_update)
        except (PaisenError, SQLAlchemyError) as e:
            return self._fail(f"Sync failed: {e}")
        except Exception as e:
            # The job runs detached from any request; pollers must still see a terminal status
            return self._fail(f"Sync failed unexpectedly: {type(e).__name__}")

        try:
            self._record_stats()
        except SQLAlchemyError:
            # Entries are already committed; only the per-user summary is lost
            self.db.rollback()
            logger.exception("Could not record sync stats for %s", self.user.username)

        message = (
            f"Sync completed: {self.stats.created} created, {self.stats.updated} updated, "
            f"{self.stats.errors} errors"
        )
        self.tracker.complete(self.session_id, message)
        logger.info("Anime sync finished for %s: %s", self.user.username, asdict(self.stats))
        return SyncResult(True, self.session_id, message, self.stats)

    def _fail(self, message: str) -> SyncResult:
        self.db.rollback()
        logger.exception("Anime sync failed for %s", self.user.username)
        self.tracker.fail(self.session_id, message)
        return SyncResult(False, self.session_id, message, self.stats)

    def _fetch(self, statuses) -> list[dict]:
        items: list[dict] = []
        for status in statuses:
            self.tracker.update(self.session_id, message=f"Fetching {status} anime from MAL...")
            try:
                items.extend(self.mal_api.get_anime_list(status))
            except PaisenError as e:
                # A 401 means the token is bad for every status; give up on the whole run
                if getattr(e, "status_code", None) == 401:
                    raise
                logger.warning("Error fetching %s anime for %s: %s", status, self.user.username, e)
                self.stats.errors += 1
                self.tracker.update(self.session_id, error_entries=self.stats.errors)
        return items

    def _process(self, item: dict, *, force_update: bool) -> None:
        self.stats.processed += 1
        if not isinstance(item, dict) or not isinstance(item.get("node"), dict):
            logger.warning("Skipping malformed list item for %s", self.user.username)
            self.stats.errors += 1
            self.tracker.increment(self.session_id, None, "error")
            return
        node = item["node"]
        title = node.get("title", "")
        list_status = item.get("list_status") or node.get("my_list_status")
        try:
            entry = (
                self.db.query(AnimeEntry)
                .filter(AnimeEntry.user_id == self.user.id, AnimeEntry.mal_id == node["id"])
                .first()
            )
            if entry is not None and not force_update and self._fresh(entry):
                _apply_list_status(entry, list_status)
                self.db.commit()
                self.stats.skipped += 1
                outcome = "skipped"
            elif entry is not None:
                _apply_node(entry, node)
                _apply_list_status(entry, list_status)
                self.db.commit()
                self.stats.updated += 1
                outcome = "updated"
            else:
                entry = AnimeEntry(user_id=self.user.id, mal_id=node["id"])
                _apply_node(entry, node)
                _apply_list_status(entry, list_status)
                self.db.add(entry)
                self.db.commit()
                self.stats.created += 1
                outcome = "added"
        except (KeyError, TypeError, AttributeError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.warning("Error processing anime %r: %s", title, e)
            self.stats.errors += 1
            outcome = "error"
        self.tracker.increment(self.session_id, title, outcome)

    def _fresh(self, entry: AnimeEntry) -> bool:
        age = datetime.now(timezone.utc) - _as_utc(entry.last_synced_at)
        return age < timedelta(hours=SYNC_FRESHNESS_HOURS)

    def _record_stats(self) -> None:
        self.user.last_anime_sync = datetime.now(timezone.utc)
        self.user.last_sync_processed = self.stats.processed
        self.user.last_sync_created = self.stats.created
        self.user.last_sync_updated = self.stats.updated
        self.user.last_sync_errors = self.stats.errors
        self.user.last_sync_skipped = self.stats.skipped
        self.db.commit()
