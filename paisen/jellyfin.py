"""
Jellyfin playback webhooks -> MAL episode progress.

A PlaybackStop/PlaybackProgress event for an episode the linked user has watched past
WATCHED_THRESHOLD is resolved to a MAL id (see anime_matching) and pushed to MAL as
num_watched_episodes. Progress only moves forward; the locally synced entry follows.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from paisen.anime_matching import AnimeMatcher
from paisen.mal_api import MalApi
from paisen.mal_oauth import MalOAuthClient
from paisen.models import AnimeEntry, User
from paisen.token_lifecycle import ensure_valid_token
from paisen.token_store import TokenStore

logger = logging.getLogger(__name__)

RELEVANT_EVENTS = ("PlaybackStop", "PlaybackProgress")
WATCHED_THRESHOLD = 0.8

KNOWN_ANIME_STUDIOS = (
    "studio ghibli",
    "toei animation",
    "madhouse",
    "bones",
    "pierrot",
    "sunrise",
    "mappa",
    "wit studio",
    "a-1 pictures",
    "kyoto animation",
    "production i.g",
    "shaft",
    "trigger",
    "ufotable",
    "doga kobo",
    "j.c.staff",
    "white fox",
    "cloverworks",
    "studio deen",
    "gonzo",
)

_JAPANESE_RE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]")

# Fields read back from MAL before pushing progress
_PROGRESS_FIELDS = ["id", "title", "num_episodes", "my_list_status"]


def _int_or_none(value) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _provider_ids(payload: dict) -> dict[str, str]:
    """Provider ids from either the webhook plugin's flat Provider_* keys or a ProviderIds object."""
    ids = {k.lower(): v for k, v in (payload.get("ProviderIds") or {}).items() if v}
    for key, value in payload.items():
        if key.startswith("Provider_") and value:
            ids[key[len("Provider_"):].lower()] = value
    return ids


@dataclass
class JellyfinEvent:
    event_type: str
    user_id: str
    item_id: str | None = None
    item_type: str | None = None
    item_name: str | None = None
    series_name: str | None = None
    season_number: int | None = None
    episode_number: int | None = None
    year: int | None = None
    playback_position_ticks: int | None = None
    runtime_ticks: int | None = None
    played_to_completion: bool = False
    genres: list[str] = field(default_factory=list)
    studios: list[str] = field(default_factory=list)
    provider_ids: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict) -> "JellyfinEvent":
        studios = payload.get("Studios") or []
        return cls(
            event_type=payload.get("NotificationType", ""),
            user_id=str(payload.get("UserId", "")),
            item_id=payload.get("ItemId"),
            item_type=payload.get("ItemType"),
            item_name=payload.get("Name"),
            series_name=payload.get("SeriesName"),
            season_number=_int_or_none(payload.get("SeasonNumber")),
            episode_number=_int_or_none(payload.get("EpisodeNumber")),
            year=_int_or_none(payload.get("Year")),
            playback_position_ticks=_int_or_none(payload.get("PlaybackPositionTicks")),
            runtime_ticks=_int_or_none(payload.get("RunTimeTicks")),
            played_to_completion=bool(payload.get("PlayedToCompletion")),
            genres=[str(g) for g in payload.get("Genres") or []],
            studios=[s.get("Name", "") if isinstance(s, dict) else str(s) for s in studios],
            provider_ids=_provider_ids(payload),
        )

    @property
    def title(self) -> str:
        return self.series_name or self.item_name or ""

    @property
    def mal_id(self) -> int | None:
        return _int_or_none(self.provider_ids.get("myanimelist"))

    @property
    def anidb_id(self) -> int | None:
        return _int_or_none(self.provider_ids.get("anidb"))

    @property
    def watched_fraction(self) -> float:
        if self.played_to_completion:
            return 1.0
        if not self.runtime_ticks or self.playback_position_ticks is None:
            return 0.0
        return self.playback_position_ticks / self.runtime_ticks

    @property
    def is_watched(self) -> bool:
        return self.watched_fraction >= WATCHED_THRESHOLD


def is_anime_content(event: JellyfinEvent) -> bool:
    if any(g.lower() in ("anime", "animation") for g in event.genres):
        return True
    if any(known in studio.lower() for studio in event.studios for known in KNOWN_ANIME_STUDIOS):
        return True
    if event.mal_id or event.anidb_id:
        return True
    return bool(_JAPANESE_RE.search(event.title))


def push_episode_progress(mal_api: MalApi, mal_id: int, episode_number: int | None) -> dict:
    """Raise MAL's watched count to episode_number (never lower it) and fix up the list status."""
    details = mal_api.get_anime(mal_id, fields=_PROGRESS_FIELDS)
    current = details.get("my_list_status") or {}
    previous = current.get("num_episodes_watched") or 0
    status = current.get("status") or "watching"
    watched = max(previous, episode_number or 1)

    fields = {"num_watched_episodes": watched}
    # Not on the list yet, or planned: starting an episode means watching
    if not current or status == "plan_to_watch":
        fields["status"] = "watching"
    total = details.get("num_episodes")
    if total and watched >= total:
        fields["status"] = "completed"

    mal_api.update_list_status(mal_id, **fields)
    return {
        "previousEpisodes": previous,
        "newEpisodes": watched,
        "status": fields.get("status", status),
        "title": details.get("title"),
    }


def _ignored(reason: str) -> dict:
    return {"status": "ignored", "reason": reason}


def process_playback(db: Session, event: JellyfinEvent, oauth_client: MalOAuthClient) -> dict:
    """
    Apply one playback event. Returns {"status": "ignored"|"no_match"|"updated", ...}.
    Provider errors from MAL propagate to the caller.
    """
    user = (
        db.query(User)
        .filter(User.jellyfin_user_id == event.user_id, User.jellyfin_sync_enabled.is_(True))
        .first()
    )
    if user is None:
        logger.info("No linked user for Jellyfin user %s", event.user_id)
        return _ignored("User not found or sync disabled")

    if not is_anime_content(event):
        return _ignored("Not anime content")
    if not event.is_watched:
        logger.info("Episode not sufficiently watched: %.0f%%", event.watched_fraction * 100)
        return _ignored("Episode not sufficiently watched")

    store = TokenStore(db)
    check = ensure_valid_token(store, oauth_client, store.get(user.username))
    if not check.usable:
        return _ignored(check.message)

    mal_api = MalApi(check.access_token)
    match = AnimeMatcher(db, user, mal_api).find_mal_match(
        event.title, year=event.year, mal_id=event.mal_id, anidb_id=event.anidb_id
    )
    if match is None:
        return {"status": "no_match", "reason": "No MAL match found", "anime": event.title}

    update = push_episode_progress(mal_api, match.mal_id, event.episode_number)

    entry = (
        db.query(AnimeEntry)
        .filter(AnimeEntry.user_id == user.id, AnimeEntry.mal_id == match.mal_id)
        .first()
    )
    if entry is not None:
        entry.num_episodes_watched = update["newEpisodes"]
        entry.list_status = update["status"]
    user.jellyfin_last_sync = datetime.now(timezone.utc)
    db.commit()
    logger.info(
        "Jellyfin progress for %s: MAL %s episode %s (%s)",
        user.username,
        match.mal_id,
        update["newEpisodes"],
        match.method,
    )
    return {
        "status": "updated",
        "anime": event.title,
        "episode": event.episode_number,
        "malId": match.mal_id,
        "matchMethod": match.method,
        "confidence": match.confidence,
        "update": update,
    }
