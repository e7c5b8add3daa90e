"""
Anime endpoints: list view models and watch statistics over synced entries, plus MAL-backed
search, list status updates and the MAL profile.
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from paisen.anime import (
    entry_to_node,
    format_duration,
    map_anime_list,
    mean_score,
    remaining_duration,
    score_distribution,
    to_anime,
    to_stats_anime,
    total_duration,
    watched_percentage,
)
from paisen.constants import ANIME_DETAIL_FIELDS, SCORE_LABELS, USER_STATUS
from paisen.database import get_db
from paisen.dependencies import get_oauth_client, get_token_store
from paisen.errors import NotFoundError, PaisenError
from paisen.mal_api import MalApi
from paisen.mal_oauth import MalOAuthClient
from paisen.models import AnimeEntry, User
from paisen.responses import fail, ok, provider_failure
from paisen.token_lifecycle import ensure_valid_token
from paisen.token_store import TokenStore

logger = logging.getLogger(__name__)
router = APIRouter()


class ListStatusUpdate(BaseModel):
    username: str
    status: str | None = None
    score: int | None = None
    numWatchedEpisodes: int | None = Field(default=None, ge=0)
    isRewatching: bool | None = None
    startDate: str | None = None
    finishDate: str | None = None


# JSON (camelCase) -> MAL my_list_status form field
_LIST_STATUS_FIELD_MAP = {
    "status": "status",
    "score": "score",
    "numWatchedEpisodes": "num_watched_episodes",
    "isRewatching": "is_rewatching",
    "startDate": "start_date",
    "finishDate": "finish_date",
}


def _anime_view(anime) -> dict:
    return {**anime.to_dict(), "watchedPercentage": watched_percentage(anime.episodes_watched, anime.total_episodes)}


def _mal_api_for(store: TokenStore, oauth_client: MalOAuthClient, username: str):
    """(MalApi, None) with a usable token, or (None, error response)."""
    record = store.get(username)
    if record is None:
        raise NotFoundError("User not found")
    check = ensure_valid_token(store, oauth_client, record)
    if not check.usable:
        return None, fail(400, check.message)
    return MalApi(check.access_token), None


def _user_or_404(db: Session, username: str) -> User:
    user = db.query(User).filter(User.username == username).first()
    if user is None:
        raise NotFoundError("User not found")
    return user


def _entries(db: Session, user: User, status: str | None = None) -> list[AnimeEntry]:
    q = db.query(AnimeEntry).filter(AnimeEntry.user_id == user.id)
    if status:
        q = q.filter(AnimeEntry.list_status == status)
    return q.order_by(AnimeEntry.title).all()


@router.get("/api/anime/list/{username}")
def anime_list(username: str, status: str | None = None, db: Session = Depends(get_db)):
    if status is not None and status not in USER_STATUS:
        return fail(400, f"Unknown list status: {status}")
    user = _user_or_404(db, username)
    items = [_anime_view(to_anime(entry_to_node(e))) for e in _entries(db, user, status)]
    return ok(items, pageTitle=USER_STATUS.get(status, "Anime List"))


@router.get("/api/anime/stats/{username}")
def anime_stats(username: str, db: Session = Depends(get_db)):
    user = _user_or_404(db, username)
    stats = [to_stats_anime(entry_to_node(e)) for e in _entries(db, user)]
    watched = total_duration(stats)
    remaining = remaining_duration(stats)
    counts = {title: 0 for title in USER_STATUS.values()}
    for anime in stats:
        if anime.user_status in counts:
            counts[anime.user_status] += 1
    return ok(
        {
            "totalAnime": len(stats),
            "statusCounts": counts,
            "watchedSeconds": watched,
            "watchedDuration": format_duration(watched),
            "remainingSeconds": remaining,
            "remainingDuration": format_duration(remaining),
            "meanScore": mean_score(stats),
            "scoreDistribution": score_distribution(stats),
        }
    )


@router.get("/api/anime/search")
def search_anime(
    username: str,
    q: str = "",
    limit: int = 20,
    store: TokenStore = Depends(get_token_store),
    oauth_client: MalOAuthClient = Depends(get_oauth_client),
):
    query = q.strip()
    if len(query) < 3:
        return fail(400, "Search query must be at least 3 characters")
    if not 1 <= limit <= 100:
        return fail(400, "limit must be between 1 and 100")
    mal_api, error = _mal_api_for(store, oauth_client, username)
    if error is not None:
        return error
    try:
        results = mal_api.search_anime(query, fields=ANIME_DETAIL_FIELDS, limit=limit)
    except PaisenError as e:
        logger.info("Search failed for %s: %s", username, e)
        return provider_failure(e)
    return ok([_anime_view(a) for a in map_anime_list(results)], query=query)


@router.put("/api/anime/{anime_id}/status")
def update_list_status(
    anime_id: int,
    body: ListStatusUpdate,
    store: TokenStore = Depends(get_token_store),
    oauth_client: MalOAuthClient = Depends(get_oauth_client),
):
    """Push a list status change (status, score, episode progress) to MAL and mirror it locally."""
    if body.status is not None and body.status not in USER_STATUS:
        return fail(400, f"Unknown list status: {body.status}")
    if body.score is not None and body.score not in SCORE_LABELS:
        return fail(400, "score must be between 0 and 10")
    given = body.model_dump(exclude_unset=True, exclude={"username"})
    fields = {_LIST_STATUS_FIELD_MAP[k]: v for k, v in given.items() if v is not None}
    if not fields:
        return fail(400, "Nothing to update")

    mal_api, error = _mal_api_for(store, oauth_client, body.username)
    if error is not None:
        return error
    try:
        result = mal_api.update_list_status(anime_id, **fields)
    except PaisenError as e:
        logger.info("List update failed for %s anime=%s: %s", body.username, anime_id, e)
        return provider_failure(e)

    user = store.find_user(body.username)
    entry = (
        store.db.query(AnimeEntry)
        .filter(AnimeEntry.user_id == user.id, AnimeEntry.mal_id == anime_id)
        .first()
    )
    if entry is not None:
        entry.list_status = result.get("status", entry.list_status)
        entry.score = result.get("score", entry.score)
        entry.num_episodes_watched = result.get("num_episodes_watched", entry.num_episodes_watched)
        entry.is_rewatching = result.get("is_rewatching", entry.is_rewatching)
        store.db.commit()
    score = result.get("score")
    return ok({**result, "scoreLabel": SCORE_LABELS.get(score)})


@router.get("/api/mal/profile/{username}")
def mal_profile(
    username: str,
    store: TokenStore = Depends(get_token_store),
    oauth_client: MalOAuthClient = Depends(get_oauth_client),
):
    mal_api, error = _mal_api_for(store, oauth_client, username)
    if error is not None:
        return error
    try:
        profile = mal_api.get_user()
    except PaisenError as e:
        return provider_failure(e)
    return ok(profile)
