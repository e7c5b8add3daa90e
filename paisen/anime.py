"""
View models for MAL anime nodes and list statistics.
Mapping is a pure function of the MAL response node; the dataclasses carry no behavior.
"""
import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from paisen.constants import RATING, SERIES_STATUS, SERIES_TYPE, USER_STATUS
from paisen.models import AnimeEntry


@dataclass
class Anime:
    id: int
    title: str
    genres: list = field(default_factory=list)
    media_type: str | None = None
    status: str | None = None
    total_episodes: int = 0
    episodes_watched: int | None = None
    is_rewatching: bool | None = None
    user_score: int | None = None
    watch_start_date: str | None = None
    user_status: str | None = None
    alternative_titles_en: str | list = field(default_factory=list)
    alternative_titles_ja: str | list = field(default_factory=list)
    alternative_titles_synonyms: list = field(default_factory=list)
    average_episode_duration: int | None = None
    end_date: str | None = None
    image_url: str | None = None
    mean_score: float | None = None
    rating: str | None = None
    source: str = ""
    start_date: str | None = None
    synopsis: str | None = None
    start_season: str = "Unknown"
    start_season_year: int | str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StatsAnime:
    id: int
    title: str
    average_episode_duration: int | None = None
    total_episodes: int = 0
    episodes_watched: int | None = None
    is_rewatching: bool | None = None
    user_score: int | None = None
    watch_start_date: str | None = None
    user_status: str | None = None
    status: dict | None = None
    start_date: str | None = None
    end_date: str | None = None
    start_season: str = "Unknown"
    start_season_year: int | str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def camelize(value: str | None) -> str:
    """'spring' -> 'Spring', 'lightNovel' -> 'Light Novel'."""
    if not value:
        return ""
    spaced = re.sub(r"([A-Z])", r" \1", value)
    return spaced[:1].upper() + spaced[1:]


def _list_status_fields(node: dict) -> dict:
    ls = node.get("my_list_status") or node.get("list_status")
    if not ls:
        return {
            "episodes_watched": None,
            "is_rewatching": None,
            "user_score": None,
            "watch_start_date": None,
            "user_status": None,
        }
    return {
        "episodes_watched": ls.get("num_episodes_watched"),
        "is_rewatching": ls.get("is_rewatching"),
        "user_score": ls.get("score"),
        "watch_start_date": ls.get("start_date"),
        "user_status": USER_STATUS.get(ls.get("status")),
    }


def _season_fields(node: dict) -> dict:
    season = node.get("start_season")
    if not season:
        return {"start_season": "Unknown", "start_season_year": ""}
    return {"start_season": camelize(season.get("season")), "start_season_year": season.get("year", "")}


def to_anime(node: dict[str, Any]) -> Anime:
    media_type = node.get("media_type")
    status = node.get("status")
    alt = node.get("alternative_titles") or {}
    picture = node.get("main_picture") or {}
    return Anime(
        id=node["id"],
        title=node.get("title", ""),
        genres=node.get("genres") or [],
        media_type=SERIES_TYPE.get(media_type, media_type),
        status=SERIES_STATUS.get(status, {}).get("value", status),
        total_episodes=node.get("num_episodes") or 0,
        alternative_titles_en=alt.get("en") or [],
        alternative_titles_ja=alt.get("ja") or [],
        alternative_titles_synonyms=alt.get("synonyms") or [],
        average_episode_duration=node.get("average_episode_duration"),
        end_date=node.get("end_date"),
        image_url=picture.get("large"),
        mean_score=node.get("mean"),
        rating=RATING.get(node.get("rating")),
        source=camelize(node.get("source")),
        start_date=node.get("start_date"),
        synopsis=node.get("synopsis"),
        **_list_status_fields(node),
        **_season_fields(node),
    )


def to_stats_anime(node: dict[str, Any]) -> StatsAnime:
    return StatsAnime(
        id=node["id"],
        title=node.get("title", ""),
        average_episode_duration=node.get("average_episode_duration"),
        total_episodes=node.get("num_episodes") or 0,
        status=SERIES_STATUS.get(node.get("status")),
        start_date=node.get("start_date"),
        end_date=node.get("end_date"),
        **_list_status_fields(node),
        **_season_fields(node),
    )


def map_anime_list(items: Iterable[dict]) -> list[Anime]:
    """MAL list payload items ({'node': {...}, 'list_status': {...}}) to Anime."""
    result = []
    for item in items:
        node = dict(item.get("node", item))
        if "list_status" in item and "my_list_status" not in node:
            node["my_list_status"] = item["list_status"]
        result.append(to_anime(node))
    return result


def entry_to_node(entry: AnimeEntry) -> dict:
    """Rebuild a MAL-shaped node from a synced row so the same mappers apply."""
    node = {
        "id": entry.mal_id,
        "title": entry.title,
        "genres": entry.genres or [],
        "media_type": entry.media_type,
        "status": entry.status,
        "num_episodes": entry.num_episodes,
        "average_episode_duration": entry.average_episode_duration,
        "start_season": entry.start_season,
    }
    if entry.list_status:
        node["my_list_status"] = {
            "status": entry.list_status,
            "score": entry.score,
            "num_episodes_watched": entry.num_episodes_watched,
            "is_rewatching": entry.is_rewatching,
            "start_date": entry.start_date,
            "finish_date": entry.finish_date,
        }
    return node


# Statistics over mapped anime


def total_duration(anime_list: Iterable[Anime | StatsAnime]) -> int:
    """Seconds watched: episode duration x episodes watched."""
    total = 0
    for anime in anime_list:
        if anime.average_episode_duration and anime.episodes_watched:
            total += anime.average_episode_duration * anime.episodes_watched
    return total


def remaining_duration(anime_list: Iterable[Anime | StatsAnime]) -> int:
    """Seconds left on shows currently being watched."""
    remaining = 0
    watching = USER_STATUS["watching"]
    for anime in anime_list:
        if anime.user_status != watching or not anime.average_episode_duration:
            continue
        watched = anime.episodes_watched or 0
        if anime.total_episodes > watched:
            remaining += anime.average_episode_duration * (anime.total_episodes - watched)
    return remaining


def mean_score(anime_list: Iterable[Anime | StatsAnime]) -> float:
    """Mean of user scores in 1..10; 0.0 when nothing is scored."""
    scores = [a.user_score for a in anime_list if a.user_score and 0 < a.user_score <= 10]
    if not scores:
        return 0.0
    return round(sum(scores) / len(scores), 2)


def score_distribution(anime_list: Iterable[Anime | StatsAnime]) -> list[int]:
    """Counts per score, ordered 10 down to 1 (chart order)."""
    counts = {score: 0 for score in range(1, 11)}
    for anime in anime_list:
        if anime.user_score in counts:
            counts[anime.user_score] += 1
    return [counts[score] for score in range(10, 0, -1)]


def watched_percentage(watched: int | None, total: int | None) -> str:
    if watched and total:
        return f"{math.ceil(int(watched) / int(total) * 100)}%"
    return "0%"


def format_duration(seconds: int) -> str:
    days = seconds // 86400
    hrs = seconds // 3600 - days * 24
    mins = seconds // 60 - days * 24 * 60 - hrs * 60
    return f"{days} days {hrs} hours {mins} minutes"
