"""
Resolve a Jellyfin series to a MAL anime id.

Tried in order, first hit wins:
    MyAnimeList provider id on the item      -> provider_mal
    AniDB provider id through anime_mappings -> anidb_mapping
    title match against the user's synced list -> local_list
    MAL search, scored on title/year/type    -> title_search (score >= MATCH_THRESHOLD)
"""
import logging
import re
from dataclasses import dataclass
from difflib import SequenceMatcher

from sqlalchemy.orm import Session

from paisen.mal_api import MalApi
from paisen.mapping_store import AnimeMappingStore
from paisen.models import AnimeEntry, User

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.7
# Titles on the user's own list need to be closer than search results; there is no other signal
LOCAL_TITLE_THRESHOLD = 0.85

SEARCH_FIELDS = ["id", "title", "alternative_titles", "start_date", "media_type", "num_episodes"]

_SEASON_RE = re.compile(r"\b(season|s)\s*\d+")
_PART_RE = re.compile(r"\b(part|pt)\s*\d+")
_MEDIA_RE = re.compile(r"\b(tv|ova|movie|special)\b")


@dataclass
class MalMatch:
    mal_id: int
    title: str
    method: str
    confidence: float


def normalize_title(title: str | None) -> str:
    """Lowercase, strip punctuation and season/part/media-type markers."""
    if not title:
        return ""
    value = re.sub(r"[^\w\s]", "", title.lower())
    value = re.sub(r"\s+", " ", value).strip()
    value = _SEASON_RE.sub("", value)
    value = _PART_RE.sub("", value)
    value = _MEDIA_RE.sub("", value)
    return re.sub(r"\s+", " ", value).strip()


def title_similarity(a: str | None, b: str | None) -> float:
    na, nb = normalize_title(a), normalize_title(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    return SequenceMatcher(None, na, nb).ratio()


def _candidate_titles(candidate: dict) -> list[str]:
    alt = candidate.get("alternative_titles") or {}
    titles = [candidate.get("title")]
    titles.extend(alt.get("synonyms") or [])
    titles.extend(t for t in (alt.get("en"), alt.get("ja")) if t)
    return [t for t in titles if t]


def match_score(title: str, candidate: dict, year: int | None = None) -> float:
    """Weighted 0..1 score of a MAL search node against a Jellyfin series."""
    score = 0.6 * max((title_similarity(title, t) for t in _candidate_titles(candidate)), default=0.0)
    weight = 0.6

    start_date = candidate.get("start_date") or ""
    if year and start_date[:4].isdigit():
        if abs(int(start_date[:4]) - int(year)) <= 1:
            score += 0.2
        weight += 0.2

    if candidate.get("media_type") in ("tv", "ova"):
        score += 0.1
    weight += 0.1
    if candidate.get("num_episodes"):
        score += 0.1
    weight += 0.1
    return score / weight


class AnimeMatcher:
    def __init__(self, db: Session, user: User, mal_api: MalApi):
        self.db = db
        self.user = user
        self.mal_api = mal_api
        self.mappings = AnimeMappingStore(db)

    def find_mal_match(
        self,
        title: str,
        *,
        year: int | None = None,
        mal_id: int | None = None,
        anidb_id: int | None = None,
    ) -> MalMatch | None:
        if mal_id:
            return MalMatch(mal_id, title, "provider_mal", 1.0)
        if anidb_id:
            mapping = self.mappings.find_by_anidb_id(anidb_id)
            if mapping is not None:
                confidence = 1.0 if mapping.is_confirmed else (mapping.confidence_score or 0.9)
                return MalMatch(mapping.mal_id, mapping.anime_title, "anidb_mapping", confidence)
        match = self._match_local(title)
        if match is not None:
            return match
        return self._match_search(title, year)

    def _match_local(self, title: str) -> MalMatch | None:
        entries = self.db.query(AnimeEntry).filter(AnimeEntry.user_id == self.user.id).all()
        best, best_score = None, 0.0
        for entry in entries:
            similarity = title_similarity(title, entry.title)
            if similarity > best_score:
                best, best_score = entry, similarity
        if best is None or best_score < LOCAL_TITLE_THRESHOLD:
            return None
        return MalMatch(best.mal_id, best.title, "local_list", round(best_score, 3))

    def _match_search(self, title: str, year: int | None) -> MalMatch | None:
        query = normalize_title(title)
        # MAL rejects queries shorter than 3 characters
        if len(query) < 3:
            return None
        results = self.mal_api.search_anime(query, fields=SEARCH_FIELDS, limit=10)
        best, best_score = None, 0.0
        for item in results:
            node = item.get("node") or {}
            if "id" not in node:
                continue
            score = match_score(title, node, year)
            if score > best_score:
                best, best_score = node, score
        if best is None or best_score < MATCH_THRESHOLD:
            logger.info("No MAL match for %r (best score %.2f)", title, best_score)
            return None
        return MalMatch(best["id"], best.get("title", title), "title_search", round(best_score, 3))
