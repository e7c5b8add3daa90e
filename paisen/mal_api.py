"""
MAL REST API v2 client (user profile, anime list, list updates, search).
Bearer token is passed in by the caller; refreshing it is token_lifecycle's job.
"""
import logging

import httpx

from paisen.config import HTTP_TIMEOUT_SECONDS, MAL_API_BASE_URL
from paisen.constants import ANIME_DETAIL_FIELDS, ANIME_LIST_FIELDS, USER_FIELDS
from paisen.errors import ProviderRejectedError, ProviderUnavailableError
from paisen.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

# MAL caps list pages at 1000 entries; stop after this many pages regardless
MAX_LIST_PAGES = 20

# Fields accepted by PUT /anime/{id}/my_list_status
LIST_STATUS_FIELDS = frozenset(
    {
        "status",
        "is_rewatching",
        "score",
        "num_watched_episodes",
        "priority",
        "num_times_rewatched",
        "rewatch_value",
        "tags",
        "comments",
        "start_date",
        "finish_date",
    }
)


class MalApi:
    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = MAL_API_BASE_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        retry_config: RetryConfig | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        self.timeout = timeout
        self.retry_config = retry_config

    def _check(self, r: httpx.Response, what: str) -> dict:
        if r.status_code >= 400:
            logger.info("MAL %s failed: status=%s", what, r.status_code)
            raise ProviderRejectedError(f"MyAnimeList {what} failed (HTTP {r.status_code})", status_code=r.status_code)
        try:
            body = r.json()
        except ValueError as e:
            # Maintenance pages come back as 200 text/html
            raise ProviderUnavailableError(f"MyAnimeList {what} returned invalid JSON: {e}") from e
        if not isinstance(body, dict):
            raise ProviderUnavailableError(f"MyAnimeList {what} returned an unexpected payload")
        return body

    def _get(self, url: str, params: dict | None, what: str) -> dict:
        r = request_with_retry(
            httpx.get,
            url,
            params=params,
            headers=self.headers,
            timeout=self.timeout,
            retry_config=self.retry_config,
        )
        return self._check(r, what)

    def get_user(self, fields: list[str] = USER_FIELDS) -> dict:
        return self._get(f"{self.base_url}/users/@me", {"fields": ",".join(fields)}, "user profile")

    def get_anime(self, anime_id: int, fields: list[str] = ANIME_DETAIL_FIELDS) -> dict:
        """One anime with the caller's my_list_status."""
        return self._get(f"{self.base_url}/anime/{anime_id}", {"fields": ",".join(fields)}, "anime details")

    def get_anime_list(
        self,
        status: str | None = None,
        fields: list[str] = ANIME_LIST_FIELDS,
        limit: int = 1000,
    ) -> list[dict]:
        """All entries of the user's list (optionally one status), following paging.next."""
        params = {"fields": ",".join(fields), "limit": limit, "nsfw": 1}
        if status:
            params["status"] = status
        url = f"{self.base_url}/users/@me/animelist"
        items: list[dict] = []
        for _ in range(MAX_LIST_PAGES):
            body = self._get(url, params, "anime list")
            items.extend(body.get("data", []))
            next_url = (body.get("paging") or {}).get("next")
            if not next_url:
                break
            # next already carries the query string
            url, params = next_url, None
        return items

    def update_list_status(self, anime_id: int, **fields) -> dict:
        unknown = set(fields) - LIST_STATUS_FIELDS
        if unknown:
            raise ValueError(f"Unknown list status fields: {', '.join(sorted(unknown))}")
        r = request_with_retry(
            httpx.put,
            f"{self.base_url}/anime/{anime_id}/my_list_status",
            data={k: _form_value(v) for k, v in fields.items()},
            headers=self.headers,
            timeout=self.timeout,
            retry_config=self.retry_config,
        )
        return self._check(r, "list update")

    def search_anime(self, query: str, fields: list[str] = ANIME_DETAIL_FIELDS, limit: int = 100, offset: int = 0) -> list[dict]:
        params = {"q": query, "fields": ",".join(fields), "limit": limit, "offset": offset, "nsfw": 1}
        body = self._get(f"{self.base_url}/anime", params, "search")
        return body.get("data", [])


def _form_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)
