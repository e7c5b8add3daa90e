"""
Decide whether a user's stored MAL access token is usable, refreshing it when possible.

    no access token                     -> NEEDS_AUTHORIZATION
    access token, not expired           -> VALID
    expired, refresh token, refresh ok  -> REFRESHED
    expired, refresh token, refresh err -> REFRESH_FAILED (stale tokens are kept)
    expired, no refresh token           -> NEEDS_AUTHORIZATION
"""
import enum
import logging
from dataclasses import dataclass

from paisen.errors import PaisenError
from paisen.mal_oauth import MalOAuthClient
from paisen.token_store import TokenStore, UserTokenRecord
from paisen.token_store import now_ms as _now_ms

logger = logging.getLogger(__name__)

MESSAGE_AUTHORIZE = "MyAnimeList is not authorized yet. Please authorize your account."
MESSAGE_REAUTHORIZE = "Could not refresh the MyAnimeList token. Please re-authorize."


class TokenState(str, enum.Enum):
    NEEDS_AUTHORIZATION = "needs_authorization"
    VALID = "valid"
    NEEDS_REFRESH = "needs_refresh"
    REFRESHED = "refreshed"
    REFRESH_FAILED = "refresh_failed"


@dataclass
class TokenCheck:
    state: TokenState
    record: UserTokenRecord
    message: str = ""

    @property
    def usable(self) -> bool:
        return self.state in (TokenState.VALID, TokenState.REFRESHED)

    @property
    def access_token(self) -> str | None:
        return self.record.access_token if self.usable else None


def check_token(record: UserTokenRecord, now_ms: int) -> TokenState:
    """Pure decision without network calls; NEEDS_REFRESH means a refresh should be attempted."""
    if not record.has_access_token:
        return TokenState.NEEDS_AUTHORIZATION
    if not record.is_expired(now_ms):
        return TokenState.VALID
    if record.has_refresh_token:
        return TokenState.NEEDS_REFRESH
    return TokenState.NEEDS_AUTHORIZATION


def ensure_valid_token(
    store: TokenStore,
    oauth_client: MalOAuthClient,
    record: UserTokenRecord,
    *,
    now_ms: int | None = None,
) -> TokenCheck:
    """Run check_token and perform the refresh when it asks for one."""
    now = _now_ms() if now_ms is None else now_ms
    state = check_token(record, now)
    if state is TokenState.VALID:
        return TokenCheck(state, record)
    if state is TokenState.NEEDS_AUTHORIZATION:
        return TokenCheck(state, record, MESSAGE_AUTHORIZE)

    try:
        # Without an explicit now_ms the client dates the new expiry from the response
        grant = oauth_client.refresh(record.refresh_token, now_ms=now_ms)
    except PaisenError as e:
        logger.info("Token refresh failed for %s: %s", record.username, e)
        return TokenCheck(TokenState.REFRESH_FAILED, record, MESSAGE_REAUTHORIZE)

    if not store.store_grant(record.username, grant):
        return TokenCheck(TokenState.REFRESH_FAILED, record, MESSAGE_REAUTHORIZE)
    logger.info("Refreshed MAL token for %s", record.username)
    refreshed = store.get(record.username)
    return TokenCheck(TokenState.REFRESHED, refreshed, "Token refreshed")
