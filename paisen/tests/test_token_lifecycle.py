"""Tests for the token validity checker / refresher."""
from unittest.mock import MagicMock

from paisen.errors import ProviderRejectedError, ProviderUnavailableError
from paisen.mal_oauth import MalOAuthClient, TokenGrant
from paisen.token_lifecycle import TokenState, check_token, ensure_valid_token
from paisen.token_store import UserTokenRecord

NOW = 1_750_000_000_000


def _client(grant=None, error=None):
    client = MagicMock(spec=MalOAuthClient)
    if error is not None:
        client.refresh.side_effect = error
    else:
        client.refresh.return_value = grant
    return client


def test_check_token_states():
    assert check_token(UserTokenRecord(username="a"), NOW) is TokenState.NEEDS_AUTHORIZATION
    valid = UserTokenRecord(username="a", access_token="at", expiry_time=NOW + 1)
    assert check_token(valid, NOW) is TokenState.VALID
    stale = UserTokenRecord(username="a", access_token="at", refresh_token="rt", expiry_time=NOW - 1)
    assert check_token(stale, NOW) is TokenState.NEEDS_REFRESH
    stale_no_rt = UserTokenRecord(username="a", access_token="at", expiry_time=NOW - 1)
    assert check_token(stale_no_rt, NOW) is TokenState.NEEDS_AUTHORIZATION


def test_valid_token_makes_no_call(store, user):
    store.update("alice", access_token="at", refresh_token="rt", expiry_time=NOW + 60_000)
    client = _client()
    check = ensure_valid_token(store, client, store.get("alice"), now_ms=NOW)
    assert check.state is TokenState.VALID
    assert check.access_token == "at"
    client.refresh.assert_not_called()


def test_no_access_token_needs_authorization(store, user):
    client = _client()
    check = ensure_valid_token(store, client, store.get("alice"), now_ms=NOW)
    assert check.state is TokenState.NEEDS_AUTHORIZATION
    assert not check.usable
    client.refresh.assert_not_called()


def test_expired_without_refresh_token_does_not_call_refresh(store, user):
    store.update("alice", access_token="at", expiry_time=NOW - 1)
    client = _client()
    check = ensure_valid_token(store, client, store.get("alice"), now_ms=NOW)
    assert check.state is TokenState.NEEDS_AUTHORIZATION
    client.refresh.assert_not_called()


def test_expired_with_refresh_token_refreshes(store, user):
    old_expiry = NOW - 1
    store.update("alice", access_token="old-at", refresh_token="rt", expiry_time=old_expiry)
    grant = TokenGrant("Bearer", "new-at", "new-rt", 3600, NOW + 3_600_000)
    client = _client(grant)
    check = ensure_valid_token(store, client, store.get("alice"), now_ms=NOW)
    client.refresh.assert_called_once_with("rt", now_ms=NOW)
    assert check.state is TokenState.REFRESHED
    assert check.record.expiry_time > old_expiry
    stored = store.get("alice")
    assert stored.access_token == "new-at"
    assert stored.refresh_token == "new-rt"
    assert stored.expiry_time == NOW + 3_600_000


def test_refresh_failure_keeps_stale_tokens(store, user):
    store.update("alice", access_token="old-at", refresh_token="rt", expiry_time=NOW - 1)
    client = _client(error=ProviderRejectedError("revoked", status_code=400))
    check = ensure_valid_token(store, client, store.get("alice"), now_ms=NOW)
    assert check.state is TokenState.REFRESH_FAILED
    assert "re-authorize" in check.message
    stored = store.get("alice")
    assert stored.access_token == "old-at"
    assert stored.refresh_token == "rt"


def test_refresh_unavailable_is_refresh_failed(store, user):
    store.update("alice", access_token="old-at", refresh_token="rt", expiry_time=NOW - 1)
    client = _client(error=ProviderUnavailableError("down"))
    check = ensure_valid_token(store, client, store.get("alice"), now_ms=NOW)
    assert check.state is TokenState.REFRESH_FAILED
    assert check.access_token is None


def test_refresh_expiry_is_dated_by_the_client(store, user):
    store.update("alice", access_token="old-at", refresh_token="rt", expiry_time=1)
    grant = TokenGrant("Bearer", "new-at", None, 3600, NOW + 3_600_000)
    client = _client(grant)
    check = ensure_valid_token(store, client, store.get("alice"))
    assert check.state is TokenState.REFRESHED
    client.refresh.assert_called_once_with("rt", now_ms=None)
