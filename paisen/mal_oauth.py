"""
MAL token endpoint client: authorization_code exchange and refresh_token grant.
expires_in (seconds) is turned into an absolute expiry_time (ms since epoch) here, at the call site.
"""
import logging
from dataclasses import dataclass

import httpx

from paisen.config import HTTP_TIMEOUT_SECONDS, MAL_AUTH_BASE_URL
from paisen.errors import ProviderRejectedError, ProviderUnavailableError
from paisen.http import RetryConfig, request_with_retry
from paisen.token_store import now_ms as _now_ms

logger = logging.getLogger(__name__)


@dataclass
class TokenGrant:
    token_type: str
    access_token: str
    refresh_token: str | None
    expires_in: int  # seconds, as received
    expiry_time: int  # ms since epoch


def expiry_time_from(expires_in: int, now_ms: int) -> int:
    """Absolute expiry in ms: now + expires_in seconds."""
    return now_ms + int(expires_in) * 1000


def _error_description(r: httpx.Response) -> tuple[str | None, str]:
    try:
        err = r.json() if r.headers.get("content-type", "").startswith("application/json") else {}
    except ValueError:
        err = {}
    if not isinstance(err, dict):
        err = {}
    error = err.get("error")
    desc = err.get("message") or err.get("error_description") or error or r.text or f"HTTP {r.status_code}"
    return error, str(desc)


class MalOAuthClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str | None = None,
        *,
        auth_base_url: str = MAL_AUTH_BASE_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        retry_config: RetryConfig | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = f"{auth_base_url.rstrip('/')}/token"
        self.timeout = timeout
        self.retry_config = retry_config

    def exchange_code(self, code: str, code_verifier: str, *, now_ms: int | None = None) -> TokenGrant:
        """Exchange a single-use authorization code. Never retried on a 4xx."""
        data = {
            "client_id": self.client_id,
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": code_verifier,
        }
        return self._token_request(data, "authorization_code", now_ms=now_ms)

    def refresh(self, refresh_token: str, *, now_ms: int | None = None) -> TokenGrant:
        data = {
            "client_id": self.client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return self._token_request(data, "refresh_token", now_ms=now_ms)

    def _token_request(self, data: dict, grant_type: str, *, now_ms: int | None) -> TokenGrant:
        if self.client_secret:
            data["client_secret"] = self.client_secret
        r = request_with_retry(
            httpx.post,
            self.token_url,
            data=data,
            headers={"Accept": "application/json"},
            timeout=self.timeout,
            retry_config=self.retry_config,
        )
        if r.status_code != 200:
            error, desc = _error_description(r)
            logger.info("%s grant rejected: status=%s error=%s", grant_type, r.status_code, error)
            raise ProviderRejectedError(desc, status_code=r.status_code, error=error)

        try:
            body = r.json()
        except ValueError as e:
            raise ProviderUnavailableError(f"Token endpoint returned invalid JSON: {e}") from e
        access_token = body.get("access_token")
        if not access_token:
            raise ProviderRejectedError("Token response has no access_token", status_code=r.status_code)

        # Clock is read after the response arrives; expires_in counts from then
        issued_ms = _now_ms() if now_ms is None else now_ms
        expires_in = int(body.get("expires_in") or 0)
        logger.info("%s grant succeeded: expires_in=%s", grant_type, expires_in)
        return TokenGrant(
            token_type=body.get("token_type", "Bearer"),
            access_token=access_token,
            refresh_token=body.get("refresh_token") or None,
            expires_in=expires_in,
            expiry_time=expiry_time_from(expires_in, issued_ms),
        )
