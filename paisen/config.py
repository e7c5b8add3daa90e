"""
Paisen configuration. Values come from the environment; no secrets in this file.
"""
import os

from paisen.errors import ConfigurationError

# MAL OAuth endpoints (authorize + token live under the same base)
MAL_AUTH_BASE_URL = os.environ.get("MAL_AUTH_BASE_URL", "https://myanimelist.net/v1/oauth2").rstrip("/")

# MAL REST API base
MAL_API_BASE_URL = os.environ.get("MAL_API_BASE_URL", "https://api.myanimelist.net/v2").rstrip("/")

# SQLite for development; tests use in-memory
DATABASE_URL = os.environ.get("PAISEN_DATABASE_URL", "sqlite:///./paisen.db")

# Outbound HTTP: per-request timeout and bounded retry with linear backoff
HTTP_TIMEOUT_SECONDS = float(os.environ.get("PAISEN_HTTP_TIMEOUT", "10"))
HTTP_MAX_RETRIES = int(os.environ.get("PAISEN_HTTP_MAX_RETRIES", "3"))
HTTP_BACKOFF_SECONDS = float(os.environ.get("PAISEN_HTTP_BACKOFF_SECONDS", "0.5"))

# bcrypt cost factor for local account passwords
PASSWORD_HASH_ROUNDS = int(os.environ.get("PAISEN_PASSWORD_HASH_ROUNDS", "12"))

# Pending authorization flows (state -> username). MAL codes are short-lived; allow 10 min for the user.
FLOW_TTL_SECONDS = int(os.environ.get("PAISEN_FLOW_TTL_SECONDS", "600"))

# Sync progress eviction: since last update, and after a session reaches completed/failed
SYNC_PROGRESS_TTL_SECONDS = int(os.environ.get("PAISEN_SYNC_PROGRESS_TTL_SECONDS", "1800"))
SYNC_PROGRESS_COMPLETED_TTL_SECONDS = int(os.environ.get("PAISEN_SYNC_PROGRESS_COMPLETED_TTL_SECONDS", "300"))

# Interval clients are told to poll /api/sync/progress at
POLL_INTERVAL_MS = 500

# Entries synced more recently than this only get their list status refreshed
SYNC_FRESHNESS_HOURS = int(os.environ.get("PAISEN_SYNC_FRESHNESS_HOURS", "24"))


def get_client_id() -> str | None:
    """MAL client id, read at call time so tests and deployments can set it late."""
    value = os.environ.get("MAL_CLIENT_ID", "").strip()
    return value or None


def get_client_secret() -> str | None:
    """Optional: MAL 'web' apps issue a secret, 'other' apps do not."""
    value = os.environ.get("MAL_CLIENT_SECRET", "").strip()
    return value or None


def require_client_id() -> str:
    client_id = get_client_id()
    if not client_id:
        raise ConfigurationError("MAL Client ID not defined")
    return client_id


def get_webhook_secret() -> str | None:
    """Shared secret Jellyfin sends with playback webhooks. Unset means the webhook is open."""
    value = os.environ.get("JELLYFIN_WEBHOOK_SECRET", "").strip()
    return value or None
