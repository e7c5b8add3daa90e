"""
FastAPI dependencies: DB-backed token store, the shared progress tracker, and the MAL OAuth client.
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from paisen.config import get_client_secret, require_client_id
from paisen.database import get_db
from paisen.mal_oauth import MalOAuthClient
from paisen.sync_progress import SyncProgressTracker
from paisen.token_store import TokenStore


def get_token_store(db: Session = Depends(get_db)) -> TokenStore:
    return TokenStore(db)


def get_tracker(request: Request) -> SyncProgressTracker:
    """The tracker attached to the app at startup."""
    return request.app.state.sync_progress


def get_oauth_client() -> MalOAuthClient:
    """Raises ConfigurationError (mapped to 400) when MAL_CLIENT_ID is unset."""
    return MalOAuthClient(require_client_id(), get_client_secret())
