"""
MAL -> local DB sync (background job) and the progress polling endpoint.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel

from paisen.anime_sync import DEFAULT_STATUSES, AnimeSyncService, new_session_id
from paisen.config import POLL_INTERVAL_MS
from paisen.constants import USER_STATUS
from paisen.database import session_scope
from paisen.dependencies import get_oauth_client, get_token_store, get_tracker
from paisen.mal_api import MalApi
from paisen.mal_oauth import MalOAuthClient
from paisen.models import User
from paisen.responses import fail, ok
from paisen.sync_progress import SyncProgressTracker
from paisen.token_lifecycle import ensure_valid_token
from paisen.token_store import TokenStore

logger = logging.getLogger(__name__)
router = APIRouter()


class SyncRequest(BaseModel):
    username: str
    sessionId: str | None = None
    statuses: list[str] | None = None
    forceUpdate: bool = False


def run_anime_sync(
    username: str,
    access_token: str,
    tracker: SyncProgressTracker,
    session_id: str,
    statuses: list[str],
    force_update: bool,
) -> None:
    """Background task body; owns its own DB session."""
    with session_scope() as db:
        user = db.query(User).filter(User.username == username).first()
        if user is None:
            tracker.fail(session_id, "User not found")
            return
        service = AnimeSyncService(db, user, MalApi(access_token), tracker, session_id)
        service.sync(statuses, force_update=force_update)


@router.post("/api/mal/sync-to-db")
def sync_to_db(
    body: SyncRequest,
    background_tasks: BackgroundTasks,
    store: TokenStore = Depends(get_token_store),
    tracker: SyncProgressTracker = Depends(get_tracker),
    oauth_client: MalOAuthClient = Depends(get_oauth_client),
):
    record = store.get(body.username)
    if record is None:
        return fail(404, "User not found")
    statuses = body.statuses or list(DEFAULT_STATUSES)
    unknown = [s for s in statuses if s not in USER_STATUS]
    if unknown:
        return fail(400, f"Unknown list status: {', '.join(unknown)}")

    check = ensure_valid_token(store, oauth_client, record)
    if not check.usable:
        return fail(400, check.message)

    session_id = body.sessionId or new_session_id(body.username)
    # Registered before responding so the first poll finds it
    tracker.start(session_id, 0, "Sync queued")
    background_tasks.add_task(
        run_anime_sync,
        body.username,
        check.access_token,
        tracker,
        session_id,
        statuses,
        body.forceUpdate,
    )
    logger.info("Queued anime sync for %s (session=%s)", body.username, session_id)
    return ok({"sessionId": session_id, "pollIntervalMs": POLL_INTERVAL_MS}, status_code=202)


@router.get("/api/sync/progress/{session_id}")
def sync_progress(session_id: str, tracker: SyncProgressTracker = Depends(get_tracker)):
    """Polled every POLL_INTERVAL_MS; 404 tells the client to stop polling."""
    progress = tracker.get_progress(session_id)
    if progress is None:
        return fail(404, "Session not found or expired")
    return progress.to_dict()
