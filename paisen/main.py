"""
Paisen API: MAL authorization and token lifecycle, user profile, anime list sync with progress polling,
and Jellyfin playback updates.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from paisen.anime_api import router as anime_router
from paisen.authorize import router as authorize_router
from paisen.config import get_client_id
from paisen.database import init_db, session_scope
from paisen.errors import ConfigurationError, NotFoundError
from paisen.jellyfin_api import router as jellyfin_router
from paisen.mapping_api import router as mapping_router
from paisen.responses import fail
from paisen.sync_api import router as sync_router
from paisen.sync_progress import SyncProgressTracker
from paisen.token_store import TokenStore
from paisen.users import router as users_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, repair expiry times stored in seconds, warn on missing MAL config."""
    init_db()
    with session_scope() as db:
        repaired = TokenStore(db).repair_expiry_times()
    if repaired:
        logger.info("Repaired expiry time for %d user(s)", repaired)
    if not get_client_id():
        logger.warning("MAL_CLIENT_ID is not set; authorization endpoints will return 400")
    yield


app = FastAPI(title="Paisen", version="0.1.0", lifespan=lifespan)
app.state.sync_progress = SyncProgressTracker()
app.include_router(users_router, tags=["users"])
app.include_router(authorize_router, tags=["authorize"])
app.include_router(sync_router, tags=["sync"])
app.include_router(anime_router, tags=["anime"])
app.include_router(mapping_router, tags=["mapping"])
app.include_router(jellyfin_router, tags=["jellyfin"])


@app.exception_handler(ConfigurationError)
async def configuration_error(request: Request, exc: ConfigurationError):
    return fail(400, str(exc))


@app.exception_handler(NotFoundError)
async def not_found(request: Request, exc: NotFoundError):
    return fail(404, str(exc))


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "paisen"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "paisen.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
