"""
Jellyfin integration endpoints: the playback webhook and per-user link configuration.
"""
import hmac
import logging

from fastapi import APIRouter, Body, Depends, Header
from pydantic import BaseModel
from sqlalchemy.orm import Session

from paisen.config import get_webhook_secret
from paisen.database import get_db
from paisen.dependencies import get_oauth_client
from paisen.errors import PaisenError
from paisen.jellyfin import RELEVANT_EVENTS, JellyfinEvent, process_playback
from paisen.mal_oauth import MalOAuthClient
from paisen.models import User
from paisen.responses import fail, ok, provider_failure

logger = logging.getLogger(__name__)
router = APIRouter()


class JellyfinConfig(BaseModel):
    username: str
    jellyfinUserId: str | None = None
    syncEnabled: bool = True


def _config_view(user: User) -> dict:
    return {
        "username": user.username,
        "jellyfinUserId": user.jellyfin_user_id,
        "syncEnabled": user.jellyfin_sync_enabled,
        "lastSync": user.jellyfin_last_sync.isoformat() if user.jellyfin_last_sync else None,
    }


@router.post("/api/jellyfin/webhook")
def jellyfin_webhook(
    payload: dict = Body(...),
    token: str | None = None,
    x_webhook_secret: str | None = Header(default=None),
    db: Session = Depends(get_db),
    oauth_client: MalOAuthClient = Depends(get_oauth_client),
):
    """Target for the Jellyfin webhook plugin. Secret goes in X-Webhook-Secret or ?token=."""
    secret = get_webhook_secret()
    if secret is not None:
        given = x_webhook_secret or token or ""
        if not hmac.compare_digest(given.encode(), secret.encode()):
            return fail(401, "Invalid webhook secret")

    if not payload.get("NotificationType") or not payload.get("UserId"):
        return fail(400, "Invalid webhook payload")
    event = JellyfinEvent.from_payload(payload)
    logger.info(
        "Jellyfin webhook: type=%s item=%r series=%r", event.event_type, event.item_name, event.series_name
    )
    if event.event_type not in RELEVANT_EVENTS:
        return ok({"status": "ignored", "reason": "Event not relevant for anime tracking"})
    if event.item_type != "Episode":
        return ok({"status": "ignored", "reason": "Not an episode"})

    try:
        result = process_playback(db, event, oauth_client)
    except PaisenError as e:
        db.rollback()
        logger.warning("Jellyfin webhook could not update MAL: %s", e)
        return provider_failure(e)
    return ok(result, message="Webhook processed successfully")


@router.get("/api/jellyfin/config/{username}")
def get_jellyfin_config(username: str, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.username == username).first()
    if user is None:
        return fail(404, "User not found")
    return ok(_config_view(user))


@router.put("/api/jellyfin/config")
def update_jellyfin_config(body: JellyfinConfig, db: Session = Depends(get_db)):
    """Link an application user to a Jellyfin user id and toggle MAL updates from playback."""
    user = db.query(User).filter(User.username == body.username).first()
    if user is None:
        return fail(404, "User not found")
    jellyfin_user_id = (body.jellyfinUserId or "").strip() or None
    if jellyfin_user_id:
        other = (
            db.query(User)
            .filter(User.jellyfin_user_id == jellyfin_user_id, User.id != user.id)
            .first()
        )
        if other is not None:
            return fail(400, "This Jellyfin user is already linked to another account")
    user.jellyfin_user_id = jellyfin_user_id
    user.jellyfin_sync_enabled = body.syncEnabled and jellyfin_user_id is not None
    db.commit()
    logger.info("Jellyfin link for %s updated (sync=%s)", user.username, user.jellyfin_sync_enabled)
    return ok(_config_view(user))
