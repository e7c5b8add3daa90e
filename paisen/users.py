"""
Local accounts and the user profile/update endpoints.
Token values never leave this boundary; profile responses only say whether tokens exist.
"""
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError

from paisen.dependencies import get_token_store
from paisen.models import User
from paisen.passwords import hash_password, verify_password
from paisen.responses import fail, ok
from paisen.token_store import TokenStore, normalize_expiry_time

logger = logging.getLogger(__name__)
router = APIRouter()

# JSON (camelCase) -> column name for PUT /api/user/update
_UPDATE_FIELD_MAP = {
    "name": "name",
    "malUsername": "mal_username",
    "code": "code",
    "codeChallenge": "code_challenge",
    "accessToken": "access_token",
    "refreshToken": "refresh_token",
    "tokenType": "token_type",
    "expiryTime": "expiry_time",
}


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=60)
    username: str = Field(min_length=2, max_length=32, pattern=r"^[A-Za-z][A-Za-z0-9_-]+$")
    password: str = Field(min_length=8)


class LoginRequest(BaseModel):
    username: str
    password: str


class UserUpdate(BaseModel):
    """Body of PUT /api/user/update. Unknown keys are reported before this model runs."""

    username: str
    name: str | None = Field(default=None, min_length=1, max_length=60)
    malUsername: str | None = None
    code: str | None = None
    codeChallenge: str | None = None
    accessToken: str | None = None
    refreshToken: str | None = None
    tokenType: str | None = None
    expiryTime: int | None = None
    # Accepted for compatibility; the store stamps modified_at itself
    modifiedAt: Any = None

    @field_validator("name")
    @classmethod
    def name_not_null(cls, value):
        if value is None:
            raise ValueError("name cannot be null")
        return value


def _public_profile(user: User) -> dict:
    return {
        "name": user.name,
        "username": user.username,
        "malUsername": user.mal_username,
        "tokenType": user.token_type,
        "expiryTime": user.expiry_time,
        "hasAccessToken": bool(user.access_token),
        "hasRefreshToken": bool(user.refresh_token),
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "modifiedAt": user.modified_at.isoformat() if user.modified_at else None,
        "syncMetadata": {
            "lastAnimeSync": user.last_anime_sync.isoformat() if user.last_anime_sync else None,
            "lastSyncStats": {
                "processed": user.last_sync_processed,
                "created": user.last_sync_created,
                "updated": user.last_sync_updated,
                "errors": user.last_sync_errors,
                "skipped": user.last_sync_skipped,
            },
        },
    }


@router.post("/api/auth/register")
def register(body: RegisterRequest, store: TokenStore = Depends(get_token_store)):
    if store.exists(body.username):
        return fail(400, "Username already taken")
    store.create(body.username, body.name, hash_password(body.password))
    return ok({"name": body.name, "username": body.username}, status_code=201)


@router.post("/api/auth/login")
def login(body: LoginRequest, store: TokenStore = Depends(get_token_store)):
    """Credential check only; session handling belongs to the front end's auth library."""
    user = store.find_user(body.username)
    if user is None or not verify_password(body.password, user.password_hash):
        logger.info("Login failed for %s", body.username)
        return fail(401, "Invalid username or password")
    return ok({"name": user.name, "username": user.username})


@router.get("/api/user/{username}")
def get_user(username: str, store: TokenStore = Depends(get_token_store)):
    user = store.find_user(username)
    if user is None:
        return fail(404, "Couldn't fetch user profile")
    return JSONResponse({"success": True, "userData": _public_profile(user)}, status_code=201)


@router.put("/api/user/update")
def update_user(body: dict[str, Any] = Body(...), store: TokenStore = Depends(get_token_store)):
    """Partial update of profile/token fields. modifiedAt is set by the store."""
    if not body.get("username"):
        return fail(400, "username is required")
    unknown = set(body) - set(_UPDATE_FIELD_MAP) - {"username", "modifiedAt"}
    if unknown:
        return fail(400, f"Couldn't add details to user profile: unknown fields {', '.join(sorted(unknown))}")
    try:
        update = UserUpdate.model_validate(body)
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        return fail(400, f"Couldn't add details to user profile: invalid {', '.join(fields)}")

    given = update.model_dump(exclude_unset=True)
    fields = {_UPDATE_FIELD_MAP[k]: v for k, v in given.items() if k in _UPDATE_FIELD_MAP}
    if fields.get("expiry_time") is not None:
        # Guard against expires_in (seconds) being stored in place of an absolute ms timestamp
        fields["expiry_time"] = normalize_expiry_time(fields["expiry_time"])

    try:
        updated = store.update(update.username, **fields)
    except SQLAlchemyError:
        store.db.rollback()
        logger.exception("Profile update failed for %s", update.username)
        return fail(400, "Couldn't add details to user profile")
    if not updated:
        return fail(400, "Couldn't add details to user profile")
    record = store.get(update.username)
    return ok(
        {
            "name": record.name,
            "username": record.username,
            "codeChallenge": record.code_challenge,
            "code": record.code,
        },
        status_code=201,
    )
