"""
MAL authorization: start (PKCE + state + authorize URL), /oauth callback (code exchange),
explicit refresh, and token status.
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from paisen.config import MAL_AUTH_BASE_URL, require_client_id
from paisen.dependencies import get_oauth_client, get_token_store
from paisen.errors import ProviderRejectedError, ProviderUnavailableError
from paisen.flow_store import get_flow, store_flow
from paisen.mal_oauth import MalOAuthClient
from paisen.pkce import build_authorize_url, generate_code_challenge, generate_code_verifier, generate_state
from paisen.responses import fail, ok
from paisen.token_lifecycle import ensure_valid_token
from paisen.token_store import TokenStore

logger = logging.getLogger(__name__)
router = APIRouter()


class AuthorizeRequest(BaseModel):
    username: str
    malUsername: str | None = None


class RefreshRequest(BaseModel):
    username: str


@router.get("/api/mal/clientid")
def client_id():
    return ok({"clientId": require_client_id()}, status_code=201)


@router.post("/api/mal/authorize")
def start_authorization(body: AuthorizeRequest, store: TokenStore = Depends(get_token_store)):
    """
    Derive a PKCE challenge, store it on the user, remember state -> username,
    and return the MAL authorize URL for the browser to follow.
    """
    mal_client_id = require_client_id()
    if not store.exists(body.username):
        return fail(404, "User not found")

    challenge = generate_code_challenge(generate_code_verifier())
    fields = {"code_challenge": challenge}
    if body.malUsername:
        fields["mal_username"] = body.malUsername
    store.update(body.username, **fields)

    state = generate_state()
    store_flow(state, body.username)
    url = build_authorize_url(
        auth_base_url=MAL_AUTH_BASE_URL,
        client_id=mal_client_id,
        state=state,
        code_challenge=challenge,
    )
    logger.info("Authorization started for %s", body.username)
    return ok({"url": url, "state": state}, status_code=201)


@router.get("/oauth")
def oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    store: TokenStore = Depends(get_token_store),
    oauth_client: MalOAuthClient = Depends(get_oauth_client),
):
    """MAL redirects here with ?code&state (or ?error&state)."""
    if error:
        if state:
            get_flow(state)
        return fail(400, f"Authorization was not granted: {error_description or error}. Please authorize again.")
    if not state:
        return fail(400, "Missing state parameter.")
    flow = get_flow(state)
    if not flow:
        return fail(400, "Invalid or expired state. Please authorize again.")
    if not code:
        return fail(400, "Couldn't get authorization code. Please authorize again.")

    record = store.get(flow.username)
    if record is None:
        return fail(404, "User not found")
    if not record.code_challenge:
        return fail(400, "No pending authorization for this user. Please authorize again.")

    try:
        # plain method: the stored challenge is the verifier
        grant = oauth_client.exchange_code(code, record.code_challenge)
    except ProviderRejectedError as e:
        logger.info("Code exchange rejected for %s: %s", flow.username, e)
        return fail(400, "Couldn't generate access token. Please authorize again.")
    except ProviderUnavailableError as e:
        logger.warning("Code exchange unavailable for %s: %s", flow.username, e)
        return fail(502, "MyAnimeList is unreachable. Please try again later.")

    if not store.store_grant(flow.username, grant, code=code, code_challenge=None):
        return fail(400, "Couldn't update user data with token info")
    logger.info("MAL authorized for %s", flow.username)
    return ok({"username": flow.username, "tokenType": grant.token_type, "expiryTime": grant.expiry_time})


@router.post("/api/mal/refresh")
def refresh_token(
    body: RefreshRequest,
    store: TokenStore = Depends(get_token_store),
    oauth_client: MalOAuthClient = Depends(get_oauth_client),
):
    """Refresh regardless of expiry. Failure keeps the stored tokens."""
    record = store.get(body.username)
    if record is None:
        return fail(404, "User not found")
    if not record.has_refresh_token:
        return fail(400, "Couldn't get refresh token. Please authorize again.")
    try:
        grant = oauth_client.refresh(record.refresh_token)
    except ProviderRejectedError as e:
        logger.info("Refresh rejected for %s: %s", body.username, e)
        return fail(400, "Couldn't refresh access token. Please authorize again.")
    except ProviderUnavailableError as e:
        logger.warning("Refresh unavailable for %s: %s", body.username, e)
        return fail(502, "MyAnimeList is unreachable. Please try again later.")
    if not store.store_grant(body.username, grant):
        return fail(400, "Couldn't update user data")
    return ok({"username": body.username, "tokenType": grant.token_type, "expiryTime": grant.expiry_time})


@router.get("/api/mal/token-status/{username}")
def token_status(
    username: str,
    store: TokenStore = Depends(get_token_store),
    oauth_client: MalOAuthClient = Depends(get_oauth_client),
):
    """Checked on protected page loads: valid, silently refreshed, or needs (re-)authorization."""
    record = store.get(username)
    if record is None:
        return fail(404, "User not found")
    check = ensure_valid_token(store, oauth_client, record)
    return ok(
        {
            "state": check.state.value,
            "usable": check.usable,
            "message": check.message,
            "expiryTime": check.record.expiry_time,
        }
    )
