"""
PKCE (RFC 7636) helpers and the MAL authorize URL.
MAL only implements the plain method, so the derived challenge doubles as the verifier.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from urllib.parse import urlencode

# RFC 7636 unreserved characters
_VERIFIER_CHARSET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"

CODE_CHALLENGE_METHOD = "plain"


def generate_state() -> str:
    """Opaque single-use value for CSRF protection; returned in callback."""
    return secrets.token_urlsafe(32)


def generate_code_verifier(length: int = 128) -> str:
    """Random verifier of 43..128 unreserved characters."""
    if not 43 <= length <= 128:
        raise ValueError("code verifier length must be between 43 and 128")
    return "".join(secrets.choice(_VERIFIER_CHARSET) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    """base64url(SHA256(verifier)) without padding. Deterministic for a given verifier."""
    if not verifier:
        raise ValueError("verifier must be a non-empty string")
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_authorize_url(
    *,
    auth_base_url: str,
    client_id: str,
    state: str,
    code_challenge: str,
) -> str:
    """Build MAL /authorize URL. Challenge method is always plain."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": CODE_CHALLENGE_METHOD,
    }
    return f"{auth_base_url}/authorize?{urlencode(params)}"
