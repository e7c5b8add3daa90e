"""
Exceptions shared by the OAuth client, token lifecycle and sync service.
Route handlers map these to HTTP responses; nothing here carries token values.
"""


class PaisenError(Exception):
    """Base class for application errors."""


class ConfigurationError(PaisenError):
    """Required configuration (e.g. MAL client id) is missing. Not retried."""


class NotFoundError(PaisenError):
    """Unknown user; mapped to 404 by the app."""


class ProviderRejectedError(PaisenError):
    """MAL answered with a 4xx: bad/expired code, PKCE mismatch, revoked refresh token."""

    def __init__(self, message: str, *, status_code: int | None = None, error: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.error = error


class ProviderUnavailableError(PaisenError):
    """MAL could not be reached (timeout, transport error, 5xx) after retries."""
