"""JSON envelopes shared by the API routers: {"success": bool, ...}."""
from fastapi.responses import JSONResponse

from paisen.errors import PaisenError, ProviderRejectedError


def ok(data, status_code: int = 200, **extra) -> JSONResponse:
    return JSONResponse({"success": True, "data": data, **extra}, status_code=status_code)


def fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "message": message}, status_code=status_code)


def provider_failure(exc: PaisenError) -> JSONResponse:
    """MAL REST failures: a rejected token asks for re-authorization, other 4xx are 400, the rest 502."""
    if isinstance(exc, ProviderRejectedError):
        if exc.status_code == 401:
            return fail(400, "MyAnimeList rejected the access token. Please re-authorize.")
        return fail(400, str(exc))
    return fail(502, "MyAnimeList is unreachable. Please try again later.")
