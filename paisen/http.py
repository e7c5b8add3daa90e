"""HTTP helper with bounded retry/backoff for transient failures."""
import logging
import time
from typing import Callable

import httpx

from paisen.config import HTTP_BACKOFF_SECONDS, HTTP_MAX_RETRIES
from paisen.errors import ProviderUnavailableError

logger = logging.getLogger(__name__)


class RetryConfig:
    def __init__(self, *, attempts: int = HTTP_MAX_RETRIES, backoff_seconds: float = HTTP_BACKOFF_SECONDS) -> None:
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds


def request_with_retry(
    func: Callable[..., httpx.Response],
    *args,
    retry_config: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs,
) -> httpx.Response:
    """
    Call func (e.g. httpx.post) until it returns a non-5xx response.
    Transport errors, timeouts and 5xx are retried with linear backoff; 4xx is returned as-is.
    Raises ProviderUnavailableError when attempts are exhausted.
    """
    config = retry_config or RetryConfig()
    last_error = "no attempt made"

    for attempt in range(1, config.attempts + 1):
        try:
            response = func(*args, **kwargs)
        except httpx.HTTPError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
        else:
            if response.status_code < 500:
                return response
            last_error = f"HTTP {response.status_code}"
        logger.warning("Request attempt %d/%d failed: %s", attempt, config.attempts, last_error)
        if attempt < config.attempts:
            sleep(config.backoff_seconds * attempt)

    raise ProviderUnavailableError(f"Request failed after {config.attempts} attempts ({last_error})")
