"""
In-memory store for pending MAL authorizations (state -> username).
Used between POST /api/mal/authorize and the /oauth callback. TTL to avoid unbounded growth.
"""
import time
from dataclasses import dataclass

from paisen.config import FLOW_TTL_SECONDS


@dataclass
class PendingFlow:
    username: str
    created_at: float

    def expired(self) -> bool:
        return (time.monotonic() - self.created_at) > FLOW_TTL_SECONDS


_pending: dict[str, PendingFlow] = {}


def store_flow(state: str, username: str) -> None:
    _clean_expired()
    _pending[state] = PendingFlow(username=username, created_at=time.monotonic())


def get_flow(state: str) -> PendingFlow | None:
    """Pop the flow for state; a state can be redeemed once."""
    flow = _pending.pop(state, None)
    if flow is None or flow.expired():
        return None
    return flow


def clear_flows() -> None:
    _pending.clear()


def _clean_expired() -> None:
    now = time.monotonic()
    expired = [s for s, f in _pending.items() if (now - f.created_at) > FLOW_TTL_SECONDS]
    for s in expired:
        del _pending[s]
