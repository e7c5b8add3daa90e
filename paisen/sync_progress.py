"""
Progress of long-running sync jobs, keyed by session id, polled by the UI.

One tracker instance lives on app.state and is handed to handlers and jobs; every
read-modify-write happens under the tracker's lock. Sessions are evicted after
ttl_seconds without an update, or completed_ttl_seconds after reaching a terminal status.
Not durable: a process restart forgets all sessions (pollers then get 404 and stop).
"""
import threading
import time
from dataclasses import asdict, dataclass, field

from paisen.config import SYNC_PROGRESS_COMPLETED_TTL_SECONDS, SYNC_PROGRESS_TTL_SECONDS

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})

# increment() outcome -> counter it bumps in addition to processed_items
_OUTCOME_COUNTERS = {
    "processed": None,
    "added": "added_entries",
    "updated": "updated_entries",
    "error": "error_entries",
    "skipped": "skipped_entries",
}

_COUNTER_FIELDS = (
    "processed_items",
    "total_items",
    "added_entries",
    "updated_entries",
    "error_entries",
    "skipped_entries",
)
_UPDATABLE = frozenset(_COUNTER_FIELDS + ("status", "message", "current_item"))


@dataclass
class SyncProgressRecord:
    session_id: str
    status: str = STATUS_IDLE
    percentage: int = 0
    processed_items: int = 0
    total_items: int = 0
    added_entries: int = 0
    updated_entries: int = 0
    error_entries: int = 0
    skipped_entries: int = 0
    current_item: str | None = None
    message: str = ""
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        """camelCase payload for the polling endpoint."""
        return {
            "sessionId": self.session_id,
            "status": self.status,
            "percentage": self.percentage,
            "processedItems": self.processed_items,
            "totalItems": self.total_items,
            "addedEntries": self.added_entries,
            "updatedEntries": self.updated_entries,
            "errorEntries": self.error_entries,
            "skippedEntries": self.skipped_entries,
            "currentItem": self.current_item,
            "message": self.message,
            "createdAt": int(self.created_at * 1000),
            "updatedAt": int(self.updated_at * 1000),
        }


def _recompute(record: SyncProgressRecord) -> None:
    """Clamp processed to total and derive percentage; a running job that reaches total completes."""
    if record.total_items > 0:
        record.processed_items = min(record.processed_items, record.total_items)
        record.percentage = round(100 * record.processed_items / record.total_items)
        if record.status == STATUS_RUNNING and record.processed_items == record.total_items:
            record.status = STATUS_COMPLETED
    else:
        record.percentage = 0


class SyncProgressTracker:
    def __init__(
        self,
        ttl_seconds: float = SYNC_PROGRESS_TTL_SECONDS,
        completed_ttl_seconds: float = SYNC_PROGRESS_COMPLETED_TTL_SECONDS,
        clock=time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.completed_ttl_seconds = completed_ttl_seconds
        self._clock = clock
        self._sessions: dict[str, SyncProgressRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _expired(self, record: SyncProgressRecord, now: float) -> bool:
        ttl = self.completed_ttl_seconds if record.is_terminal else self.ttl_seconds
        return (now - record.updated_at) > ttl

    def _snapshot(self, record: SyncProgressRecord) -> SyncProgressRecord:
        return SyncProgressRecord(**asdict(record))

    def start(self, session_id: str, total_items: int = 0, message: str = "") -> SyncProgressRecord:
        """Begin (or restart) a session in running state with zeroed counters."""
        if not session_id:
            raise ValueError("Session ID is required")
        if total_items < 0:
            raise ValueError("total_items must be >= 0")
        now = self._clock()
        record = SyncProgressRecord(
            session_id=session_id,
            status=STATUS_RUNNING,
            total_items=total_items,
            message=message,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._evict_expired(now)
            self._sessions[session_id] = record
            return self._snapshot(record)

    def update(self, session_id: str, **delta) -> SyncProgressRecord | None:
        """
        Merge fields into the session. Counter values are absolute; use increment() for +1 steps.
        Returns the updated snapshot, or None if the session is unknown or expired.
        """
        unknown = set(delta) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown progress fields: {', '.join(sorted(unknown))}")
        now = self._clock()
        with self._lock:
            record = self._live(session_id, now)
            if record is None:
                return None
            for key, value in delta.items():
                # None or empty message keeps the previous value
                if key in ("status", "message") and not value:
                    continue
                if key in _COUNTER_FIELDS and value < 0:
                    raise ValueError(f"{key} must be >= 0")
                setattr(record, key, value)
            record.updated_at = now
            _recompute(record)
            return self._snapshot(record)

    def increment(self, session_id: str, current_item: str | None = None, outcome: str = "processed") -> SyncProgressRecord | None:
        """Count one processed item, plus the counter for its outcome."""
        if outcome not in _OUTCOME_COUNTERS:
            raise ValueError(f"Unknown outcome: {outcome}")
        now = self._clock()
        with self._lock:
            record = self._live(session_id, now)
            if record is None:
                return None
            counter = _OUTCOME_COUNTERS[outcome]
            if counter:
                setattr(record, counter, getattr(record, counter) + 1)
            record.processed_items += 1
            if current_item is not None:
                record.current_item = current_item
            record.updated_at = now
            _recompute(record)
            return self._snapshot(record)

    def complete(self, session_id: str, message: str = "Sync completed") -> SyncProgressRecord | None:
        now = self._clock()
        with self._lock:
            record = self._live(session_id, now)
            if record is None:
                return None
            record.status = STATUS_COMPLETED
            record.message = message
            if record.total_items > 0:
                record.processed_items = record.total_items
            record.percentage = 100
            record.updated_at = now
            return self._snapshot(record)

    def fail(self, session_id: str, message: str) -> SyncProgressRecord | None:
        """Mark the session failed. A completed session stays completed; pollers may already have stopped."""
        now = self._clock()
        with self._lock:
            record = self._live(session_id, now)
            if record is None:
                return None
            if record.status == STATUS_COMPLETED:
                return self._snapshot(record)
            record.status = STATUS_FAILED
            record.message = message
            record.updated_at = now
            return self._snapshot(record)

    def get_progress(self, session_id: str) -> SyncProgressRecord | None:
        """Snapshot of the session, or None when never started, cleared or expired."""
        if not session_id:
            return None
        now = self._clock()
        with self._lock:
            record = self._live(session_id, now)
            return self._snapshot(record) if record is not None else None

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def cleanup_expired(self) -> int:
        """Drop expired sessions. Returns how many were removed."""
        with self._lock:
            return self._evict_expired(self._clock())

    # Callers hold self._lock

    def _live(self, session_id: str, now: float) -> SyncProgressRecord | None:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        if self._expired(record, now):
            del self._sessions[session_id]
            return None
        return record

    def _evict_expired(self, now: float) -> int:
        expired = [sid for sid, r in self._sessions.items() if self._expired(r, now)]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)
