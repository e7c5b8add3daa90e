"""
Per-user MAL token material, persisted on the users table.
Reads return a UserTokenRecord snapshot; writes are last-write-wins and always stamp modified_at.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from paisen.models import User

logger = logging.getLogger(__name__)

# Columns callers may set through update(); identity and password are not among them
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "mal_username",
        "code",
        "code_challenge",
        "access_token",
        "refresh_token",
        "token_type",
        "expiry_time",
    }
)

# Any expiry below this (year ~2065 in seconds) was stored in seconds, not milliseconds
_SECONDS_EXPIRY_THRESHOLD = 3_000_000_000
# Smallest plausible epoch-seconds value (2001); anything smaller is a raw expires_in duration
_EPOCH_SECONDS_FLOOR = 1_000_000_000


@dataclass
class UserTokenRecord:
    username: str
    name: str | None = None
    mal_username: str | None = None
    code: str | None = None
    code_challenge: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_type: str | None = None
    expiry_time: int | None = None  # ms since epoch
    modified_at: datetime | None = None

    @property
    def has_access_token(self) -> bool:
        return bool(self.access_token)

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, now_ms: int) -> bool:
        """Unknown expiry counts as expired so the token gets refreshed rather than trusted."""
        if self.expiry_time is None:
            return True
        return now_ms >= self.expiry_time

    @classmethod
    def from_user(cls, user: User) -> "UserTokenRecord":
        return cls(
            username=user.username,
            name=user.name,
            mal_username=user.mal_username,
            code=user.code,
            code_challenge=user.code_challenge,
            access_token=user.access_token,
            refresh_token=user.refresh_token,
            token_type=user.token_type,
            expiry_time=user.expiry_time,
            modified_at=user.modified_at,
        )


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def normalize_expiry_time(value: int | None) -> int | None:
    """
    Repair an expiry stored in the wrong unit. Epoch seconds become milliseconds;
    a bare duration (expires_in stored as-is) cannot be dated and becomes None.
    """
    if value is None or value >= _SECONDS_EXPIRY_THRESHOLD:
        return value
    if value >= _EPOCH_SECONDS_FLOOR:
        return value * 1000
    return None


class TokenStore:
    def __init__(self, db: Session):
        self.db = db

    def find_user(self, username: str) -> User | None:
        return self.db.query(User).filter(User.username == username).first()

    def exists(self, username: str) -> bool:
        return self.find_user(username) is not None

    def get(self, username: str) -> UserTokenRecord | None:
        user = self.find_user(username)
        if user is None:
            return None
        return UserTokenRecord.from_user(user)

    def create(self, username: str, name: str, password_hash: str) -> UserTokenRecord:
        """New user with no token fields populated."""
        user = User(username=username, name=name, password_hash=password_hash)
        self.db.add(user)
        self.db.commit()
        logger.info("Created user: %s", username)
        return UserTokenRecord.from_user(user)

    def update(self, username: str, **fields) -> bool:
        """Set the given fields on the user. Returns False when the user does not exist."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        user = self.find_user(username)
        if user is None:
            return False
        for key, value in fields.items():
            setattr(user, key, value)
        user.modified_at = datetime.now(timezone.utc)
        self.db.commit()
        # Field names only; values may be credentials
        logger.debug("Updated user %s fields=%s", username, sorted(fields))
        return True

    def store_grant(self, username: str, grant, **extra) -> bool:
        """Persist a TokenGrant from the token endpoint (plus any extra fields) in one write."""
        fields = {
            "access_token": grant.access_token,
            "token_type": grant.token_type,
            "expiry_time": grant.expiry_time,
        }
        # Keep the previous refresh token when the provider did not issue a new one
        if grant.refresh_token:
            fields["refresh_token"] = grant.refresh_token
        fields.update(extra)
        return self.update(username, **fields)

    def repair_expiry_times(self) -> int:
        """Fix expiry times stored in seconds. Returns the number of users changed."""
        changed = 0
        users = self.db.query(User).filter(User.access_token.is_not(None)).all()
        for user in users:
            fixed = normalize_expiry_time(user.expiry_time)
            if fixed != user.expiry_time:
                logger.info("Repairing expiry time for user %s", user.username)
                user.expiry_time = fixed
                user.modified_at = datetime.now(timezone.utc)
                changed += 1
        if changed:
            self.db.commit()
        return changed
