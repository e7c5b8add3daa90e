"""
SQLAlchemy models for Paisen: application users (with MAL token material), synced anime entries
and MAL <-> AniDB mappings.
"""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, DateTime, Float, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(60), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    mal_username: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # MAL OAuth material. Never returned from the API.
    code: Mapped[str | None] = mapped_column(Text, nullable=True)
    code_challenge: Mapped[str | None] = mapped_column(String(255), nullable=True)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # Absolute expiry, milliseconds since epoch (not a duration)
    expiry_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    modified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Last anime sync
    last_anime_sync: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_sync_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_sync_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_sync_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_sync_errors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_sync_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Jellyfin playback webhook: which Jellyfin user this account is, and whether to push to MAL
    jellyfin_user_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True, index=True)
    jellyfin_sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    jellyfin_last_sync: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class AnimeEntry(Base):
    """One MAL anime on one user's list, as last synced."""
    __tablename__ = "anime_entries"
    __table_args__ = (UniqueConstraint("user_id", "mal_id", name="uq_anime_entries_user_mal"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    mal_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    genres: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    media_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)  # airing status
    num_episodes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_episode_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds
    start_season: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # my_list_status
    list_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    num_episodes_watched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_rewatching: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    start_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    finish_date: Mapped[str | None] = mapped_column(String(10), nullable=True)

    updated_on_mal: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    user: Mapped["User"] = relationship("User", backref="anime_entries")


class AnimeMapping(Base):
    """MAL id <-> AniDB id. Jellyfin libraries tagged by the AniDB plugin resolve to MAL through this."""
    __tablename__ = "anime_mappings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    mal_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False, index=True)
    anidb_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    anime_title: Mapped[str] = mapped_column(String(512), nullable=False)
    # offline_database | manual | user_confirmed
    mapping_source: Mapped[str] = mapped_column(String(32), default="manual", nullable=False)
    confirmed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)
