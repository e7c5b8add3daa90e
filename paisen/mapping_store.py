"""
MAL <-> AniDB id mappings. One row per MAL id; a user confirming a mapping marks it user_confirmed.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from paisen.models import AnimeMapping

logger = logging.getLogger(__name__)

MAPPING_SOURCES = ("offline_database", "manual", "user_confirmed")


@dataclass
class MappingRecord:
    mal_id: int
    anidb_id: int
    anime_title: str
    mapping_source: str
    confidence_score: float | None = None
    confirmed_by_user_id: int | None = None
    updated_at: datetime | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.mapping_source == "user_confirmed"

    @classmethod
    def from_row(cls, row: AnimeMapping) -> "MappingRecord":
        return cls(
            mal_id=row.mal_id,
            anidb_id=row.anidb_id,
            anime_title=row.anime_title,
            mapping_source=row.mapping_source,
            confidence_score=row.confidence_score,
            confirmed_by_user_id=row.confirmed_by_user_id,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict:
        return {
            "malId": self.mal_id,
            "anidbId": self.anidb_id,
            "animeTitle": self.anime_title,
            "mappingSource": self.mapping_source,
            "confidenceScore": self.confidence_score,
            "isConfirmed": self.is_confirmed,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class AnimeMappingStore:
    def __init__(self, db: Session):
        self.db = db

    def _row(self, mal_id: int) -> AnimeMapping | None:
        return self.db.query(AnimeMapping).filter(AnimeMapping.mal_id == mal_id).first()

    def find_by_mal_id(self, mal_id: int) -> MappingRecord | None:
        row = self._row(mal_id)
        return MappingRecord.from_row(row) if row else None

    def find_by_mal_ids(self, mal_ids: list[int]) -> list[MappingRecord]:
        rows = self.db.query(AnimeMapping).filter(AnimeMapping.mal_id.in_(mal_ids)).all()
        return [MappingRecord.from_row(r) for r in rows]

    def find_by_anidb_id(self, anidb_id: int) -> MappingRecord | None:
        """Confirmed mappings win when several MAL entries share an AniDB id."""
        rows = self.db.query(AnimeMapping).filter(AnimeMapping.anidb_id == anidb_id).all()
        if not rows:
            return None
        rows.sort(key=lambda r: (r.mapping_source != "user_confirmed", -(r.confidence_score or 0)))
        return MappingRecord.from_row(rows[0])

    def save(
        self,
        mal_id: int,
        anidb_id: int,
        anime_title: str,
        *,
        mapping_source: str = "manual",
        user_id: int | None = None,
        confidence_score: float | None = None,
    ) -> MappingRecord:
        """Create the mapping for mal_id, or replace the one that exists."""
        if mapping_source not in MAPPING_SOURCES:
            raise ValueError(f"Unknown mapping source: {mapping_source}")
        row = self._row(mal_id)
        if row is None:
            row = AnimeMapping(mal_id=mal_id)
            self.db.add(row)
        row.anidb_id = anidb_id
        row.anime_title = anime_title
        row.mapping_source = mapping_source
        row.confirmed_by_user_id = user_id
        row.confidence_score = confidence_score
        self.db.commit()
        logger.info("Saved %s mapping MAL %s -> AniDB %s", mapping_source, mal_id, anidb_id)
        return MappingRecord.from_row(row)

    def confirm(self, mal_id: int, user_id: int) -> MappingRecord | None:
        row = self._row(mal_id)
        if row is None:
            return None
        row.mapping_source = "user_confirmed"
        row.confirmed_by_user_id = user_id
        self.db.commit()
        return MappingRecord.from_row(row)
