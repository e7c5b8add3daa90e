"""
MAL <-> AniDB mapping endpoints: look up, save a manual mapping, confirm an existing one.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from paisen.database import get_db
from paisen.mapping_store import AnimeMappingStore
from paisen.models import User
from paisen.responses import fail, ok

router = APIRouter()


class MappingCreate(BaseModel):
    username: str
    malId: int = Field(gt=0)
    anidbId: int = Field(gt=0)
    animeTitle: str = Field(min_length=1)


class MappingConfirm(BaseModel):
    username: str
    malId: int = Field(gt=0)


def _user(db: Session, username: str) -> User | None:
    return db.query(User).filter(User.username == username).first()


@router.get("/api/anime/mapping")
def get_mapping(malId: int | None = None, malIds: str | None = None, db: Session = Depends(get_db)):
    """?malId=1 for one mapping (404 when missing), ?malIds=1,2,3 for all that exist."""
    store = AnimeMappingStore(db)
    if malIds:
        ids = [int(p) for p in (s.strip() for s in malIds.split(",")) if p.isdigit()]
        if not ids:
            return fail(400, "malIds must be a comma separated list of ids")
        return ok([m.to_dict() for m in store.find_by_mal_ids(ids)])
    if malId is None:
        return fail(400, "malId or malIds is required")
    mapping = store.find_by_mal_id(malId)
    if mapping is None:
        return fail(404, "Mapping not found")
    return ok(mapping.to_dict())


@router.post("/api/anime/mapping")
def create_mapping(body: MappingCreate, db: Session = Depends(get_db)):
    user = _user(db, body.username)
    if user is None:
        return fail(404, "User not found")
    mapping = AnimeMappingStore(db).save(
        body.malId, body.anidbId, body.animeTitle, mapping_source="manual", user_id=user.id
    )
    return ok(mapping.to_dict(), status_code=201)


@router.put("/api/anime/mapping")
def confirm_mapping(body: MappingConfirm, db: Session = Depends(get_db)):
    user = _user(db, body.username)
    if user is None:
        return fail(404, "User not found")
    mapping = AnimeMappingStore(db).confirm(body.malId, user.id)
    if mapping is None:
        return fail(404, "Mapping not found")
    return ok(mapping.to_dict(), message="Mapping confirmed successfully")
