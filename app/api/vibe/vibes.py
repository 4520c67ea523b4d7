from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, File, Form, UploadFile, status
from pydantic import BaseModel
from sqlalchemy import select

from app.core.config import settings
from app.core.deps import ClockDep, CurrentUserDep, MediaStoreDep, SessionDep
from app.core.errors import NotFoundError, ValidationError
from app.core.time import to_iso
from app.models.user import User
from app.models.vibe import Vibe

router = APIRouter(tags=["vibes"])


class VibeResponse(BaseModel):
    id: str
    user_id: str
    username: str
    title: Optional[str] = None
    content: Optional[str] = None
    media_url: Optional[str] = None
    created_at: Optional[str]
    expires_at: Optional[str]


class VibeListResponse(BaseModel):
    vibes: List[VibeResponse]


def _vibe_response(vibe: Vibe, author: User) -> VibeResponse:
    return VibeResponse(
        id=vibe.id,
        user_id=author.id,
        username=author.username,
        title=vibe.title,
        content=vibe.content,
        media_url=vibe.media_url,
        created_at=to_iso(vibe.created_at),
        expires_at=to_iso(vibe.expires_at),
    )


@router.post("/vibes", response_model=VibeResponse, status_code=status.HTTP_201_CREATED)
async def create_vibe(
    user: CurrentUserDep,
    db: SessionDep,
    media: MediaStoreDep,
    clock: ClockDep,
    title: Optional[str] = Form(None),
    content: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
):
    if not (content or file):
        raise ValidationError("A vibe needs content or a media file")

    media_url = None
    if file is not None:
        stored = await media.upload(await file.read(), file.filename or "vibe", file.content_type)
        media_url = stored.url

    now = clock()
    vibe = Vibe(
        user_id=user.id,
        title=title,
        content=content,
        media_url=media_url,
        created_at=now,
        expires_at=now + timedelta(hours=settings.vibe_ttl_hours),
    )
    db.add(vibe)
    await db.commit()
    return _vibe_response(vibe, user)


@router.get("/vibes", response_model=VibeListResponse)
async def list_vibes(user: CurrentUserDep, db: SessionDep, clock: ClockDep):
    """Active vibes only; expired rows are skipped even before the sweep deletes them."""
    rows = (
        await db.execute(
            select(Vibe, User)
            .join(User, User.id == Vibe.user_id)
            .where(Vibe.expires_at > clock())
            .order_by(Vibe.created_at.desc())
        )
    ).all()
    return VibeListResponse(vibes=[_vibe_response(v, a) for v, a in rows])


@router.get("/vibes/user/{target_id}", response_model=VibeListResponse)
async def list_user_vibes(target_id: str, user: CurrentUserDep, db: SessionDep, clock: ClockDep):
    author = await db.get(User, target_id)
    if author is None:
        raise NotFoundError("User not found")
    vibes = (
        await db.execute(
            select(Vibe)
            .where(Vibe.user_id == target_id, Vibe.expires_at > clock())
            .order_by(Vibe.created_at.desc())
        )
    ).scalars().all()
    return VibeListResponse(vibes=[_vibe_response(v, author) for v in vibes])
