from typing import Optional

from fastapi import APIRouter, File, UploadFile
from pydantic import BaseModel, Field

from app.api.user.login import MeResponse, me_response
from app.core.deps import CurrentUserDep, CurrentUserIdDep, FollowServiceDep, MediaStoreDep, SessionDep
from app.core.errors import NotFoundError, ValidationError
from app.models.user import User

router = APIRouter(tags=["profile"])


class PublicProfile(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    is_verified: bool = False
    account_status: str
    followers_count: int
    following_count: int
    posts_count: int
    is_following: bool = False


class UserProfileUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=128)
    bio: Optional[str] = None
    email: Optional[str] = Field(default=None, max_length=255)


@router.get("/user/profile", response_model=MeResponse)
async def get_user_profile(user: CurrentUserDep):
    return me_response(user)


@router.patch("/user/profile", response_model=MeResponse)
async def update_user_profile(
    data: UserProfileUpdateRequest,
    user: CurrentUserDep,
    db: SessionDep,
):
    if data.display_name is None and data.bio is None and data.email is None:
        raise ValidationError("No update fields provided")

    if data.display_name is not None and not data.display_name.strip():
        raise ValidationError("display_name cannot be empty")

    if data.display_name is not None:
        user.display_name = data.display_name.strip()
    if data.bio is not None:
        user.bio = data.bio
    if data.email is not None:
        user.email = data.email

    await db.commit()
    return me_response(user)


@router.post("/user/profile/avatar", response_model=MeResponse)
async def upload_avatar(
    user: CurrentUserDep,
    db: SessionDep,
    media: MediaStoreDep,
    file: UploadFile = File(...),
):
    stored = await media.upload(await file.read(), file.filename or "avatar", file.content_type)
    if stored.kind != "image":
        await media.delete(stored.key)
        raise ValidationError("Avatar must be an image")
    user.avatar_url = stored.url
    await db.commit()
    return me_response(user)


@router.get("/users/{target_id}", response_model=PublicProfile)
async def get_public_profile(
    target_id: str,
    user_id: CurrentUserIdDep,
    db: SessionDep,
    follows: FollowServiceDep,
):
    target = await db.get(User, target_id)
    if target is None:
        raise NotFoundError("User not found")
    return PublicProfile(
        id=target.id,
        username=target.username,
        display_name=target.display_name,
        avatar_url=target.avatar_url,
        bio=target.bio,
        is_verified=target.is_verified,
        account_status=target.account_status,
        followers_count=target.followers_count,
        following_count=target.following_count,
        posts_count=target.posts_count,
        is_following=await follows.is_following(user_id, target.id),
    )
