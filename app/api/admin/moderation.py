from typing import Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from app.api.post.posts import remove_post
from app.core.deps import AdminUserDep, SessionDep
from app.core.errors import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.models.post import Post
from app.models.user import User

router = APIRouter(prefix="/admin", tags=["admin"])
logger = get_logger(__name__)


class BanPayload(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AccountStatusResponse(BaseModel):
    user_id: str
    account_status: str
    account_status_reason: Optional[str] = None


async def _target(db, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.post("/users/{user_id}/ban", response_model=AccountStatusResponse)
async def ban_user(user_id: str, payload: BanPayload, admin: AdminUserDep, db: SessionDep):
    if user_id == admin.id:
        raise ValidationError("Admins cannot ban themselves")
    user = await _target(db, user_id)
    user.account_status = "banned"
    user.account_status_reason = payload.reason
    await db.commit()
    logger.info("admin.user.banned", user_id=user_id, admin_id=admin.id)
    return AccountStatusResponse(
        user_id=user.id,
        account_status=user.account_status,
        account_status_reason=user.account_status_reason,
    )


@router.post("/users/{user_id}/unban", response_model=AccountStatusResponse)
async def unban_user(user_id: str, admin: AdminUserDep, db: SessionDep):
    user = await _target(db, user_id)
    user.account_status = "live"
    user.account_status_reason = None
    await db.commit()
    logger.info("admin.user.unbanned", user_id=user_id, admin_id=admin.id)
    return AccountStatusResponse(user_id=user.id, account_status=user.account_status)


@router.delete("/posts/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_any_post(post_id: str, admin: AdminUserDep, db: SessionDep):
    post = await db.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")
    await remove_post(db, post)
    logger.info("admin.post.deleted", post_id=post_id, admin_id=admin.id)


class VerificationResponse(BaseModel):
    user_id: str
    is_verified: bool


@router.post("/users/{user_id}/verify", response_model=VerificationResponse)
async def verify_user(user_id: str, admin: AdminUserDep, db: SessionDep):
    """Grant the verified badge"""
    user = await _target(db, user_id)
    user.is_verified = True
    await db.commit()
    logger.info("admin.user.verified", user_id=user_id, admin_id=admin.id)
    return VerificationResponse(user_id=user.id, is_verified=user.is_verified)


@router.delete("/users/{user_id}/verify", response_model=VerificationResponse)
async def unverify_user(user_id: str, admin: AdminUserDep, db: SessionDep):
    user = await _target(db, user_id)
    user.is_verified = False
    await db.commit()
    logger.info("admin.user.unverified", user_id=user_id, admin_id=admin.id)
    return VerificationResponse(user_id=user.id, is_verified=user.is_verified)
