from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel
from sqlalchemy import func, select

from app.api.post.posts import PostListResponse, post_to_response
from app.core.deps import AdminUserDep, ClockDep, ReactionServiceDep, SessionDep
from app.core.time import to_iso
from app.models.post import Comment, Post
from app.models.user import User

router = APIRouter(prefix="/admin", tags=["admin"])


class AdminStatsResponse(BaseModel):
    total_users: int
    total_posts: int
    total_comments: int
    today_signups: int
    banned_users: int
    verified_users: int


class AdminUserResponse(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    is_admin: bool
    is_verified: bool
    account_status: str
    account_status_reason: Optional[str] = None
    posts_count: int
    followers_count: int
    created_at: Optional[str]


class AdminUserListResponse(BaseModel):
    users: List[AdminUserResponse]


async def _count(db, stmt) -> int:
    return (await db.execute(stmt)).scalar_one()


@router.get("/stats", response_model=AdminStatsResponse)
async def get_stats(admin: AdminUserDep, db: SessionDep, clock: ClockDep):
    """Platform totals; admin accounts are left out of the user numbers."""
    members = select(func.count(User.id)).where(User.is_admin.is_(False))
    start_of_day = clock().replace(hour=0, minute=0, second=0, microsecond=0)
    return AdminStatsResponse(
        total_users=await _count(db, members),
        total_posts=await _count(db, select(func.count(Post.id))),
        total_comments=await _count(db, select(func.count(Comment.id))),
        today_signups=await _count(db, members.where(User.created_at >= start_of_day)),
        banned_users=await _count(db, members.where(User.account_status == "banned")),
        verified_users=await _count(db, members.where(User.is_verified.is_(True))),
    )


@router.get("/users", response_model=AdminUserListResponse)
async def list_users(
    admin: AdminUserDep,
    db: SessionDep,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    users = (
        await db.execute(select(User).order_by(User.created_at.desc()).limit(limit).offset(offset))
    ).scalars().all()
    return AdminUserListResponse(
        users=[
            AdminUserResponse(
                id=u.id,
                username=u.username,
                display_name=u.display_name,
                is_admin=u.is_admin,
                is_verified=u.is_verified,
                account_status=u.account_status,
                account_status_reason=u.account_status_reason,
                posts_count=u.posts_count,
                followers_count=u.followers_count,
                created_at=to_iso(u.created_at),
            )
            for u in users
        ]
    )


@router.get("/posts", response_model=PostListResponse)
async def list_all_posts(
    admin: AdminUserDep,
    db: SessionDep,
    reactions: ReactionServiceDep,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    rows = (
        await db.execute(
            select(Post, User)
            .join(User, User.id == Post.user_id)
            .order_by(Post.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
    ).all()
    return PostListResponse(
        posts=[await post_to_response(post, author, reactions, admin.id) for post, author in rows]
    )
