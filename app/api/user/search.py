from typing import List

from fastapi import APIRouter, Query
from pydantic import BaseModel
from sqlalchemy import or_, select

from app.api.post.posts import PostResponse, post_to_response
from app.api.user.friend import UserSummary, summarize_user
from app.core.config import settings
from app.core.deps import CurrentUserIdDep, ReactionServiceDep, SessionDep
from app.models.post import Post
from app.models.user import User

router = APIRouter(tags=["search"])

# usernames shorter than this match too much to be useful
MIN_USER_QUERY = 2


class UserSearchResponse(BaseModel):
    users: List[UserSummary]


class SearchResponse(BaseModel):
    users: List[UserSummary]
    posts: List[PostResponse]


async def _search_users(db, query: str) -> List[User]:
    stmt = (
        select(User)
        .where(
            User.account_status == "live",
            or_(
                User.username.icontains(query, autoescape=True),
                User.display_name.icontains(query, autoescape=True),
            ),
        )
        .order_by(User.username)
        .limit(settings.search_users_limit)
    )
    return list((await db.execute(stmt)).scalars().all())


@router.get("/users/search", response_model=UserSearchResponse)
async def search_users(user_id: CurrentUserIdDep, db: SessionDep, q: str = Query("")):
    query = q.strip()
    if len(query) < MIN_USER_QUERY:
        return UserSearchResponse(users=[])
    users = await _search_users(db, query)
    return UserSearchResponse(users=[summarize_user(u) for u in users])


@router.get("/search", response_model=SearchResponse)
async def search(user_id: CurrentUserIdDep, db: SessionDep, reactions: ReactionServiceDep, q: str = Query("")):
    """Users by name plus posts whose caption or title matches, newest first."""
    query = q.strip()
    if not query:
        return SearchResponse(users=[], posts=[])

    users = await _search_users(db, query)
    rows = (
        await db.execute(
            select(Post, User)
            .join(User, User.id == Post.user_id)
            .where(
                or_(
                    Post.caption.icontains(query, autoescape=True),
                    Post.title.icontains(query, autoescape=True),
                )
            )
            .order_by(Post.created_at.desc())
            .limit(settings.search_posts_limit)
        )
    ).all()
    return SearchResponse(
        users=[summarize_user(u) for u in users],
        posts=[await post_to_response(post, author, reactions, user_id) for post, author in rows],
    )
