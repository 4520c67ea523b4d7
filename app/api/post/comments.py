from typing import List, Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field
from sqlalchemy import select, update

from app.core.deps import CurrentUserDep, NotificationServiceDep, SessionDep
from app.core.errors import NotFoundError
from app.core.time import to_iso
from app.models.post import Comment, Post
from app.models.user import User
from app.services.notifications import COMMENT

router = APIRouter(tags=["comments"])


class CommentPayload(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)


class CommentResponse(BaseModel):
    id: str
    post_id: str
    user_id: str
    username: str
    display_name: Optional[str] = None
    content: str
    created_at: Optional[str]


class CommentListResponse(BaseModel):
    comments: List[CommentResponse]


def _comment_response(comment: Comment, author: User) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        post_id=comment.post_id,
        user_id=author.id,
        username=author.username,
        display_name=author.display_name,
        content=comment.content,
        created_at=to_iso(comment.created_at),
    )


async def _require_post(db, post_id: str) -> Post:
    post = await db.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")
    return post


@router.post("/posts/{post_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def create_comment(
    post_id: str,
    payload: CommentPayload,
    user: CurrentUserDep,
    db: SessionDep,
    notifications: NotificationServiceDep,
):
    post = await _require_post(db, post_id)
    comment = Comment(post_id=post_id, user_id=user.id, content=payload.content.strip())
    db.add(comment)
    await db.execute(
        update(Post)
        .where(Post.id == post_id)
        .values(comments_count=Post.comments_count + 1)
        .execution_options(synchronize_session=False)
    )
    await notifications.notify(
        post.user_id,
        COMMENT,
        f"{user.username} commented on your post",
        from_user_id=user.id,
        post_id=post_id,
    )
    await db.commit()
    return _comment_response(comment, user)


@router.get("/posts/{post_id}/comments", response_model=CommentListResponse)
async def list_comments(post_id: str, user: CurrentUserDep, db: SessionDep):
    await _require_post(db, post_id)
    rows = (
        await db.execute(
            select(Comment, User)
            .join(User, User.id == Comment.user_id)
            .where(Comment.post_id == post_id)
            .order_by(Comment.created_at.asc())
        )
    ).all()
    return CommentListResponse(comments=[_comment_response(c, a) for c, a in rows])
