from typing import List, Optional

from fastapi import APIRouter, File, Form, Query, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy import select, update

from app.core.deps import CurrentUserDep, MediaStoreDep, ReactionServiceDep, SessionDep
from app.core.errors import NotFoundError, PermissionError, ValidationError
from app.core.logging import get_logger
from app.core.time import to_iso
from app.models.friend import Follow
from app.models.post import Post
from app.models.user import User

router = APIRouter(tags=["posts"])
logger = get_logger(__name__)


# --- Schemas ---

class PostAuthor(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_verified: bool = False


class PostResponse(BaseModel):
    id: str
    author: PostAuthor
    is_admin_post: bool
    title: Optional[str] = None
    caption: Optional[str] = None
    category: Optional[str] = None
    rank: Optional[int] = None
    media_url: Optional[str] = None
    link: Optional[str] = None
    likes_count: int
    dislikes_count: int
    votes_count: int
    comments_count: int
    is_liked: bool = False
    is_disliked: bool = False
    is_voted: bool = False
    created_at: Optional[str]


class PostListResponse(BaseModel):
    posts: List[PostResponse]


class PostUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255)
    caption: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=64)
    rank: Optional[int] = None
    link: Optional[str] = Field(default=None, max_length=512)


# --- Helpers ---

async def post_to_response(post: Post, author: User, reactions, viewer_id: str) -> PostResponse:
    is_liked, is_disliked, is_voted = await reactions.reaction_of(post.id, viewer_id)
    return PostResponse(
        id=post.id,
        author=PostAuthor(
            id=author.id,
            username=author.username,
            display_name=author.display_name,
            avatar_url=author.avatar_url,
            is_verified=author.is_verified,
        ),
        is_admin_post=post.is_admin_post,
        title=post.title,
        caption=post.caption,
        category=post.category,
        rank=post.rank,
        media_url=post.media_url,
        link=post.link,
        likes_count=post.likes_count,
        dislikes_count=post.dislikes_count,
        votes_count=post.votes_count,
        comments_count=post.comments_count,
        is_liked=is_liked,
        is_disliked=is_disliked,
        is_voted=is_voted,
        created_at=to_iso(post.created_at),
    )


# --- Endpoints ---

@router.post("/posts", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    user: CurrentUserDep,
    db: SessionDep,
    media: MediaStoreDep,
    reactions: ReactionServiceDep,
    caption: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    rank: Optional[int] = Form(None),
    link: Optional[str] = Form(None),
    is_admin_post: bool = Form(False),
    file: Optional[UploadFile] = File(None),
):
    """
    Create a post. Admin trend posts carry title/category/rank and need
    an admin account; regular posts need a caption or a media file.
    """
    if is_admin_post and not user.is_admin:
        raise PermissionError("Only admins can create trend posts")
    if is_admin_post and not title:
        raise ValidationError("Trend posts require a title")
    if not is_admin_post and not (caption or file):
        raise ValidationError("A post needs a caption or a media file")

    media_url = None
    if file is not None:
        stored = await media.upload(await file.read(), file.filename or "upload", file.content_type)
        media_url = stored.url

    post = Post(
        user_id=user.id,
        is_admin_post=is_admin_post,
        title=title,
        caption=caption,
        category=category,
        rank=rank,
        link=link,
        media_url=media_url,
    )
    db.add(post)
    await db.execute(
        update(User).where(User.id == user.id).values(posts_count=User.posts_count + 1)
    )
    await db.commit()
    logger.info("post.created", post_id=post.id, user_id=user.id, is_admin_post=is_admin_post)
    return await post_to_response(post, user, reactions, user.id)


@router.get("/posts", response_model=PostListResponse)
async def list_posts(
    user: CurrentUserDep,
    db: SessionDep,
    reactions: ReactionServiceDep,
    admin_only: bool = Query(False),
    author_id: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    stmt = select(Post, User).join(User, User.id == Post.user_id)
    if admin_only:
        stmt = stmt.where(Post.is_admin_post.is_(True))
    if author_id:
        stmt = stmt.where(Post.user_id == author_id)
    stmt = stmt.order_by(Post.created_at.desc()).limit(limit).offset(offset)
    rows = (await db.execute(stmt)).all()
    return PostListResponse(
        posts=[await post_to_response(post, author, reactions, user.id) for post, author in rows]
    )


@router.get("/posts/following", response_model=PostListResponse)
async def list_following_posts(
    user: CurrentUserDep,
    db: SessionDep,
    reactions: ReactionServiceDep,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Posts by the accounts the caller follows, newest first."""
    followed = select(Follow.following_id).where(Follow.follower_id == user.id)
    stmt = (
        select(Post, User)
        .join(User, User.id == Post.user_id)
        .where(Post.user_id.in_(followed))
        .order_by(Post.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    rows = (await db.execute(stmt)).all()
    return PostListResponse(
        posts=[await post_to_response(post, author, reactions, user.id) for post, author in rows]
    )


@router.get("/posts/{post_id}", response_model=PostResponse)
async def get_post(post_id: str, user: CurrentUserDep, db: SessionDep, reactions: ReactionServiceDep):
    row = (
        await db.execute(select(Post, User).join(User, User.id == Post.user_id).where(Post.id == post_id))
    ).first()
    if row is None:
        raise NotFoundError("Post not found")
    return await post_to_response(row[0], row[1], reactions, user.id)


@router.put("/posts/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: str,
    data: PostUpdateRequest,
    user: CurrentUserDep,
    db: SessionDep,
    reactions: ReactionServiceDep,
):
    """Edit the text fields of your own post; media stays as uploaded."""
    post = await db.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")
    if post.user_id != user.id:
        raise PermissionError("You can only edit your own posts")

    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No update fields provided")
    if post.is_admin_post and "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("Trend posts require a title")
    if not post.is_admin_post and "caption" in changes and not changes["caption"] and not post.media_url:
        raise ValidationError("A post needs a caption or a media file")

    for field, value in changes.items():
        setattr(post, field, value)
    await db.commit()
    logger.info("post.updated", post_id=post.id, user_id=user.id, fields=sorted(changes))
    return await post_to_response(post, user, reactions, user.id)


async def remove_post(db, post: Post) -> None:
    await db.delete(post)
    await db.execute(
        update(User)
        .where(User.id == post.user_id, User.posts_count > 0)
        .values(posts_count=User.posts_count - 1)
    )
    await db.commit()


@router.delete("/posts/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(post_id: str, user: CurrentUserDep, db: SessionDep):
    post = await db.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")
    if post.user_id != user.id and not user.is_admin:
        raise PermissionError("You can only delete your own posts")
    await remove_post(db, post)
    logger.info("post.deleted", post_id=post_id, user_id=user.id)
