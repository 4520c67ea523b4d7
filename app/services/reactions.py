"""
Like / dislike / vote toggles on posts.

Like and dislike share one PostReaction row per (post, user), so a user can
hold at most one of them. Votes live in their own table and ignore reactions.
Counters on Post are moved with SQL expressions and are clamped at zero.
"""

from dataclasses import dataclass

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, StateConflictError
from app.core.logging import get_logger
from app.core.time import Clock, utcnow
from app.models.post import Post, PostReaction, PostVote
from app.models.user import User
from app.services.notifications import LIKE, NotificationService

logger = get_logger(__name__)

COUNTERS = {"like": Post.likes_count, "dislike": Post.dislikes_count}


@dataclass
class ReactionResult:
    is_liked: bool
    is_disliked: bool
    likes_count: int
    dislikes_count: int


@dataclass
class VoteResult:
    is_voted: bool
    votes_count: int


def _increment(column):
    return column + 1


def _decrement(column):
    return case((column > 0, column - 1), else_=0)


class ReactionService:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self.notifications = NotificationService(db, clock=clock)

    async def _require_post(self, post_id: str) -> str:
        """Returns the author id"""
        author_id = (await self.db.execute(select(Post.user_id).where(Post.id == post_id))).scalar_one_or_none()
        if author_id is None:
            raise NotFoundError("Post not found")
        return author_id

    async def _adjust(self, post_id: str, **values) -> None:
        await self.db.execute(
            update(Post)
            .where(Post.id == post_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def _toggle(self, post_id: str, user_id: str, kind: str) -> ReactionResult:
        author_id = await self._require_post(post_id)
        other = "dislike" if kind == "like" else "like"

        existing = (
            await self.db.execute(
                select(PostReaction).where(PostReaction.post_id == post_id, PostReaction.user_id == user_id)
            )
        ).scalar_one_or_none()

        counter = COUNTERS[kind]
        other_counter = COUNTERS[other]
        if existing is None:
            self.db.add(PostReaction(post_id=post_id, user_id=user_id, kind=kind))
            await self._adjust(post_id, **{counter.key: _increment(counter)})
            state = kind
        elif existing.kind == kind:
            await self.db.execute(delete(PostReaction).where(PostReaction.id == existing.id))
            await self._adjust(post_id, **{counter.key: _decrement(counter)})
            state = None
        else:
            existing.kind = kind
            await self._adjust(
                post_id,
                **{counter.key: _increment(counter), other_counter.key: _decrement(other_counter)},
            )
            state = kind

        try:
            if state == "like":
                liker = await self.db.get(User, user_id)
                await self.notifications.notify(
                    author_id,
                    LIKE,
                    f"{liker.username} liked your post",
                    from_user_id=user_id,
                    post_id=post_id,
                )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise StateConflictError("Reaction changed concurrently, retry") from e

        likes, dislikes = (
            await self.db.execute(select(Post.likes_count, Post.dislikes_count).where(Post.id == post_id))
        ).one()
        logger.info("post.reaction.toggled", post_id=post_id, user_id=user_id, kind=kind, state=state)
        return ReactionResult(
            is_liked=state == "like",
            is_disliked=state == "dislike",
            likes_count=likes,
            dislikes_count=dislikes,
        )

    async def toggle_like(self, post_id: str, user_id: str) -> ReactionResult:
        return await self._toggle(post_id, user_id, "like")

    async def toggle_dislike(self, post_id: str, user_id: str) -> ReactionResult:
        return await self._toggle(post_id, user_id, "dislike")

    async def toggle_vote(self, post_id: str, user_id: str) -> VoteResult:
        await self._require_post(post_id)
        existing = (
            await self.db.execute(
                select(PostVote).where(PostVote.post_id == post_id, PostVote.user_id == user_id)
            )
        ).scalar_one_or_none()

        if existing is None:
            self.db.add(PostVote(post_id=post_id, user_id=user_id))
            await self._adjust(post_id, votes_count=_increment(Post.votes_count))
        else:
            await self.db.execute(delete(PostVote).where(PostVote.id == existing.id))
            await self._adjust(post_id, votes_count=_decrement(Post.votes_count))

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise StateConflictError("Vote changed concurrently, retry") from e

        votes = (await self.db.execute(select(Post.votes_count).where(Post.id == post_id))).scalar_one()
        return VoteResult(is_voted=existing is None, votes_count=votes)

    async def reaction_of(self, post_id: str, user_id: str) -> tuple[bool, bool, bool]:
        """(is_liked, is_disliked, is_voted) for rendering a post"""
        kind = (
            await self.db.execute(
                select(PostReaction.kind).where(PostReaction.post_id == post_id, PostReaction.user_id == user_id)
            )
        ).scalar_one_or_none()
        voted = (
            await self.db.execute(
                select(PostVote.id).where(PostVote.post_id == post_id, PostVote.user_id == user_id)
            )
        ).scalar_one_or_none()
        return kind == "like", kind == "dislike", voted is not None
