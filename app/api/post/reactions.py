from fastapi import APIRouter
from pydantic import BaseModel

from app.core.deps import CurrentUserIdDep, ReactionServiceDep

router = APIRouter(tags=["posts"])


class ReactionResponse(BaseModel):
    is_liked: bool
    is_disliked: bool
    likes_count: int
    dislikes_count: int


class VoteResponse(BaseModel):
    is_voted: bool
    votes_count: int


@router.post("/posts/{post_id}/like", response_model=ReactionResponse)
async def like_post(post_id: str, user_id: CurrentUserIdDep, reactions: ReactionServiceDep):
    result = await reactions.toggle_like(post_id, user_id)
    return ReactionResponse(**vars(result))


@router.post("/posts/{post_id}/dislike", response_model=ReactionResponse)
async def dislike_post(post_id: str, user_id: CurrentUserIdDep, reactions: ReactionServiceDep):
    result = await reactions.toggle_dislike(post_id, user_id)
    return ReactionResponse(**vars(result))


@router.post("/posts/{post_id}/vote", response_model=VoteResponse)
async def vote_post(post_id: str, user_id: CurrentUserIdDep, reactions: ReactionServiceDep):
    result = await reactions.toggle_vote(post_id, user_id)
    return VoteResponse(**vars(result))
