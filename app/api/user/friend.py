from typing import List, Optional

from fastapi import APIRouter, status
from pydantic import BaseModel

from app.core.deps import CurrentUserIdDep, FollowServiceDep
from app.core.time import to_iso
from app.models.user import User

router = APIRouter(tags=["friend"])

# --- Schemas ---

class UserSummary(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_verified: bool = False


class FollowResponse(BaseModel):
    following: bool
    changed: bool


class UserListResponse(BaseModel):
    users: List[UserSummary]


class SendFriendRequestResponse(BaseModel):
    message: str
    request_id: str
    status: str


class ReceivedFriendRequest(BaseModel):
    request_id: str
    sender: UserSummary
    status: str
    created_at: Optional[str]


class AcceptFriendRequestResponse(BaseModel):
    message: str
    friend: UserSummary
    chat_id: Optional[str] = None


class RejectFriendRequestResponse(BaseModel):
    message: str


class RemoveFriendResponse(BaseModel):
    message: str


def summarize_user(user: User) -> UserSummary:
    return UserSummary(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        is_verified=user.is_verified,
    )

# --- Endpoints ---

@router.post("/users/{target_id}/follow", response_model=FollowResponse)
async def follow_user(target_id: str, user_id: CurrentUserIdDep, follows: FollowServiceDep):
    changed = await follows.follow(user_id, target_id)
    return FollowResponse(following=True, changed=changed)


@router.delete("/users/{target_id}/follow", response_model=FollowResponse)
async def unfollow_user(target_id: str, user_id: CurrentUserIdDep, follows: FollowServiceDep):
    changed = await follows.unfollow(user_id, target_id)
    return FollowResponse(following=False, changed=changed)


@router.get("/users/{target_id}/followers", response_model=UserListResponse)
async def list_followers(target_id: str, user_id: CurrentUserIdDep, follows: FollowServiceDep):
    users = await follows.list_followers(target_id)
    return UserListResponse(users=[summarize_user(u) for u in users])


@router.get("/users/{target_id}/following", response_model=UserListResponse)
async def list_following(target_id: str, user_id: CurrentUserIdDep, follows: FollowServiceDep):
    users = await follows.list_following(target_id)
    return UserListResponse(users=[summarize_user(u) for u in users])


@router.post(
    "/friend-requests/{target_id}",
    response_model=SendFriendRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_friend_request(target_id: str, user_id: CurrentUserIdDep, follows: FollowServiceDep):
    request = await follows.send_friend_request(user_id, target_id)
    return SendFriendRequestResponse(
        message="Friend request sent successfully.",
        request_id=request.id,
        status=request.status,
    )


@router.get("/friend-requests/received", response_model=List[ReceivedFriendRequest])
async def get_received_friend_requests(user_id: CurrentUserIdDep, follows: FollowServiceDep):
    rows = await follows.list_received(user_id)
    return [
        ReceivedFriendRequest(
            request_id=request.id,
            sender=summarize_user(sender),
            status=request.status,
            created_at=to_iso(request.created_at),
        )
        for request, sender in rows
    ]


@router.post("/friend-requests/{request_id}/accept", response_model=AcceptFriendRequestResponse)
async def accept_friend_request(request_id: str, user_id: CurrentUserIdDep, follows: FollowServiceDep):
    result = await follows.accept_friend_request(request_id, user_id)
    friend = await follows.db.get(User, result.request.from_user_id)
    return AcceptFriendRequestResponse(
        message="Friend request accepted.",
        friend=summarize_user(friend),
        chat_id=result.chat.id if result.chat else None,
    )


@router.post("/friend-requests/{request_id}/reject", response_model=RejectFriendRequestResponse)
async def reject_friend_request(request_id: str, user_id: CurrentUserIdDep, follows: FollowServiceDep):
    await follows.reject_friend_request(request_id, user_id)
    return RejectFriendRequestResponse(message="Friend request rejected.")


@router.delete("/friends/{friend_id}", response_model=RemoveFriendResponse)
async def remove_friend(friend_id: str, user_id: CurrentUserIdDep, follows: FollowServiceDep):
    await follows.remove_friend(user_id, friend_id)
    return RemoveFriendResponse(message="Friend removed successfully.")
