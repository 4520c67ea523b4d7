from app.models.base import Base
from app.models.dm import DmBlock, DmChat, DmMessage, DmRequest
from app.models.friend import Follow, FriendRequest
from app.models.notification import Notification
from app.models.post import Comment, Post, PostReaction, PostVote
from app.models.user import User
from app.models.vibe import Vibe

__all__ = [
    "Base",
    "User",
    "Follow",
    "FriendRequest",
    "Post",
    "PostReaction",
    "PostVote",
    "Comment",
    "Vibe",
    "Notification",
    "DmRequest",
    "DmChat",
    "DmMessage",
    "DmBlock",
]
