"""
API Router
"""

from fastapi import APIRouter

from app.api.admin.dashboard import router as admin_dashboard_router
from app.api.admin.moderation import router as admin_router
from app.api.dm.chats import router as dm_chats_router
from app.api.dm.messages import router as dm_messages_router
from app.api.dm.requests import router as dm_requests_router
from app.api.health import router as health_router
from app.api.post.comments import router as comments_router
from app.api.post.posts import router as posts_router
from app.api.post.reactions import router as reactions_router
from app.api.user.friend import router as friend_router
from app.api.user.login import router as auth_router
from app.api.user.notifications import router as notifications_router
from app.api.user.profile import router as profile_router
from app.api.user.search import router as search_router
from app.api.vibe.vibes import router as vibes_router

api_router = APIRouter()

# 1. Routes that DON'T need authentication
api_router.include_router(health_router)
api_router.include_router(auth_router)  # signup/login; logout and /me check the session themselves

# 2. Routes that DO need authentication (each endpoint depends on the current user)
# search before profile so /users/search is not read as /users/{target_id}
api_router.include_router(search_router)
api_router.include_router(profile_router)
api_router.include_router(friend_router)
api_router.include_router(posts_router)
api_router.include_router(reactions_router)
api_router.include_router(comments_router)
api_router.include_router(vibes_router)
api_router.include_router(notifications_router)
api_router.include_router(dm_messages_router)
api_router.include_router(dm_requests_router)
api_router.include_router(dm_chats_router)
api_router.include_router(admin_router)
api_router.include_router(admin_dashboard_router)
