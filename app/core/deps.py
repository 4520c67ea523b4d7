"""
Dependency Injection

FastAPI dependencies for routes.
"""

from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import AuthenticationError, PermissionError
from app.core.logging import bind_user
from app.core.sessions import SessionStore
from app.core.time import Clock, utcnow
from app.core.token import authenticate_token, security_scheme
from app.infra.db import get_db
from app.infra.storage import MediaStore
from app.models.user import User
from app.services.connection_manager import ConnectionManager
from app.services.dm import DmService
from app.services.follow import FollowService
from app.services.notifications import NotificationService
from app.services.reactions import ReactionService

# Type aliases for common dependencies
SessionDep = Annotated[AsyncSession, Depends(get_db)]


def get_clock() -> Clock:
    return utcnow


ClockDep = Annotated[Clock, Depends(get_clock)]


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]


def get_media_store(request: Request) -> MediaStore:
    return request.app.state.media_store


MediaStoreDep = Annotated[MediaStore, Depends(get_media_store)]


def get_connection_manager(request: Request) -> ConnectionManager:
    return request.app.state.connection_manager


ConnectionManagerDep = Annotated[ConnectionManager, Depends(get_connection_manager)]


async def get_current_auth(
    db: SessionDep,
    store: SessionStoreDep,
    auth: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security_scheme)],
) -> tuple[User, str]:
    if auth is None:
        raise AuthenticationError("Not authenticated")
    user, session_id = await authenticate_token(auth.credentials, store, db)
    bind_user(user.id)
    return user, session_id


async def get_current_user(
    current: Annotated[tuple[User, str], Depends(get_current_auth)],
) -> User:
    return current[0]


async def get_current_user_id(user: Annotated[User, Depends(get_current_user)]) -> str:
    return user.id


async def get_admin_user(user: Annotated[User, Depends(get_current_user)]) -> User:
    if not user.is_admin:
        raise PermissionError("Admin privileges required")
    return user


# Frequently used Dependency Annotation
CurrentAuthDep = Annotated[tuple[User, str], Depends(get_current_auth)]
CurrentUserDep = Annotated[User, Depends(get_current_user)]
CurrentUserIdDep = Annotated[str, Depends(get_current_user_id)]
AdminUserDep = Annotated[User, Depends(get_admin_user)]


def get_dm_service(db: SessionDep, clock: ClockDep) -> DmService:
    return DmService(db, clock=clock, dismiss_cooldown=settings.dm_dismiss_cooldown_seconds)


def get_reaction_service(db: SessionDep, clock: ClockDep) -> ReactionService:
    return ReactionService(db, clock=clock)


def get_follow_service(db: SessionDep, clock: ClockDep) -> FollowService:
    return FollowService(db, clock=clock)


def get_notification_service(db: SessionDep, clock: ClockDep) -> NotificationService:
    return NotificationService(db, clock=clock)


DmServiceDep = Annotated[DmService, Depends(get_dm_service)]
ReactionServiceDep = Annotated[ReactionService, Depends(get_reaction_service)]
FollowServiceDep = Annotated[FollowService, Depends(get_follow_service)]
NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
