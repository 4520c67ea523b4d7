from typing import Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field
from sqlalchemy import select

from app.core.deps import CurrentAuthDep, CurrentUserDep, SessionDep, SessionStoreDep
from app.core.errors import AuthenticationError, PermissionError, StateConflictError
from app.core.logging import get_logger
from app.core.security import get_password_hash, verify_password
from app.core.token import create_access_token
from app.models.user import User

router = APIRouter(tags=["auth"])
logger = get_logger(__name__)

USERNAME_PATTERN = r"^tp-[a-zA-Z0-9_]+$"

# ============ Schemas ============

class SignupRequest(BaseModel):
    username: str = Field(..., pattern=USERNAME_PATTERN, max_length=64)
    password: str = Field(..., min_length=6)
    display_name: Optional[str] = Field(default=None, max_length=128)
    email: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str


class MeResponse(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    is_admin: bool
    is_verified: bool = False
    account_status: str
    followers_count: int
    following_count: int
    posts_count: int


def me_response(user: User) -> MeResponse:
    return MeResponse(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        email=user.email,
        avatar_url=user.avatar_url,
        bio=user.bio,
        is_admin=user.is_admin,
        is_verified=user.is_verified,
        account_status=user.account_status,
        followers_count=user.followers_count,
        following_count=user.following_count,
        posts_count=user.posts_count,
    )

# ============ Endpoints ============

@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def signup(data: SignupRequest, db: SessionDep, store: SessionStoreDep):
    """
    Sign-up
    """
    # 1. Check if username is taken
    result = await db.execute(select(User).where(User.username == data.username))
    if result.scalar_one_or_none():
        raise StateConflictError("Username is already taken")

    # 2. Create new user
    new_user = User(
        username=data.username,
        display_name=data.display_name or data.username,
        email=data.email,
        hashed_password=get_password_hash(data.password),
        account_status="live",
    )
    db.add(new_user)
    await db.commit()

    # 3. Open session
    session = await store.create(new_user.id)
    logger.info("user.signup", user_id=new_user.id)

    return TokenResponse(
        access_token=create_access_token(new_user.id, session.session_id),
        user_id=new_user.id,
    )


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest, db: SessionDep, store: SessionStoreDep):
    """
    Login
    """
    # 1. Fetch User
    result = await db.execute(select(User).where(User.username == data.username))
    user = result.scalar_one_or_none()

    # 2. Verify Password
    if not user or not verify_password(data.password, user.hashed_password):
        raise AuthenticationError("Invalid username or password")

    if user.is_banned:
        raise PermissionError(
            "Account is banned",
            details={"reason": user.account_status_reason},
            code="account_banned",
        )

    # 3. Open session
    session = await store.create(user.id)
    logger.info("user.login", user_id=user.id)

    return TokenResponse(
        access_token=create_access_token(user.id, session.session_id),
        user_id=user.id,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(current: CurrentAuthDep, store: SessionStoreDep):
    user, session_id = current
    await store.revoke(session_id)
    logger.info("user.logout", user_id=user.id)


@router.get("/me", response_model=MeResponse)
async def me(user: CurrentUserDep):
    return me_response(user)
