"""
Token management and validation logic.
All JWT and authentication dependency operations are centralized here.
"""

from datetime import timedelta
from typing import Optional

from fastapi.security import HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import AuthenticationError, PermissionError
from app.core.sessions import SessionStore
from app.core.time import utcnow
from app.models.user import User

# HTTP Bearer scheme (Only shows a token input box in Swagger)
security_scheme = HTTPBearer(auto_error=False)


def create_access_token(
    user_id: str,
    session_id: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create JWT access token bound to a login session"""
    now = utcnow()
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode = {"sub": user_id, "sid": session_id, "exp": expire, "iat": now}

    encoded_jwt = jwt.encode(
        to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm
    )

    return encoded_jwt


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate JWT token string"""
    try:
        payload = jwt.decode(
            token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
        )
        return payload
    except JWTError:
        return None


async def authenticate_token(token: str, store: SessionStore, db: AsyncSession) -> tuple[User, str]:
    """
    Resolve a bearer token to its user and session id.

    The token must decode, its session must still be live and belong to the
    same user, and the user must not be banned.
    """
    payload = decode_token(token)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    user_id: Optional[str] = payload.get("sub")
    session_id: Optional[str] = payload.get("sid")
    if not user_id or not session_id:
        raise AuthenticationError("Could not validate credentials")

    session = await store.get(session_id)
    if session is None or session.user_id != user_id:
        raise AuthenticationError("Session expired or revoked")

    user = await db.get(User, user_id)
    if user is None:
        raise AuthenticationError("User no longer exists")
    if user.is_banned:
        raise PermissionError(
            "Account is banned",
            details={"reason": user.account_status_reason},
            code="account_banned",
        )
    return user, session_id
