from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import get_password_hash
from app.models.user import User


async def make_user(db: AsyncSession, username: str, is_admin: bool = False, password: str = "secret123") -> User:
    user = User(
        username=username,
        display_name=username.removeprefix("tp-").title(),
        hashed_password=get_password_hash(password),
        is_admin=is_admin,
    )
    db.add(user)
    await db.commit()
    return user


async def signup(client: AsyncClient, username: str, password: str = "secret123") -> dict:
    """Sign up through the API and return auth headers plus the user id"""
    response = await client.post("/signup", json={"username": username, "password": password})
    assert response.status_code == 201, response.text
    body = response.json()
    return {
        "user_id": body["user_id"],
        "headers": {"Authorization": f"Bearer {body['access_token']}"},
    }
