from __future__ import annotations

from typing import AsyncIterator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.core.errors import RaffleCoreError
from apps.raffles.core.security import AuthError, decode_access_token
from apps.raffles.db.models import User, UserRole

security = HTTPBearer(auto_error=True)


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database is not configured")
    async with database.unit_of_work() as session:
        yield session


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_session),
) -> User:
    try:
        payload = decode_access_token(credentials.credentials)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    user_id = int(payload.get("sub", 0))
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if user.role == UserRole.INACTIVE.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User inactive")
    return user


async def get_current_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return user


def as_http_error(error: RaffleCoreError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.public_message)
