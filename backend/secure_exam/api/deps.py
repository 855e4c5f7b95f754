from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ..core.database import get_async_db
from ..core.exceptions import Forbidden
from ..core.security import bearer_scheme, decode_token
from ..models.user import User, UserRole
from ..services.attempt_service import AttemptLocks, AttemptService
from ..services.dashboard_service import DashboardService
from ..services.exam_service import ExamService
from ..services.live_notifications import ConnectionRegistry, LiveNotifier


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_user_from_token(token: Optional[str], db: AsyncSession) -> Optional[User]:
    if not token:
        return None
    payload = decode_token(token)
    if payload is None:
        return None
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        return None
    result = await db.execute(select(User).filter(User.id == user_id))
    return result.scalars().first()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_async_db),
) -> User:
    user = await get_user_from_token(credentials.credentials if credentials else None, db)
    if user is None:
        raise _credentials_exception()
    return user


def require_roles(*roles: str):
    def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise Forbidden("Access denied. Insufficient role.")
        return current_user

    return checker


get_current_staff = require_roles(*UserRole.STAFF)
get_current_student = require_roles(UserRole.STUDENT)


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.live_registry


def get_attempt_locks(request: Request) -> AttemptLocks:
    return request.app.state.attempt_locks


def get_attempt_service(
    db: AsyncSession = Depends(get_async_db),
    registry: ConnectionRegistry = Depends(get_registry),
    locks: AttemptLocks = Depends(get_attempt_locks),
) -> AttemptService:
    return AttemptService(db, notifier=LiveNotifier(registry), locks=locks)


def get_exam_service(db: AsyncSession = Depends(get_async_db)) -> ExamService:
    return ExamService(db)


def get_dashboard_service(db: AsyncSession = Depends(get_async_db)) -> DashboardService:
    return DashboardService(db)
