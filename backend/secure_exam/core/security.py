from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional
import logging

import jwt
from fastapi.security import HTTPBearer

from .config import settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

STAFF_ROLES = ("instructor", "admin")


class Identity(NamedTuple):
    """Detached snapshot of who is calling, safe to use after a rollback."""

    id: int
    role: str
    full_name: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @classmethod
    def of(cls, user) -> "Identity":
        return cls(id=user.id, role=user.role, full_name=getattr(user, "full_name", None))


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_user_token(user) -> str:
    """Mint a token for a provisioned user, carrying id, role and name."""
    return create_access_token(
        {"sub": str(user.id), "role": user.role, "name": user.full_name, "email": user.email}
    )


def decode_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected invalid token: {e}")
        return None
    if payload.get("sub") is None:
        return None
    return payload
