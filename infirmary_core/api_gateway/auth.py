from datetime import UTC, datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database.session import get_session
from ..incidents.collaborators import HANDLER_ROLES, SUPERVISOR_ROLES, StaffRef
from ..models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/token")

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 30


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(token: str = Depends(oauth2_scheme), session: AsyncSession = Depends(get_session)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    result = await session.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)):
    if not current_user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user


class UserIdentity:
    """IdentityProvider for the authenticated request user."""

    def __init__(self, user_id, full_name: str, role: str):
        self.actor = StaffRef(id=user_id, full_name=full_name)
        self.role = role

    @classmethod
    def from_user(cls, user: User) -> "UserIdentity":
        return cls(user.id, user.full_name or user.username, user.role)

    async def current_actor(self) -> StaffRef:
        return self.actor

    async def has_supervisor_privilege(self, actor: StaffRef) -> bool:
        return actor.id == self.actor.id and self.role in SUPERVISOR_ROLES


async def require_staff(current_user: User = Depends(get_current_active_user)) -> UserIdentity:
    """Only medical staff and supervisors may touch incidents; guardians are read-only recipients."""
    if current_user.role not in HANDLER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Medical staff only")
    return UserIdentity.from_user(current_user)
