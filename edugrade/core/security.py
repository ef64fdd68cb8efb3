# edugrade/core/security.py
import enum
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from edugrade.core.config import settings
from edugrade.core.utils import utcnow


class Role(str, enum.Enum):
    ADMIN = "1100"
    LECTURER = "1200"
    STUDENT = "1300"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_instructor(self) -> bool:
        return self.role in (Role.LECTURER, Role.ADMIN)


bearer_scheme = HTTPBearer()


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Issue a token in the same shape the auth service does.
    Only used for local development and tests.
    """
    to_encode = data.copy()
    expire = utcnow() + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise credentials_exception

    user_id = payload.get("sub")
    raw_role = payload.get("role")
    if not user_id or raw_role is None:
        raise credentials_exception
    try:
        role = Role(str(raw_role))
    except ValueError:
        raise credentials_exception
    return CurrentUser(id=str(user_id), role=role)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> CurrentUser:
    return decode_access_token(credentials.credentials)


def get_current_instructor(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if not current_user.is_instructor:
        raise HTTPException(status_code=403, detail="Instructor role required")
    return current_user


def get_current_student(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if current_user.role is not Role.STUDENT:
        raise HTTPException(status_code=403, detail="Student role required")
    return current_user
