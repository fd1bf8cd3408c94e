"""
API Security: staff login (JWT bearer) and ADMIN / LECTURER role guards.

Staff accounts mirror rows of the `profiles` table; the token subject is
the profile id and every request re-resolves the profile, so a removed
account stops working before its token expires.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config.logging_config import logger
from config.settings import settings

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class Role(str, Enum):
    ADMIN    = "ADMIN"
    LECTURER = "LECTURER"


# ── Models ─────────────────────────────────────────────────────────────────────
class Token(BaseModel):
    access_token: str
    token_type:   str = "bearer"


class User(BaseModel):
    id:         str
    email:      str
    role:       Role
    full_name:  str
    department: str | None = None


class StaffAccount(User):
    hashed_password: str


# ── Demo account store (the profiles table in production) ─────────────────────
@lru_cache(maxsize=1)
def get_staff_accounts() -> dict[str, StaffAccount]:
    """Accounts keyed by lower-cased email."""
    accounts = [
        StaffAccount(
            id="0b7c6a52-admin",
            email="admin@campus.edu",
            role=Role.ADMIN,
            full_name="Academic Administrator",
            hashed_password=pwd_context.hash("admin123"),
        ),
        StaffAccount(
            id="5e1f9d03-lecturer",
            email="lecturer@campus.edu",
            role=Role.LECTURER,
            full_name="Course Lecturer",
            department="Computer Science",
            hashed_password=pwd_context.hash("lecturer123"),
        ),
    ]
    return {account.email: account for account in accounts}


def _account_by_id(profile_id: str) -> StaffAccount | None:
    for account in get_staff_accounts().values():
        if account.id == profile_id:
            return account
    return None


# ── Tokens ─────────────────────────────────────────────────────────────────────
def authenticate_user(email: str, password: str) -> User | None:
    account = get_staff_accounts().get(email.strip().lower())
    if account is None or not pwd_context.verify(password, account.hashed_password):
        logger.warning(f"Failed login attempt for {email!r}")
        return None
    return User.model_validate(account.model_dump(exclude={"hashed_password"}))


def create_access_token(user: User) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)
    claims = {"sub": user.id, "email": user.email, "role": user.role.value, "exp": expire}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


async def get_current_user(token: Annotated[str, Depends(oauth2_scheme)]) -> User:
    credentials_exc = HTTPException(
        status_code = status.HTTP_401_UNAUTHORIZED,
        detail      = "Could not validate credentials",
        headers     = {"WWW-Authenticate": "Bearer"},
    )
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise credentials_exc

    account = _account_by_id(claims.get("sub") or "")
    if account is None:
        raise credentials_exc
    return User.model_validate(account.model_dump(exclude={"hashed_password"}))


# ── Role guards ────────────────────────────────────────────────────────────────
def require_roles(*allowed: Role):
    """Dependency factory that restricts an endpoint to the given roles."""
    async def guard(current_user: Annotated[User, Depends(get_current_user)]) -> User:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code = status.HTTP_403_FORBIDDEN,
                detail      = f"Role '{current_user.role.value}' is not authorized for this endpoint",
            )
        return current_user
    return guard


AdminOnly = Depends(require_roles(Role.ADMIN))
StaffPlus = Depends(require_roles(Role.ADMIN, Role.LECTURER))
