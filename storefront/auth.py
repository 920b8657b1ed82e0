from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    EMAIL_TOKEN_EXPIRE_MINUTES,
    REQUIRE_EMAIL_VERIFICATION,
    SECRET_KEY,
)
from .database import get_db
from .models import User

ALGORITHM = "HS256"

STAFF_ROLES = {"admin", "user"}

pwd_context = CryptContext(schemes=["bcrypt", "argon2"], deprecated="auto")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def _password_fingerprint(user: User) -> str:
    return (user.hashed_password or "")[-12:]


def create_email_token(user: User, purpose: str) -> str:
    """Token for links sent by email ("verify_email" or "reset_password").

    Reset tokens embed a fragment of the current password hash so they stop
    working once the password has been changed.
    """
    data = {"sub": str(user.id), "purpose": purpose}
    if purpose == "reset_password":
        data["pwd"] = _password_fingerprint(user)
    return create_access_token(data, expires_minutes=EMAIL_TOKEN_EXPIRE_MINUTES)


def read_email_token(db: Session, token: str, purpose: str) -> Optional[User]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("purpose") != purpose:
        return None
    user_id = payload.get("sub")
    if user_id is None or not str(user_id).isdigit():
        return None
    user = db.query(User).filter(User.id == int(user_id)).first()
    if user is None:
        return None
    if purpose == "reset_password" and payload.get("pwd") != _password_fingerprint(user):
        return None
    return user


oauth2_scheme = HTTPBearer()


async def get_current_user(credentials=Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    token = credentials.credentials
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None or payload.get("purpose") is not None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    if not str(user_id).isdigit():
        raise credentials_exception
    user = db.query(User).filter(User.id == int(user_id)).first()
    if user is None:
        raise credentials_exception
    return user


async def get_current_verified_user(current_user: User = Depends(get_current_user)) -> User:
    if REQUIRE_EMAIL_VERIFICATION and not current_user.email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Email verification required",
        )
    return current_user


async def get_current_staff(current_user: User = Depends(get_current_verified_user)) -> User:
    if current_user.role not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions. Staff access required.",
        )
    return current_user


async def get_current_admin(current_user: User = Depends(get_current_verified_user)) -> User:
    if current_user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions. Admin access required."
        )
    return current_user
