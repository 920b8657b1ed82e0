import datetime as dt
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..models import User
from ..slugs import generate_username_base

ROLES = ("admin", "user", "customer")

SORT_FIELDS = {
    "name": User.name,
    "email": User.email,
    "role": User.role,
    "email_verified": User.email_verified,
    "created_at": User.created_at,
}

UPDATABLE_FIELDS = ("name", "username", "email", "role", "email_verified", "image")


def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(func.lower(User.email) == (email or "").strip().lower()).first()


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()


def get_user_by_login(db: Session, login: str) -> Optional[User]:
    """Find a user by email or username."""
    if "@" in (login or ""):
        return get_user_by_email(db, login)
    return get_user_by_username(db, login)


def generate_username(db: Session, name: str) -> str:
    base = generate_username_base(name)
    username = base
    counter = 1
    while get_user_by_username(db, username):
        username = f"{base}{counter}"
        counter += 1
    return username


def create_user(
    db: Session,
    *,
    name: str,
    email: str,
    hashed_password: str,
    role: str = "customer",
    email_verified: bool = False,
) -> User:
    db_user = User(
        name=name.strip(),
        username=generate_username(db, name),
        email=email.strip().lower(),
        hashed_password=hashed_password,
        role=role,
        email_verified=email_verified,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def get_users(
    db: Session,
    *,
    search: Optional[str] = None,
    role: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: int = 20,
    offset: int = 0,
) -> tuple[List[User], int]:
    query = db.query(User)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern), User.username.ilike(pattern)))
    if role:
        query = query.filter(User.role == role)

    column = SORT_FIELDS.get(sort_by, User.created_at)
    ordering = column.asc() if sort_order.lower() == "asc" else column.desc()
    total = query.count()
    users = query.order_by(ordering, User.id).offset(offset).limit(limit).all()
    return users, total


def update_user(db: Session, user_id: int, update_data: dict) -> Optional[User]:
    """Update whitelisted fields; an empty image clears the avatar."""
    user = get_user_by_id(db, user_id)
    if not user:
        return None

    changes = {k: v for k, v in update_data.items() if k in UPDATABLE_FIELDS and v is not None}
    if not changes:
        raise ValueError("No valid fields to update")

    if "role" in changes and changes["role"] not in ROLES:
        raise ValueError("Invalid role")
    if "email" in changes:
        changes["email"] = changes["email"].strip().lower()
        other = get_user_by_email(db, changes["email"])
        if other and other.id != user.id:
            raise ValueError("This email is already registered")
    if "username" in changes:
        other = get_user_by_username(db, changes["username"])
        if other and other.id != user.id:
            raise ValueError("This username is already registered")
    if changes.get("image") == "":
        changes["image"] = None

    for key, value in changes.items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return user


def touch_last_login(db: Session, user: User) -> None:
    user.last_login_at = dt.datetime.now(dt.timezone.utc)
    db.commit()


def delete_user(db: Session, user_id: int):
    user = get_user_by_id(db, user_id)
    if user:
        db.delete(user)
        db.commit()
        return True
    return False
