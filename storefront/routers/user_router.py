import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import EmailStr
from sqlalchemy.orm import Session

from .. import auth, emailer, storage
from ..auth import (
    create_access_token,
    create_email_token,
    get_current_user,
    get_current_verified_user,
    get_password_hash,
    read_email_token,
    verify_password,
)
from ..crud import users as crud
from ..database import get_db
from ..models import User
from ..schemas import AvatarUpdate, Token, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

GENERIC_EMAIL_MESSAGE = "If an account exists for this email, a message has been sent."


def _check_password_length(password: str):
    # bcrypt only uses the first 72 bytes
    if len(password.encode("utf-8")) > 72:
        raise HTTPException(
            status_code=400,
            detail="Password is too long or contains non-English characters. Please use only English letters and numbers."
        )


def send_verification(user: User) -> bool:
    """Email a verification link; failures are logged, not raised."""
    try:
        emailer.send_verification_email(
            to_email=user.email, name=user.name, token=create_email_token(user, "verify_email")
        )
        return True
    except Exception:
        logger.exception("Failed to send verification email to user %s", user.id)
        return False


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(
    name: str = Form(..., min_length=1, description="**Full name**", examples=[""]),
    email: EmailStr = Form(..., description="**Valid email address**", examples=[""]),
    password: str = Form(..., min_length=8, description="**Password (minimum 8 characters, English only)**", examples=[""]),
    db: Session = Depends(get_db)
):
    _check_password_length(password)
    if crud.get_user_by_email(db, email):
        raise HTTPException(status_code=400, detail="This email is already registered")

    new_user = crud.create_user(
        db,
        name=name,
        email=email,
        hashed_password=get_password_hash(password),
        email_verified=not auth.REQUIRE_EMAIL_VERIFICATION,
    )
    if auth.REQUIRE_EMAIL_VERIFICATION:
        send_verification(new_user)
    return new_user


@router.post("/login", response_model=Token)
def login(
    login: str = Form(..., description="**Email or username**", examples=[""]),
    password: str = Form(..., description="**Password**", examples=[""]),
    db: Session = Depends(get_db)
):
    user = crud.get_user_by_login(db, login)
    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email/username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if auth.REQUIRE_EMAIL_VERIFICATION and not user.email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Please verify your email before logging in",
        )
    crud.touch_last_login(db, user)
    access_token = create_access_token(data={"sub": str(user.id)})
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/verify-email")
def verify_email(token: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    user = read_email_token(db, token, "verify_email")
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired verification link")
    if not user.email_verified:
        user.email_verified = True
        db.commit()
    return {"success": True, "message": "Email verified successfully"}


@router.post("/resend-verification")
def resend_verification(
    email: str = Form(..., description="**Registered email address**", examples=[""]),
    db: Session = Depends(get_db)
):
    user = crud.get_user_by_email(db, email)
    if user and not user.email_verified:
        send_verification(user)
    return {"success": True, "message": GENERIC_EMAIL_MESSAGE}


@router.post("/forgot-password")
def forgot_password(
    email: str = Form(..., description="**Registered email address**", examples=[""]),
    db: Session = Depends(get_db)
):
    user = crud.get_user_by_email(db, email)
    if user:
        try:
            emailer.send_password_reset_email(
                to_email=user.email, name=user.name, token=create_email_token(user, "reset_password")
            )
        except Exception:
            logger.exception("Failed to send password reset email to user %s", user.id)
    return {"success": True, "message": GENERIC_EMAIL_MESSAGE}


@router.post("/reset-password")
def reset_password(
    token: str = Form(..., description="**Token from the reset email**", examples=[""]),
    new_password: str = Form(..., min_length=8, description="**New password** (minimum 8 characters, English only)", examples=[""]),
    db: Session = Depends(get_db)
):
    _check_password_length(new_password)
    user = read_email_token(db, token, "reset_password")
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired reset link")
    user.hashed_password = get_password_hash(new_password)
    # Following the emailed link proves ownership of the address
    user.email_verified = True
    db.commit()
    return {"success": True, "message": "Password has been reset"}


@router.get("/me", response_model=UserOut)
def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.patch("/me", response_model=UserOut)
def update_profile(
    name: Optional[str] = Form(None, description="**New name** (optional)", examples=[""]),
    username: Optional[str] = Form(None, description="**New username** (optional, must be unique if changed)", examples=[""]),
    email: Optional[EmailStr] = Form(None, description="**New email address** (optional, must be valid)", examples=[""]),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    changes = {}
    if name:
        changes["name"] = name.strip()
    if username and username != current_user.username:
        changes["username"] = username.strip()
    email_changed = bool(email) and email.strip().lower() != current_user.email
    if email_changed:
        changes["email"] = email
        changes["email_verified"] = not auth.REQUIRE_EMAIL_VERIFICATION
    if not changes:
        return current_user

    try:
        user = crud.update_user(db, current_user.id, changes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if email_changed and auth.REQUIRE_EMAIL_VERIFICATION:
        send_verification(user)
    return user


@router.patch("/change-password", response_model=UserOut)
def change_password(
    current_password: str = Form(..., description="**Current password** (required for verification)", examples=[""]),
    new_password: str = Form(..., min_length=8, description="**New password** (minimum 8 characters, English only)", examples=[""]),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if not verify_password(current_password, current_user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Current password is incorrect"
        )
    _check_password_length(new_password)

    current_user.hashed_password = get_password_hash(new_password)
    db.commit()
    db.refresh(current_user)
    return current_user


@router.delete("/delete-account", response_model=UserOut)
def delete_account(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    # Store user data for response before deletion
    user_data = UserOut.model_validate(current_user)
    crud.delete_user(db, current_user.id)
    return user_data


def _avatar_target(db: Session, current_user: User, user_id: Optional[int]) -> User:
    """Users manage their own avatar; admins may manage anyone's."""
    if user_id is None or user_id == current_user.id:
        return current_user
    if current_user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only update your own avatar")
    target = crud.get_user_by_id(db, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    return target


@router.post("/avatar", response_model=UserOut)
async def upload_avatar(
    image: UploadFile = File(..., description="**Avatar** (JPEG, PNG or WebP, max 2MB)"),
    user_id: Optional[int] = Form(None, description="**User ID** (admins only, defaults to yourself)"),
    current_user: User = Depends(get_current_verified_user),
    db: Session = Depends(get_db)
):
    target = _avatar_target(db, current_user, user_id)
    data = await image.read()
    try:
        storage.validate_image(image.filename, image.content_type, len(data), storage.MAX_AVATAR_BYTES)
        key = storage.upload_avatar(target.id, image.filename, data, image.content_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except storage.StorageConfigError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except storage.StorageError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return crud.update_user(db, target.id, {"image": storage.public_url(key)})


@router.put("/avatar", response_model=UserOut)
def update_avatar(
    body: AvatarUpdate,
    current_user: User = Depends(get_current_verified_user),
    db: Session = Depends(get_db)
):
    target = _avatar_target(db, current_user, body.user_id)
    return crud.update_user(db, target.id, {"image": body.image})
