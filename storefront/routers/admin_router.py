from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..auth import create_access_token, get_current_admin, verify_password
from ..crud import users as crud
from ..database import get_db
from ..models import User
from ..schemas import Pagination, Role, RoleUpdate, Token, UserListResponse, UserOut, UserUpdate, VerificationUpdate

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/login", response_model=Token)
def admin_login(
    login: str = Form(..., description="**Admin email or username**", examples=["admin"]),
    password: str = Form(..., description="**Admin password**", examples=[""]),
    db: Session = Depends(get_db)
):
    """
    Admin login endpoint
    """
    user = crud.get_user_by_login(db, login)
    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email/username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Admin privileges required."
        )

    crud.touch_last_login(db, user)
    access_token = create_access_token(data={"sub": str(user.id)})
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/users", response_model=UserListResponse)
def list_all_users(
    search: Optional[str] = Query(None, description="**Search** in name, email or username"),
    role: Optional[Role] = Query(None),
    sort_by: str = Query("created_at", pattern="^(name|email|role|email_verified|created_at)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """
    Get list of all users (Admin only)
    """
    users, total = crud.get_users(
        db,
        search=search,
        role=role.value if role else None,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    return {
        "users": users,
        "pagination": Pagination(total=total, limit=limit, offset=offset, has_more=offset + limit < total),
    }


@router.get("/users/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    user = crud.get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.patch("/users/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    body: UserUpdate,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    changes = body.model_dump(exclude_unset=True)
    if user_id == current_admin.id and changes.get("role") not in (None, "admin"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change your own role")
    try:
        user = crud.update_user(db, user_id, changes)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.patch("/users/{user_id}/role", response_model=UserOut)
def change_user_role(
    user_id: int,
    body: RoleUpdate,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    if user_id == current_admin.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change your own role")
    user = crud.update_user(db, user_id, {"role": body.role})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.patch("/users/{user_id}/verification", response_model=UserOut)
def set_user_verification(
    user_id: int,
    body: VerificationUpdate,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    user = crud.update_user(db, user_id, {"email_verified": body.email_verified})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.delete("/users/{user_id}", response_model=UserOut)
def delete_user_by_admin(
    user_id: int,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """
    Delete a user by ID (Admin only)
    """
    user = crud.get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    # Prevent admin from deleting themselves
    if user.id == current_admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account"
        )

    user_data = UserOut.model_validate(user)
    crud.delete_user(db, user_id)
    return user_data
