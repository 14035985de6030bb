from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from smartshop.api.deps import get_db
from smartshop.api.schemas import LoginPayload, RegisterPayload, TokenOut, UserRead
from smartshop.core.auth import current_user_id
from smartshop.core.security import create_access_token, hash_password, verify_password
from smartshop.db.models import User

router = APIRouter()  # main.py mounts at /auth


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterPayload, db: Session = Depends(get_db)) -> Any:
    taken = db.execute(
        select(User.id).where(or_(User.email == str(payload.email), User.username == payload.username))
    ).first()
    if taken:
        raise HTTPException(status_code=409, detail="Email or username already registered")

    user = User(
        email=str(payload.email),
        username=payload.username,
        first_name=payload.first_name,
        last_name=payload.last_name,
        password_hash=hash_password(payload.password),
        role="customer",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@router.post("/login", response_model=TokenOut)
def login(payload: LoginPayload, db: Session = Depends(get_db)) -> Any:
    user = db.execute(select(User).where(User.email == str(payload.email))).scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    access, exp = create_access_token(str(user.id), user.role)
    return {"access_token": access, "token_type": "bearer", "expires_at": exp}


@router.get("/me", response_model=UserRead)
def me(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)) -> Any:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user
