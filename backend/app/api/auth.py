"""Authentication API endpoints."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.config import get_settings
from app.core import resolve_path, store_user_avatar
from app.core.security import create_access_token, get_password_hash, verify_password
from app.database import get_db
from app.models import PresenceStatus, User
from app.schemas import LoginRequest, Token, UserCreate, UserRead, UserUpdate

router = APIRouter()
settings = get_settings()

logger = logging.getLogger(__name__)


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register_user(user_in: UserCreate, db: Session = Depends(get_db)) -> User:
    """Register a new user in the system."""

    email = user_in.email.lower()
    stmt = select(User).where(or_(User.login == user_in.login, User.email == email))
    if db.execute(stmt).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Login or email is already taken",
        )

    user = User(
        login=user_in.login,
        email=email,
        presence_status=PresenceStatus.OFFLINE,
        hashed_password=get_password_hash(user_in.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return user


@router.post("/login", response_model=Token)
def login_user(credentials: LoginRequest, db: Session = Depends(get_db)) -> Token:
    """Authenticate a user and return a JWT access token."""

    db_user = db.execute(select(User).where(User.login == credentials.login)).scalar_one_or_none()
    if db_user is None or not verify_password(credentials.password, db_user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect login or password",
        )

    access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token({"sub": str(db_user.id)}, expires_delta=access_token_expires)
    return Token(
        access_token=access_token,
        token_type="bearer",
        expires_in=int(access_token_expires.total_seconds()),
    )


@router.get("/me", response_model=UserRead)
def read_current_user(current_user: User = Depends(get_current_user)) -> User:
    return current_user


@router.patch("/me", response_model=UserRead)
def update_current_user(
    payload: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> User:
    """Update the e-mail address or presence status of the current user."""

    if payload.email is not None:
        email = payload.email.lower()
        stmt = select(User.id).where(User.email == email, User.id != current_user.id)
        if db.execute(stmt).first() is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Email is already taken",
            )
        current_user.email = email
    if payload.status is not None:
        current_user.presence_status = payload.status
    db.commit()
    db.refresh(current_user)
    return current_user


@router.post("/me/avatar", response_model=UserRead)
async def upload_avatar(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> User:
    """Replace the current user's avatar image."""

    stored = await store_user_avatar(current_user.id, file)
    current_user.avatar_path = stored.relative_path
    db.commit()
    db.refresh(current_user)
    logger.info("Stored avatar for user %s (%d bytes)", current_user.id, stored.file_size)
    return current_user


@router.get("/avatars/{user_id}")
def read_avatar(user_id: int, db: Session = Depends(get_db)) -> FileResponse:
    """Serve a user's avatar image; public so it can back plain image tags."""

    user = db.get(User, user_id)
    if user is None or not user.avatar_path:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Avatar not found")
    return FileResponse(resolve_path(user.avatar_path))
