"""Schemas for authentication endpoints."""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, constr

from app.models.enums import PresenceStatus

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class UserBase(BaseModel):
    """Base fields shared across user schemas."""

    login: constr(strip_whitespace=True, min_length=3, max_length=64) = Field(
        ..., description="Unique user login consisting of 3-64 characters"
    )
    email: constr(strip_whitespace=True, max_length=255, pattern=EMAIL_PATTERN) = Field(
        ..., description="Unique e-mail address"
    )


class UserCreate(UserBase):
    """Payload for creating a new user via registration."""

    password: constr(min_length=8, max_length=128) = Field(
        ..., description="Plain text password that will be hashed before storing"
    )


class UserRead(UserBase):
    """Representation of the authenticated user returned from the API."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    avatar_url: str | None = None
    status: PresenceStatus = Field(
        default=PresenceStatus.OFFLINE,
        validation_alias=AliasChoices("presence_status", "status"),
    )
    last_seen_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class UserUpdate(BaseModel):
    """Payload for updating the current user's profile."""

    email: constr(strip_whitespace=True, max_length=255, pattern=EMAIL_PATTERN) | None = None
    status: PresenceStatus | None = Field(default=None, description="Optional new presence status")


class LoginRequest(BaseModel):
    """Payload for user login."""

    login: constr(strip_whitespace=True, min_length=3, max_length=64) = Field(..., description="User login")
    password: constr(min_length=1, max_length=128) = Field(..., description="User password")


class Token(BaseModel):
    """Access token returned after successful authentication."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type, always 'bearer'")
    expires_in: int | None = Field(
        default=None,
        description="Number of seconds until the access token expires",
    )
