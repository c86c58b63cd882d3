# src/medinet/schemas/user.py
"""User, authentication and social graph schemas."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from medinet.schemas.common import UtcDatetime


def _normalize_email(value: str) -> str:
    email = value.strip().lower()
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise ValueError("Invalid email address")
    return email


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _normalize_email(value)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _normalize_email(value)


class UserUpdate(BaseModel):
    """Basic profile scalars a user may edit directly."""

    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    headline: str | None = Field(None, max_length=255)
    summary: str | None = Field(None, max_length=5000)
    location: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=50)
    website: str | None = Field(None, max_length=500)
    specialization: str | None = Field(None, max_length=255)
    subspecialization: str | None = Field(None, max_length=255)
    profile_image_url: str | None = Field(None, max_length=500)
    cover_image_url: str | None = Field(None, max_length=500)


class UserOut(BaseModel):
    """Public user view."""

    id: int
    first_name: str | None = None
    last_name: str | None = None
    headline: str | None = None
    summary: str | None = None
    profile_image_url: str | None = None
    cover_image_url: str | None = None
    location: str | None = None
    website: str | None = None
    specialization: str | None = None
    subspecialization: str | None = None
    current_role: str | None = None
    years_of_experience: int | None = None
    medical_school_graduation_year: int | None = None
    residency_completion_year: int | None = None
    fellowship_completion_year: int | None = None
    is_verified: bool = False
    is_online: bool = False
    last_seen_at: UtcDatetime | None = None
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True)


class PrivateUserOut(UserOut):
    """The caller's own account, including contact details."""

    email: str
    phone: str | None = None
    is_active: bool = True


class UserStatusOut(BaseModel):
    user_id: int
    is_online: bool
    last_seen_at: UtcDatetime | None = None
