"""
Pydantic schemas for user-related request/response validation.
"""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from busline.schemas.base import CamelModel, UTCDateTime


class UserCreate(CamelModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[a-zA-Z0-9_]+$")
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=32)


class UserLogin(CamelModel):
    email: EmailStr
    password: str


class ProfileUpdate(CamelModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=32)
    password: Optional[str] = Field(None, min_length=8, max_length=128)


class User(CamelModel):
    """Stored user record. Only profile fields and the credential change."""
    id: str
    email: str
    username: str
    hashed_password: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    is_admin: bool = False
    created_at: UTCDateTime


class UserResponse(CamelModel):
    id: str
    email: str
    username: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    is_admin: bool
    created_at: UTCDateTime


class Identity(CamelModel):
    """Already-resolved caller identity handed to the core."""
    id: str
    is_admin: bool = False


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
