"""
ParkFlow - User Models
Defines all data models related to users and authentication.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from enum import Enum


class UserRole(str, Enum):
    """Enumeration of user roles."""
    USER = "user"
    ADMIN = "admin"


class UserProfile(BaseModel):
    """Authenticated caller identity."""
    model_config = ConfigDict(from_attributes=True)

    uid: str = Field(..., description="Firebase user ID")
    email: Optional[str] = Field(default=None, description="User email address")
    display_name: Optional[str] = Field(default=None, description="User display name")
    email_verified: bool = Field(default=False, description="Whether email is verified")
    role: UserRole = Field(default=UserRole.USER, description="User role")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class TokenPayload(BaseModel):
    """Decoded Firebase token payload."""
    uid: str
    email: Optional[str] = None
    email_verified: bool = False
    name: Optional[str] = None
    role: Optional[str] = None
    admin: bool = False
    exp: Optional[int] = None
