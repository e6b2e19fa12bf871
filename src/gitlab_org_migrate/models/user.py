"""User entity models."""

from typing import Optional

from pydantic import BaseModel, Field, validator

SYSTEM_USERNAMES = ('root', 'ghost', 'support-bot', 'alert-bot')


class User(BaseModel):
    """GitLab user model.

    Only ``id`` is mandatory so that incomplete listing records can still be
    reported as skipped rather than rejected outright.
    """

    id: int = Field(..., description='User ID')
    username: Optional[str] = Field(default=None, description='Username')
    email: Optional[str] = Field(default=None, description='Email address')
    name: Optional[str] = Field(default=None, description='Full name')
    state: Optional[str] = Field(default=None, description='User state')
    is_admin: Optional[bool] = Field(default=None, description='Administrator flag')
    bot: Optional[bool] = Field(default=None, description='Bot account flag')

    @validator('username', 'email')
    def blank_to_none(cls, v):
        """Treat empty strings as missing."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def is_system_user(self) -> bool:
        """Whether the account is created by GitLab itself."""
        if self.bot:
            return True
        return (self.username or '').lower() in SYSTEM_USERNAMES


class UserCreate(BaseModel):
    """Model for creating a new user."""

    username: str = Field(..., description='Username')
    email: str = Field(..., description='Email address')
    name: str = Field(..., description='Full name')
    skip_confirmation: bool = Field(default=True, description='Skip email confirmation')
    force_random_password: bool = Field(
        default=True, description='Generate a password the user must reset'
    )
    reset_password: bool = Field(default=True, description='Send a reset link')
    admin: Optional[bool] = Field(default=None, description='Administrator flag')

    @classmethod
    def from_user(cls, user: User) -> 'UserCreate':
        return cls(
            username=user.username,
            email=user.email,
            name=user.name or user.username,
            admin=True if user.is_admin else None,
        )
