"""Group and namespace entity models."""

from typing import Optional

from pydantic import BaseModel, Field, validator

ACCESS_LEVELS = (5, 10, 15, 20, 30, 40, 50)


def path_depth(full_path: Optional[str]) -> int:
    """Number of ``/``-separated segments of a hierarchical path."""
    return len([segment for segment in (full_path or '').split('/') if segment])


class Group(BaseModel):
    """GitLab group model."""

    id: int = Field(..., description='Group ID')
    name: Optional[str] = Field(default=None, description='Group name')
    path: Optional[str] = Field(default=None, description='Group path')
    full_path: Optional[str] = Field(
        default=None, description='Full group path with parent'
    )
    parent_id: Optional[int] = Field(default=None, description='Parent group ID')
    description: Optional[str] = Field(default=None, description='Group description')
    visibility: Optional[str] = Field(
        default=None, description='Group visibility (private, internal, public)'
    )

    @property
    def hierarchy_path(self) -> str:
        return self.full_path or self.path or ''

    @property
    def depth(self) -> int:
        return path_depth(self.hierarchy_path)


class Namespace(BaseModel):
    """GitLab namespace model (a user's personal namespace or a group)."""

    id: int = Field(..., description='Namespace ID')
    name: Optional[str] = Field(default=None, description='Namespace name')
    path: Optional[str] = Field(default=None, description='Namespace path')
    kind: Optional[str] = Field(default=None, description='Namespace kind (user, group)')
    full_path: Optional[str] = Field(default=None, description='Full namespace path')
    parent_id: Optional[int] = Field(default=None, description='Parent namespace ID')

    @property
    def hierarchy_path(self) -> str:
        return self.full_path or self.path or ''

    @property
    def depth(self) -> int:
        return path_depth(self.hierarchy_path)

    @property
    def is_user_namespace(self) -> bool:
        return self.kind == 'user'


class GroupCreate(BaseModel):
    """Model for creating a new group."""

    name: str = Field(..., description='Group name')
    path: str = Field(..., description='Group path')
    parent_id: Optional[int] = Field(default=None, description='Parent group ID')
    description: Optional[str] = Field(default=None, description='Group description')
    visibility: Optional[str] = Field(default=None, description='Group visibility')

    @validator('visibility')
    def validate_visibility(cls, v):
        """Validate group visibility."""
        valid_visibility = ['private', 'internal', 'public']
        if v is not None and v not in valid_visibility:
            raise ValueError(f'Visibility must be one of: {valid_visibility}')
        return v


class GroupMember(BaseModel):
    """Group member model."""

    id: int = Field(..., description='User ID')
    username: Optional[str] = Field(default=None, description='Username')
    access_level: int = Field(
        ...,
        description='Access level (10=Guest, 20=Reporter, 30=Developer, 40=Maintainer, 50=Owner)',
    )
    expires_at: Optional[str] = Field(default=None, description='Membership expiration')


class GroupMemberAdd(BaseModel):
    """Model for adding a member to a group."""

    user_id: int = Field(..., description='User ID to add')
    access_level: int = Field(..., description='Access level')
    expires_at: Optional[str] = Field(default=None, description='Membership expiration')

    @validator('access_level')
    def validate_access_level(cls, v):
        """Validate access level."""
        if v not in ACCESS_LEVELS:
            raise ValueError(f'Access level must be one of: {list(ACCESS_LEVELS)}')
        return v
