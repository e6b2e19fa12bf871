"""Data models for GitLab entities."""

from .user import User, UserCreate
from .group import Group, GroupCreate, GroupMember, GroupMemberAdd, Namespace
from .project import Project, ProjectNamespace
from .mapping import EntityKind, IdMappingTable, MappingConflictError

__all__ = [
    'User',
    'UserCreate',
    'Group',
    'GroupCreate',
    'GroupMember',
    'GroupMemberAdd',
    'Namespace',
    'Project',
    'ProjectNamespace',
    'EntityKind',
    'IdMappingTable',
    'MappingConflictError',
]
