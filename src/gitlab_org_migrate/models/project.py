"""Project entity models."""

from typing import Optional

from pydantic import BaseModel, Field


class ProjectNamespace(BaseModel):
    """Namespace summary embedded in a project record."""

    id: Optional[int] = Field(default=None, description='Namespace ID')
    name: Optional[str] = Field(default=None, description='Namespace name')
    path: Optional[str] = Field(default=None, description='Namespace path')
    full_path: Optional[str] = Field(default=None, description='Full namespace path')
    kind: Optional[str] = Field(default=None, description='Namespace kind')


class Project(BaseModel):
    """GitLab project model."""

    id: int = Field(..., description='Project ID')
    name: Optional[str] = Field(default=None, description='Project name')
    path: Optional[str] = Field(default=None, description='Project path')
    path_with_namespace: Optional[str] = Field(
        default=None, description='Full project path with namespace'
    )
    namespace: ProjectNamespace = Field(
        default_factory=ProjectNamespace, description='Owning namespace'
    )
    import_status: Optional[str] = Field(default=None, description='Import status')

    @property
    def namespace_path(self) -> str:
        """Full path of the owning namespace."""
        if self.namespace.full_path:
            return self.namespace.full_path
        if self.path_with_namespace and '/' in self.path_with_namespace:
            return self.path_with_namespace.rsplit('/', 1)[0]
        return self.namespace.path or ''

    @property
    def display_path(self) -> str:
        return self.path_with_namespace or self.path or str(self.id)

    def matches(self, path: str, namespace_path: str) -> bool:
        """Whether this project lives at ``namespace_path/path``."""
        if self.path != path:
            return False
        return namespace_path in (self.namespace.full_path, self.namespace.path)
