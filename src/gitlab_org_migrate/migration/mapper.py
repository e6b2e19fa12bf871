"""Lookup of source entities at the destination instance."""

from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

from loguru import logger

from ..api.client import GitLabClient
from ..api.exceptions import GitLabNotFoundError
from ..models.group import Group, Namespace
from ..models.mapping import EntityKind, IdMappingTable
from ..models.project import Project
from ..models.user import User

Entity = Union[User, Group, Namespace, Project]


def encode_path(full_path: str) -> str:
    """URL-encode a hierarchical path for use as an ID in an endpoint."""
    return quote(full_path, safe='')


class EntityMapper:
    """Resolve source entities to destination IDs by natural key.

    Natural keys are the username (then the email) for users, and the full
    hierarchical path for groups, namespaces and projects. Resolved IDs are
    cached in the mapping table, so each entity is looked up remotely at most
    once per run. A missing entity (404) resolves to ``None``; any other
    error propagates so the caller never creates a duplicate by mistake.
    """

    def __init__(self, client: GitLabClient, table: Optional[IdMappingTable] = None):
        """Initialize entity mapper.

        Args:
            client: Destination instance client
            table: Mapping table shared across phases
        """
        self.client = client
        self.table = table if table is not None else IdMappingTable()
        self.logger = logger.bind(component='EntityMapper')

    def get(self, kind: EntityKind, source_id: int) -> Optional[int]:
        return self.table.get(kind, source_id)

    def record(self, kind: EntityKind, source_id: int, destination_id: int) -> None:
        self.table.record(kind, source_id, destination_id)

    async def resolve(self, kind: EntityKind, entity: Entity) -> Optional[int]:
        """Get the destination ID of a source entity.

        Args:
            kind: Entity kind
            entity: Source entity record

        Returns:
            Destination ID, or None if the entity does not exist there
        """
        cached = self.table.get(kind, entity.id)
        if cached is not None:
            return cached

        found = await self._lookup(kind, entity)
        if found is None:
            return None

        destination_id = found['id']
        self.table.record(kind, entity.id, destination_id)
        self.logger.debug(f'Resolved {kind.value} {entity.id} -> {destination_id}')
        return destination_id

    async def _lookup(self, kind: EntityKind, entity: Entity) -> Optional[Dict[str, Any]]:
        if kind == EntityKind.USER:
            return await self.find_user(entity.username, entity.email)
        if kind == EntityKind.GROUP:
            return await self.find_group(entity.hierarchy_path)
        if kind == EntityKind.NAMESPACE:
            return await self.find_namespace(entity.hierarchy_path)
        if kind == EntityKind.PROJECT:
            return await self.find_project(entity.namespace_path, entity.path)
        raise ValueError(f'Unsupported entity kind: {kind}')

    async def _get_or_none(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> Any:
        try:
            response = await self.client.get_async(endpoint, params=params)
        except GitLabNotFoundError:
            return None
        return response.data

    async def find_user(
        self, username: Optional[str], email: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        """Find a destination user by exact username, then by exact email."""
        if username:
            candidates = await self._get_or_none('/users', {'username': username})
            for candidate in _as_records(candidates):
                if candidate.get('username') == username:
                    return candidate

        if email:
            candidates = await self._get_or_none('/users', {'search': email})
            for candidate in _as_records(candidates):
                if (candidate.get('email') or '').lower() == email.lower():
                    return candidate

        return None

    async def find_group(self, full_path: str) -> Optional[Dict[str, Any]]:
        """Find a destination group by its full path."""
        if not full_path:
            return None
        group = await self._get_or_none(f'/groups/{encode_path(full_path)}')
        if isinstance(group, dict) and group.get('full_path') == full_path:
            return group
        return None

    async def find_namespace(self, full_path: str) -> Optional[Dict[str, Any]]:
        """Find a destination namespace by its full path."""
        if not full_path:
            return None
        namespace = await self._get_or_none(f'/namespaces/{encode_path(full_path)}')
        if isinstance(namespace, dict) and namespace.get('full_path') == full_path:
            return namespace
        return None

    async def find_project(
        self, namespace_path: str, path: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        """Find a destination project by namespace full path and project path."""
        if not namespace_path or not path:
            return None
        full_path = f'{namespace_path}/{path}'
        project = await self._get_or_none(f'/projects/{encode_path(full_path)}')
        if isinstance(project, dict) and project.get('path_with_namespace') == full_path:
            return project
        return None


def _as_records(data: Any) -> List[Dict[str, Any]]:
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]
