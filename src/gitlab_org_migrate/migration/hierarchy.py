"""Parent-before-child migration of groups, namespaces and memberships."""

from typing import Any, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError

from ..api.exceptions import (
    GitLabAPIError,
    GitLabConflictError,
    is_already_taken,
)
from ..models.group import Group, GroupCreate, GroupMember, GroupMemberAdd, Namespace
from ..models.mapping import EntityKind, MappingConflictError
from ..models.user import User
from .strategy import MigrationResult, MigrationStatus, MigrationStrategy

VISIBILITIES = ('private', 'internal', 'public')

HierarchicalEntity = Union[Group, Namespace]


class HierarchicalImporter(MigrationStrategy):
    """Create group-like entities so that parents always precede children.

    Entities are sorted by the depth of their full path. Each one is skipped
    when it already exists at the destination or lacks a name or path;
    otherwise its parent is translated through the mapping table and the
    group is created. A parent that cannot be translated results in a
    top-level group and a warning.
    """

    kind: EntityKind = EntityKind.GROUP
    parent_kinds: Tuple[EntityKind, ...] = (EntityKind.GROUP,)

    def order(self, entities: List[HierarchicalEntity]) -> List[HierarchicalEntity]:
        return sorted(entities, key=lambda entity: entity.depth)

    def describe(self, entity: HierarchicalEntity) -> str:
        return entity.hierarchy_path or f'#{entity.id}'

    async def migrate_entity(self, entity: HierarchicalEntity) -> MigrationResult:
        """Create one entity at the destination unless it is already there.

        Args:
            entity: Group or namespace to migrate

        Returns:
            Migration result
        """
        label = self.describe(entity)

        existing_id = await self.context.mapper.resolve(self.kind, entity)
        if existing_id is not None:
            self.logger.info(
                f'{self.entity_type.title()} {label} already exists in destination '
                f'(ID {existing_id})'
            )
            return self.create_result(
                str(entity.id),
                MigrationStatus.SKIPPED,
                label=label,
                destination_id=existing_id,
                metadata={'reason': 'already_exists'},
            )

        if not entity.name or not entity.path:
            self.logger.warning(f'Skipping {self.entity_type} {label}: name or path missing')
            return self.create_result(
                str(entity.id),
                MigrationStatus.SKIPPED,
                label=label,
                metadata={'reason': 'missing_required_fields'},
            )

        parent_id = await self._resolve_parent(entity)
        return await self._create_group(entity, parent_id)

    async def _resolve_parent(self, entity: HierarchicalEntity) -> Optional[int]:
        """Translate the parent of ``entity`` to a destination group ID."""
        if entity.parent_id is None:
            return None

        for kind in self.parent_kinds:
            destination_id = self.context.mapper.get(kind, entity.parent_id)
            if destination_id is not None:
                return destination_id

        if entity.full_path and '/' in entity.full_path:
            parent_path = entity.full_path.rsplit('/', 1)[0]
            parent = await self.context.mapper.find_group(parent_path)
            if parent is not None:
                self.context.mapper.record(EntityKind.GROUP, entity.parent_id, parent['id'])
                return parent['id']

        self.logger.warning(
            f'Parent {entity.parent_id} of {self.entity_type} {self.describe(entity)} '
            f'is not present at destination; creating it at top level'
        )
        return None

    async def _create_group(
        self, entity: HierarchicalEntity, parent_id: Optional[int]
    ) -> MigrationResult:
        label = self.describe(entity)
        visibility = getattr(entity, 'visibility', None)

        payload = GroupCreate(
            name=entity.name,
            path=entity.path,
            parent_id=parent_id,
            description=getattr(entity, 'description', None),
            visibility=visibility if visibility in VISIBILITIES else None,
        ).dict(exclude_none=True)

        await self.context.pacer.wait(self.context.settings.create_delay)

        try:
            response = await self.context.destination_client.post_async(
                '/groups', data=payload
            )
        except GitLabAPIError as e:
            if not is_already_taken(e):
                raise
            self.logger.warning(
                f'{self.entity_type.title()} {label} already taken at destination: {e.detail}'
            )
            return self.create_result(
                str(entity.id),
                MigrationStatus.SKIPPED,
                label=label,
                destination_id=await self._resolve_after_taken(self.kind, entity),
                metadata={'reason': 'already_taken'},
            )

        destination_id = self._created_id(response)
        self.context.mapper.record(self.kind, entity.id, destination_id)
        self.logger.success(
            f'Created {self.entity_type} {label} -> ID {destination_id}'
            + (f' under parent {parent_id}' if parent_id else '')
        )
        return self.create_result(
            str(entity.id),
            MigrationStatus.COMPLETED,
            label=label,
            destination_id=destination_id,
            metadata={'parent_id': parent_id},
        )


class GroupMigrationStrategy(HierarchicalImporter):
    """Strategy for migrating groups."""

    phase_name = 'groups'
    entity_type = 'group'
    model = Group
    kind = EntityKind.GROUP
    parent_kinds = (EntityKind.GROUP,)


class NamespaceMigrationStrategy(HierarchicalImporter):
    """Strategy for migrating namespaces.

    Personal namespaces are never created here; they appear together with
    their user. Group namespaces missing at the destination are created as
    groups and recorded under both the namespace and the group kind.
    """

    phase_name = 'namespaces'
    entity_type = 'namespace'
    model = Namespace
    kind = EntityKind.NAMESPACE
    parent_kinds = (EntityKind.NAMESPACE, EntityKind.GROUP)

    async def migrate_entity(self, namespace: Namespace) -> MigrationResult:
        label = self.describe(namespace)

        if namespace.is_user_namespace:
            existing_id = await self.context.mapper.resolve(self.kind, namespace)
            if existing_id is None:
                self.logger.info(
                    f'User namespace {label} not found at destination; '
                    f'it is created together with its user'
                )
            return self.create_result(
                str(namespace.id),
                MigrationStatus.SKIPPED,
                label=label,
                destination_id=existing_id,
                metadata={
                    'reason': 'already_exists' if existing_id else 'user_namespace'
                },
            )

        result = await super().migrate_entity(namespace)
        if (
            result.destination_id is not None
            and self.context.mapper.get(EntityKind.GROUP, namespace.id) is None
        ):
            self.context.mapper.record(
                EntityKind.GROUP, namespace.id, result.destination_id
            )
        return result


class Membership(BaseModel):
    """A source group member paired with the destination group."""

    group: Group
    member: GroupMember
    destination_group_id: int

    @property
    def id(self) -> str:
        return f'{self.group.id}:{self.member.id}'


class MembershipMigrationStrategy(MigrationStrategy):
    """Strategy for migrating direct group memberships.

    Every (group, member) pair is one counted unit. The member's user ID is
    translated through the user mapping; access levels are copied unchanged.
    """

    phase_name = 'memberships'
    entity_type = 'membership'
    model = Group

    def order(self, groups: List[Group]) -> List[Group]:
        return sorted(groups, key=lambda group: group.depth)

    def describe(self, entity: Any) -> str:
        if isinstance(entity, Membership):
            username = entity.member.username or f'#{entity.member.id}'
            return f'{username} in {entity.group.hierarchy_path}'
        return entity.hierarchy_path or f'#{entity.id}'

    async def process(self, group: Group) -> List[MigrationResult]:
        label = self.describe(group)

        try:
            records = await self.context.source_collector.collect_all(
                f'/groups/{group.id}/members'
            )
        except GitLabAPIError as e:
            self.logger.error(f'Failed to list members of group {label}: {e.detail}')
            return [
                self.create_result(
                    str(group.id),
                    MigrationStatus.FAILED,
                    label=label,
                    error_message=f'Member listing failed: {e.detail}',
                )
            ]

        results = []
        members = []
        for record in records:
            try:
                members.append(GroupMember(**record))
            except ValidationError as e:
                self.logger.warning(f'Skipping malformed member record in {label}: {e}')
                results.append(
                    self.create_result(
                        f'{group.id}:{record.get("id", "unknown")}',
                        MigrationStatus.SKIPPED,
                        label=label,
                        metadata={'reason': 'malformed_record'},
                    )
                )

        if not members:
            return results

        destination_group_id = await self.context.mapper.resolve(EntityKind.GROUP, group)
        if destination_group_id is None:
            self.logger.error(
                f'Group {label} is not present at destination; '
                f'{len(members)} membership(s) cannot be migrated'
            )
            results.extend(
                self.create_result(
                    f'{group.id}:{member.id}',
                    MigrationStatus.FAILED,
                    label=f'{member.username or member.id} in {label}',
                    error_message='Group not present at destination',
                )
                for member in members
            )
            return results

        self.logger.info(f'Migrating {len(members)} member(s) of group {label}')
        for member in members:
            membership = Membership(
                group=group, member=member, destination_group_id=destination_group_id
            )
            try:
                results.append(await self.migrate_entity(membership))
            except (GitLabAPIError, MappingConflictError) as e:
                results.append(self._failure(membership, e))

        return results

    async def _translate_user(self, member: GroupMember) -> Optional[int]:
        user_id = self.context.mapper.get(EntityKind.USER, member.id)
        if user_id is None and member.username:
            user_id = await self.context.mapper.resolve(
                EntityKind.USER, User(id=member.id, username=member.username)
            )
        return user_id

    async def migrate_entity(self, membership: Membership) -> MigrationResult:
        """Add one member to the destination group.

        Args:
            membership: Source member and destination group

        Returns:
            Migration result
        """
        label = self.describe(membership)
        member = membership.member

        user_id = await self._translate_user(member)
        if user_id is None:
            self.logger.warning(f'Skipping membership {label}: user not mapped')
            return self.create_result(
                membership.id,
                MigrationStatus.SKIPPED,
                label=label,
                metadata={'reason': 'user_not_mapped'},
            )

        try:
            payload = GroupMemberAdd(
                user_id=user_id,
                access_level=member.access_level,
                expires_at=member.expires_at,
            ).dict(exclude_none=True)
        except ValidationError as e:
            return self.create_result(
                membership.id,
                MigrationStatus.FAILED,
                label=label,
                error_message=f'Invalid membership: {e.errors()[0].get("msg")}',
            )

        try:
            await self.context.destination_client.post_async(
                f'/groups/{membership.destination_group_id}/members', data=payload
            )
        except GitLabConflictError:
            self.logger.info(f'Membership {label} already exists')
            return self.create_result(
                membership.id,
                MigrationStatus.SKIPPED,
                label=label,
                metadata={'reason': 'already_member'},
            )
        except GitLabAPIError as e:
            if not is_already_taken(e):
                raise
            self.logger.info(f'Membership {label} already exists')
            return self.create_result(
                membership.id,
                MigrationStatus.SKIPPED,
                label=label,
                metadata={'reason': 'already_member'},
            )

        self.logger.success(
            f'Added {label} with access level {member.access_level}'
        )
        return self.create_result(
            membership.id,
            MigrationStatus.COMPLETED,
            label=label,
            destination_id=user_id,
            metadata={'access_level': member.access_level},
        )
