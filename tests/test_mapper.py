"""Tests for the ID mapping table and destination lookups."""

import pytest

from gitlab_org_migrate.api.exceptions import GitLabPermissionError
from gitlab_org_migrate.migration.mapper import EntityMapper, encode_path
from gitlab_org_migrate.models.group import Group, Namespace
from gitlab_org_migrate.models.mapping import EntityKind, IdMappingTable, MappingConflictError
from gitlab_org_migrate.models.project import Project
from gitlab_org_migrate.models.user import User

from fake_gitlab import FakeGitLab, make_client


class TestIdMappingTable:
    """Test IdMappingTable."""

    def setup_method(self):
        """Set up test fixtures."""
        self.table = IdMappingTable()

    def test_record_and_get(self):
        self.table.record(EntityKind.USER, 5, 50)

        assert self.table.get(EntityKind.USER, 5) == 50
        assert self.table.get(EntityKind.GROUP, 5) is None
        assert len(self.table) == 1

    def test_same_pair_is_noop(self):
        self.table.record(EntityKind.GROUP, 1, 10)
        self.table.record(EntityKind.GROUP, 1, 10)

        assert len(self.table) == 1

    def test_conflicting_pair_raises(self):
        self.table.record(EntityKind.GROUP, 1, 10)

        with pytest.raises(MappingConflictError) as exc_info:
            self.table.record(EntityKind.GROUP, 1, 11)

        assert exc_info.value.existing == 10
        assert exc_info.value.new == 11
        assert self.table.get(EntityKind.GROUP, 1) == 10

    def test_shared_destination_is_allowed(self):
        self.table.record(EntityKind.USER, 1, 10)
        self.table.record(EntityKind.USER, 2, 10)

        assert self.table.get(EntityKind.USER, 2) == 10
        assert self.table.count(EntityKind.USER) == 2

    def test_to_dict(self):
        self.table.record(EntityKind.PROJECT, 3, 30)
        self.table.record(EntityKind.USER, 2, 20)
        self.table.record(EntityKind.USER, 1, 10)

        assert self.table.to_dict() == {
            'user': {'1': 10, '2': 20},
            'group': {},
            'namespace': {},
            'project': {'3': 30},
        }


class TestEntityMapper:
    """Test EntityMapper."""

    def setup_method(self):
        """Set up test fixtures."""
        self.server = FakeGitLab()
        self.mapper = EntityMapper(make_client(self.server))

    def test_encode_path(self):
        assert encode_path('parent/child group') == 'parent%2Fchild%20group'

    @pytest.mark.asyncio
    async def test_user_found_by_username(self):
        dest = self.server.add_user('alice')

        destination_id = await self.mapper.resolve(
            EntityKind.USER, User(id=7, username='alice', email='other@example.com')
        )

        assert destination_id == dest['id']
        assert self.mapper.get(EntityKind.USER, 7) == dest['id']

    @pytest.mark.asyncio
    async def test_user_found_by_email(self):
        dest = self.server.add_user('alice.smith', email='Alice@Example.com')

        destination_id = await self.mapper.resolve(
            EntityKind.USER, User(id=7, username='alice', email='alice@example.com')
        )

        assert destination_id == dest['id']

    @pytest.mark.asyncio
    async def test_username_match_must_be_exact(self):
        self.server.add_user('alice2', email='a2@example.com')
        self.server.users[0]['username'] = 'Alice2'

        assert await self.mapper.find_user('alice2', None) is None

    @pytest.mark.asyncio
    async def test_missing_user_resolves_to_none(self):
        destination_id = await self.mapper.resolve(
            EntityKind.USER, User(id=7, username='nobody', email='nobody@example.com')
        )

        assert destination_id is None
        assert self.mapper.get(EntityKind.USER, 7) is None

    @pytest.mark.asyncio
    async def test_cached_mapping_skips_remote_lookup(self):
        self.mapper.record(EntityKind.GROUP, 3, 30)

        destination_id = await self.mapper.resolve(
            EntityKind.GROUP, Group(id=3, name='G', path='g', full_path='g')
        )

        assert destination_id == 30
        assert self.server.calls == []

    @pytest.mark.asyncio
    async def test_group_found_by_full_path(self):
        parent = self.server.add_group('parent')
        child = self.server.add_group('child', parent)

        destination_id = await self.mapper.resolve(
            EntityKind.GROUP,
            Group(id=9, name='Child', path='child', full_path='parent/child', parent_id=8),
        )

        assert destination_id == child['id']
        assert self.server.requests_to('GET', '/groups/parent/child')

    @pytest.mark.asyncio
    async def test_namespace_lookup(self):
        self.server.add_group('team')

        found = await self.mapper.find_namespace('team')
        missing = await self.mapper.find_namespace('other')

        assert found['kind'] == 'group'
        assert missing is None

    @pytest.mark.asyncio
    async def test_project_lookup(self):
        group = self.server.add_group('team')
        project = self.server.add_project('api', self.server.namespace_by_path('team'))

        destination_id = await self.mapper.resolve(
            EntityKind.PROJECT,
            Project(
                id=4,
                path='api',
                path_with_namespace='team/api',
                namespace={'id': group['id'], 'full_path': 'team'},
            ),
        )

        assert destination_id == project['id']

    @pytest.mark.asyncio
    async def test_non_404_errors_propagate(self):
        self.server.failures[('GET', '/groups/team')] = [403]

        with pytest.raises(GitLabPermissionError):
            await self.mapper.resolve(
                EntityKind.GROUP, Group(id=1, name='Team', path='team', full_path='team')
            )

    @pytest.mark.asyncio
    async def test_namespace_kind_uses_namespace_endpoint(self):
        self.server.add_group('team')

        await self.mapper.resolve(
            EntityKind.NAMESPACE,
            Namespace(id=2, name='Team', path='team', full_path='team', kind='group'),
        )

        assert self.server.requests_to('GET', '/namespaces/team')
