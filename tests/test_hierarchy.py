"""Tests for user, group, namespace and membership migration."""

import pytest

from gitlab_org_migrate.migration.hierarchy import (
    GroupMigrationStrategy,
    MembershipMigrationStrategy,
    NamespaceMigrationStrategy,
)
from gitlab_org_migrate.migration.strategy import (
    MigrationStatus,
    PhaseCounters,
    PhaseOutcome,
    UserMigrationStrategy,
)
from gitlab_org_migrate.models.mapping import EntityKind


def reasons(phase):
    return [result.metadata.get('reason') for result in phase.results]


class TestPhaseCounters:
    """Test PhaseCounters."""

    def test_counts_add_up(self):
        counters = PhaseCounters()
        for status in (
            MigrationStatus.COMPLETED,
            MigrationStatus.SKIPPED,
            MigrationStatus.FAILED,
            MigrationStatus.SKIPPED,
        ):
            counters.record(status)

        assert counters.attempted == 4
        assert counters.attempted == counters.succeeded + counters.skipped + counters.failed

    def test_non_terminal_status_rejected(self):
        with pytest.raises(ValueError):
            PhaseCounters().record(MigrationStatus.PENDING)


class TestUserMigration:
    """Test UserMigrationStrategy."""

    @pytest.mark.asyncio
    async def test_creates_missing_users(self, source, destination, make_context):
        alice = source.add_user('alice', name='Alice A')
        context = make_context()

        phase = await UserMigrationStrategy(context).run_phase(source.users)

        assert phase.counters.succeeded == 1
        created = next(u for u in destination.users if u['username'] == 'alice')
        assert created['email'] == 'alice@example.com'
        assert context.mapper.get(EntityKind.USER, alice['id']) == created['id']
        body = destination.requests_to('POST', '/users')[0][3]
        assert body['skip_confirmation'] is True
        assert body['force_random_password'] is True

    @pytest.mark.asyncio
    async def test_existing_user_is_skipped_and_mapped(self, source, destination, make_context):
        alice = source.add_user('alice')
        existing = destination.add_user('alice')
        context = make_context()

        phase = await UserMigrationStrategy(context).run_phase(source.users)

        assert phase.counters.skipped == 1
        assert reasons(phase) == ['already_exists']
        assert context.mapper.get(EntityKind.USER, alice['id']) == existing['id']
        assert not destination.requests_to('POST', '/users')

    @pytest.mark.asyncio
    async def test_user_with_taken_email_is_skipped(self, source, destination, make_context):
        alice2 = source.add_user('alice2', email='alice@example.com')
        existing = destination.add_user('alice', email='alice@example.com')
        context = make_context()

        phase = await UserMigrationStrategy(context).run_phase(source.users)

        assert phase.counters.skipped == phase.counters.attempted == 1
        assert phase.counters.failed == 0
        assert reasons(phase) == ['already_exists']
        assert phase.results[0].destination_id == existing['id']
        assert context.mapper.get(EntityKind.USER, alice2['id']) == existing['id']
        assert not destination.requests_to('POST', '/users')

    @pytest.mark.asyncio
    async def test_system_and_bot_users_are_skipped(self, source, destination, make_context):
        source.add_user('root')
        source.add_user('ghost')
        source.add_user('deploy-bot', bot=True)
        context = make_context()

        phase = await UserMigrationStrategy(context).run_phase(source.users)

        assert phase.counters.skipped == 3
        assert set(reasons(phase)) == {'system_or_bot_user'}
        assert not destination.requests_to('POST', '/users')

    @pytest.mark.asyncio
    async def test_incomplete_and_malformed_records(self, source, destination, make_context):
        source.add_user('noemail', email='')
        source.users.append({'username': 'missing-id'})
        context = make_context()

        phase = await UserMigrationStrategy(context).run_phase(source.users)

        assert phase.counters.skipped == 2
        assert sorted(reasons(phase)) == ['malformed_record', 'missing_required_fields']

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_phase(self, source, destination, make_context):
        source.add_user('alice')
        source.add_user('bob')
        destination.failures[('POST', '/users')] = [422]
        context = make_context()

        phase = await UserMigrationStrategy(context).run_phase(source.users)

        assert phase.outcome == PhaseOutcome.COMPLETED
        assert phase.counters.failed == 1
        assert phase.counters.succeeded == 1
        assert '422 injected' in phase.results[0].error_message

    @pytest.mark.asyncio
    async def test_rate_limited_create_is_retried(self, source, destination, make_context):
        source.add_user('alice')
        destination.failures[('POST', '/users')] = [429, 429]
        context = make_context()

        phase = await UserMigrationStrategy(context).run_phase(source.users)

        assert phase.counters.succeeded == 1
        assert len(destination.requests_to('POST', '/users')) == 3

    @pytest.mark.asyncio
    async def test_already_taken_is_skipped(self, source, destination, make_context):
        source.add_user('alice', email='alice@corp.example')
        # same email under a different username, invisible to the username lookup
        destination.add_user('asmith', email='alice@corp.example')
        context = make_context()
        context.mapper.find_user = _never_found

        phase = await UserMigrationStrategy(context).run_phase(source.users)

        assert phase.counters.skipped == 1
        assert reasons(phase) == ['already_taken']


async def _never_found(username, email):
    return None


class TestGroupMigration:
    """Test GroupMigrationStrategy."""

    @pytest.mark.asyncio
    async def test_parents_are_created_before_children(self, source, destination, make_context):
        top = source.add_group('top')
        middle = source.add_group('middle', top)
        source.add_group('leaf', middle)
        source.groups.reverse()
        context = make_context()

        phase = await GroupMigrationStrategy(context).run_phase(source.groups)

        assert phase.counters.succeeded == 3
        created = [call[3]['path'] for call in destination.requests_to('POST', '/groups')]
        assert created == ['top', 'middle', 'leaf']
        assert sorted(g['full_path'] for g in destination.groups) == [
            'top',
            'top/middle',
            'top/middle/leaf',
        ]

    @pytest.mark.asyncio
    async def test_child_is_created_under_mapped_parent(self, source, destination, make_context):
        top = source.add_group('top')
        source.add_group('child', top, visibility='internal', description='Team space')
        context = make_context()

        await GroupMigrationStrategy(context).run_phase(source.groups)

        dest_top = next(g for g in destination.groups if g['full_path'] == 'top')
        body = destination.requests_to('POST', '/groups')[1][3]
        assert body['parent_id'] == dest_top['id']
        assert body['visibility'] == 'internal'
        assert body['description'] == 'Team space'

    @pytest.mark.asyncio
    async def test_existing_group_is_skipped(self, source, destination, make_context):
        source.add_group('top')
        existing = destination.add_group('top')
        context = make_context()

        phase = await GroupMigrationStrategy(context).run_phase(source.groups)

        assert phase.counters.skipped == 1
        assert phase.results[0].destination_id == existing['id']
        assert not destination.requests_to('POST', '/groups')

    @pytest.mark.asyncio
    async def test_unknown_parent_becomes_top_level(self, source, destination, make_context):
        source.groups.append(
            {
                'id': 50,
                'name': 'Orphan',
                'path': 'orphan',
                'full_path': 'gone/orphan',
                'parent_id': 49,
            }
        )
        context = make_context()

        phase = await GroupMigrationStrategy(context).run_phase(source.groups)

        assert phase.counters.succeeded == 1
        body = destination.requests_to('POST', '/groups')[0][3]
        assert 'parent_id' not in body

    @pytest.mark.asyncio
    async def test_missing_name_or_path_is_skipped(self, source, destination, make_context):
        source.groups.append({'id': 60, 'name': None, 'path': 'nameless'})
        context = make_context()

        phase = await GroupMigrationStrategy(context).run_phase(source.groups)

        assert reasons(phase) == ['missing_required_fields']

    @pytest.mark.asyncio
    async def test_second_run_skips_everything(self, source, destination, make_context):
        top = source.add_group('top')
        source.add_group('child', top)

        first = await GroupMigrationStrategy(make_context()).run_phase(source.groups)
        second = await GroupMigrationStrategy(make_context()).run_phase(source.groups)

        assert first.counters.succeeded == 2
        assert second.counters.skipped == second.counters.attempted == 2
        assert second.counters.failed == 0
        assert len(destination.groups) == 2


class TestNamespaceMigration:
    """Test NamespaceMigrationStrategy."""

    @pytest.mark.asyncio
    async def test_user_namespaces_are_never_created(self, source, destination, make_context):
        source.add_user('alice')
        context = make_context()
        records = [ns for ns in source.namespaces if ns['kind'] == 'user']

        phase = await NamespaceMigrationStrategy(context).run_phase(records)

        assert phase.counters.skipped == phase.counters.attempted == 2
        assert set(reasons(phase)) == {'already_exists', 'user_namespace'}
        assert not destination.requests_to('POST', '/groups')

    @pytest.mark.asyncio
    async def test_missing_group_namespace_is_created(self, source, destination, make_context):
        source.add_group('team')
        namespace = source.namespace_by_path('team')
        context = make_context()

        phase = await NamespaceMigrationStrategy(context).run_phase([namespace])

        assert phase.counters.succeeded == 1
        destination_id = phase.results[0].destination_id
        assert context.mapper.get(EntityKind.NAMESPACE, namespace['id']) == destination_id
        assert context.mapper.get(EntityKind.GROUP, namespace['id']) == destination_id

    @pytest.mark.asyncio
    async def test_nested_namespace_uses_mapped_parent(self, source, destination, make_context):
        top = source.add_group('top')
        source.add_group('sub', top)
        context = make_context()
        await GroupMigrationStrategy(context).run_phase(source.groups)
        destination.groups.pop()
        destination.namespaces.pop()
        records = [ns for ns in source.namespaces if ns['kind'] == 'group']

        phase = await NamespaceMigrationStrategy(context).run_phase(records)

        assert phase.counters.skipped == 1
        assert phase.counters.succeeded == 1
        dest_top = next(g for g in destination.groups if g['full_path'] == 'top')
        assert destination.requests_to('POST', '/groups')[-1][3]['parent_id'] == dest_top['id']


class TestMembershipMigration:
    """Test MembershipMigrationStrategy."""

    @pytest.mark.asyncio
    async def test_members_are_added_with_translated_ids(self, source, destination, make_context):
        group = source.add_group('team')
        alice = source.add_user('alice')
        bob = source.add_user('bob')
        source.add_member(group, alice, 40)
        source.add_member(group, bob, 30)
        context = make_context()
        await UserMigrationStrategy(context).run_phase(source.users)
        await GroupMigrationStrategy(context).run_phase(source.groups)

        phase = await MembershipMigrationStrategy(context).run_phase(source.groups)

        assert phase.counters.succeeded == 2
        dest_group = destination.groups[0]
        added = {m['username']: m['access_level'] for m in destination.members[dest_group['id']]}
        assert added == {'alice': 40, 'bob': 30}

    @pytest.mark.asyncio
    async def test_unmapped_user_is_skipped(self, source, destination, make_context):
        group = source.add_group('team')
        ghost = source.add_user('carol')
        source.users.clear()
        source.add_member(group, ghost)
        destination.add_group('team')
        context = make_context()

        phase = await MembershipMigrationStrategy(context).run_phase(source.groups)

        assert phase.counters.skipped == 1
        assert reasons(phase) == ['user_not_mapped']
        assert not any(destination.members.values())

    @pytest.mark.asyncio
    async def test_existing_membership_is_skipped(self, source, destination, make_context):
        group = source.add_group('team')
        alice = source.add_user('alice')
        source.add_member(group, alice)
        dest_group = destination.add_group('team')
        dest_alice = destination.add_user('alice')
        destination.add_member(dest_group, dest_alice)
        context = make_context()

        phase = await MembershipMigrationStrategy(context).run_phase(source.groups)

        assert phase.counters.skipped == 1
        assert reasons(phase) == ['already_member']

    @pytest.mark.asyncio
    async def test_group_missing_at_destination_fails_members(self, source, destination, make_context):
        group = source.add_group('team')
        source.add_member(group, source.add_user('alice'))
        source.add_member(group, source.add_user('bob'))
        context = make_context()

        phase = await MembershipMigrationStrategy(context).run_phase(source.groups)

        assert phase.counters.failed == 2
        assert phase.outcome == PhaseOutcome.COMPLETED

    @pytest.mark.asyncio
    async def test_member_listing_failure_counts_once(self, source, destination, make_context):
        group = source.add_group('team')
        source.failures[('GET', f'/groups/{group["id"]}/members')] = [403]
        context = make_context()

        phase = await MembershipMigrationStrategy(context).run_phase(source.groups)

        assert phase.counters.failed == 1
        assert 'Member listing failed' in phase.results[0].error_message
