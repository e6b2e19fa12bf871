"""Tests for the project export/import state machine."""

import pytest

from gitlab_org_migrate.migration.errors import ProjectPermissionError
from gitlab_org_migrate.migration.project import (
    MigrationJob,
    ProjectMigrationStrategy,
    ProjectState,
)
from gitlab_org_migrate.migration.strategy import MigrationStatus
from gitlab_org_migrate.models.mapping import EntityKind
from gitlab_org_migrate.models.project import Project

HAPPY_PATH = ['idle', 'exporting', 'awaiting_export', 'downloading', 'importing', 'verifying', 'completed']


class TestMigrationJob:
    """Test MigrationJob transitions."""

    def test_valid_transitions_are_recorded(self):
        job = MigrationJob(project=Project(id=1, path='demo'))

        job.transition(ProjectState.EXPORTING)
        job.transition(ProjectState.FAILED)

        assert job.history == [ProjectState.IDLE, ProjectState.EXPORTING, ProjectState.FAILED]
        assert job.terminal is True

    def test_invalid_transition_raises(self):
        job = MigrationJob(project=Project(id=1, path='demo'))

        with pytest.raises(ValueError):
            job.transition(ProjectState.IMPORTING)

    def test_terminal_states_are_final(self):
        job = MigrationJob(project=Project(id=1, path='demo'))
        job.transition(ProjectState.FAILED)

        with pytest.raises(ValueError):
            job.transition(ProjectState.EXPORTING)


class ProjectTestBase:
    """Shared setup: one source project in group ``team``."""

    @pytest.fixture(autouse=True)
    def setup_servers(self, source, destination, make_context):
        self.source = source
        self.destination = destination
        self.make_context = make_context

        source.add_group('team')
        self.project = Project(**source.add_project('api', source.namespace_by_path('team')))
        destination.add_group('team')

    async def prepared_strategy(self, **settings):
        self.context = self.make_context(**settings)
        strategy = ProjectMigrationStrategy(self.context)
        await strategy.verify_project_permissions()
        await strategy.load_destination_namespaces()
        return strategy

    def leftovers(self):
        return list(self.context.workspace.base_dir.rglob('temp_*'))


class TestProjectMigration(ProjectTestBase):
    """Test ProjectMigrationStrategy."""

    @pytest.mark.asyncio
    async def test_happy_path(self):
        self.source.export_statuses[self.project.id] = ['queued', 'started', 'finished']
        strategy = await self.prepared_strategy()

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.COMPLETED
        assert result.metadata['history'] == HAPPY_PATH
        assert result.metadata['export_status'] == 'finished'
        assert result.metadata['namespace'] == 'team'
        assert strategy.jobs[0].polls == 3

        upload = self.destination.uploads[0]
        assert upload['path'] == 'api'
        assert upload['namespace'] == self.destination.namespace_by_path('team')['id']
        assert upload['content'] == f'archive of {self.project.id}'.encode()

        imported = next(p for p in self.destination.projects if p['path_with_namespace'] == 'team/api')
        assert result.destination_id == imported['id']
        assert self.context.mapper.get(EntityKind.PROJECT, self.project.id) == imported['id']
        assert self.leftovers() == []

    @pytest.mark.asyncio
    async def test_existing_project_is_skipped_after_download(self):
        self.destination.add_project('api', self.destination.namespace_by_path('team'))
        strategy = await self.prepared_strategy()

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.SKIPPED
        assert result.metadata['reason'] == 'already_exists'
        assert result.metadata['history'][-2:] == ['downloading', 'completed']
        assert self.destination.uploads == []
        assert self.leftovers() == []

    @pytest.mark.asyncio
    async def test_export_timeout(self):
        self.source.export_statuses[self.project.id] = ['started']
        strategy = await self.prepared_strategy(max_polls=3)

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.FAILED
        assert result.metadata['timed_out'] is True
        assert result.metadata['history'][-1] == 'failed'
        assert 'downloading' not in result.metadata['history']
        assert len(self.source.requests_to('GET', f'/projects/{self.project.id}/export')) == 3
        assert self.leftovers() == []

    @pytest.mark.asyncio
    async def test_export_failed_at_source(self):
        self.source.export_statuses[self.project.id] = ['started', 'failed']
        strategy = await self.prepared_strategy()

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.FAILED
        assert result.metadata['timed_out'] is False
        assert 'failed at source' in result.error_message

    @pytest.mark.asyncio
    async def test_status_poll_errors_count_as_polls(self):
        endpoint = f'/projects/{self.project.id}/export'
        self.source.failures[('GET', endpoint)] = [404, 404]
        strategy = await self.prepared_strategy(max_polls=5)

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.COMPLETED
        assert strategy.jobs[0].polls == 3

    @pytest.mark.asyncio
    async def test_export_request_failure(self):
        self.source.failures[('POST', f'/projects/{self.project.id}/export')] = [403]
        strategy = await self.prepared_strategy()

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.FAILED
        assert result.metadata['history'] == ['idle', 'exporting', 'failed']

    @pytest.mark.asyncio
    async def test_download_failure_cleans_up(self):
        endpoint = f'/projects/{self.project.id}/export/download'
        self.source.failures[('GET', endpoint)] = [503, 503, 503]
        strategy = await self.prepared_strategy()

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.FAILED
        assert result.metadata['history'][-2:] == ['downloading', 'failed']
        assert self.leftovers() == []

    @pytest.mark.asyncio
    async def test_import_forbidden(self):
        self.destination.failures[('POST', '/projects/import')] = [403]
        strategy = await self.prepared_strategy()

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.FAILED
        assert 'Import forbidden' in result.error_message
        assert result.metadata['history'][-2:] == ['importing', 'failed']
        assert self.leftovers() == []

    @pytest.mark.asyncio
    async def test_falls_back_to_acting_user_namespace(self):
        self.destination.groups.clear()
        self.destination.namespaces = [
            ns for ns in self.destination.namespaces if ns['kind'] == 'user'
        ]
        strategy = await self.prepared_strategy()

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.COMPLETED
        assert result.metadata['namespace'] == 'root'
        assert self.destination.uploads[0]['namespace'] == 1

    @pytest.mark.asyncio
    async def test_no_namespace_available(self):
        strategy = await self.prepared_strategy()
        strategy.destination_namespaces = []

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.FAILED
        assert 'No destination namespace' in result.error_message
        assert self.leftovers() == []

    @pytest.mark.asyncio
    async def test_cancelled_run_fails_project(self):
        self.source.export_statuses[self.project.id] = ['started']
        strategy = await self.prepared_strategy(max_polls=10)
        self.context.pacer.cancel_event.set()

        result = await strategy.migrate_entity(self.project)

        assert result.status == MigrationStatus.FAILED
        assert result.error_message == 'cancelled'

    @pytest.mark.asyncio
    async def test_project_without_path_is_skipped(self):
        strategy = await self.prepared_strategy()

        result = await strategy.migrate_entity(Project(id=999))

        assert result.status == MigrationStatus.SKIPPED
        assert strategy.jobs == []


class TestPermissionProbe(ProjectTestBase):
    """Test the destination project creation check."""

    @pytest.mark.asyncio
    async def test_probe_project_is_created_and_deleted(self):
        strategy = ProjectMigrationStrategy(self.make_context())

        user = await strategy.verify_project_permissions()

        assert user['username'] == 'root'
        probe = self.destination.requests_to('POST', '/projects')[0][3]
        assert probe['visibility'] == 'private'
        assert probe['name'].startswith('gitlab-org-migrate-permission-probe-')
        assert len(self.destination.requests_to('DELETE', '/projects/' + str(self.destination._next_id))) == 1
        assert self.destination.projects == []

    @pytest.mark.asyncio
    async def test_user_without_project_rights(self):
        self.destination.current_user.update({'is_admin': False, 'can_create_project': False})
        strategy = ProjectMigrationStrategy(self.make_context())

        with pytest.raises(ProjectPermissionError):
            await strategy.verify_project_permissions()

        assert not self.destination.requests_to('POST', '/projects')

    @pytest.mark.asyncio
    async def test_probe_creation_rejected(self):
        self.destination.failures[('POST', '/projects')] = [403]
        strategy = ProjectMigrationStrategy(self.make_context())

        with pytest.raises(ProjectPermissionError):
            await strategy.verify_project_permissions()

    @pytest.mark.asyncio
    async def test_probe_delete_failure_is_tolerated(self):
        self.destination.failures[('DELETE', '/projects/' + str(self.destination._next_id + 1))] = [403]
        strategy = ProjectMigrationStrategy(self.make_context())

        user = await strategy.verify_project_permissions()

        assert user['username'] == 'root'
