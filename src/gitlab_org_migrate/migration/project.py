"""Project migration through GitLab export and import archives."""

import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..api.exceptions import GitLabAPIError, GitLabPermissionError
from ..models.group import Namespace
from ..models.mapping import EntityKind, MappingConflictError
from ..models.project import Project
from .errors import (
    ExportFailedError,
    ExportTimeoutError,
    MigrationCancelledError,
    MigrationError,
    ProjectPermissionError,
)
from .strategy import MigrationResult, MigrationStatus, MigrationStrategy

PERMISSION_HINTS = (
    'the token may not be allowed to create projects',
    'the destination namespace may not exist or may not be accessible',
    'a project with the same name may already exist in another namespace',
    'the destination instance may restrict project imports',
)


class ProjectState(str, Enum):
    """States of a project migration job."""

    IDLE = 'idle'
    EXPORTING = 'exporting'
    AWAITING_EXPORT = 'awaiting_export'
    DOWNLOADING = 'downloading'
    IMPORTING = 'importing'
    VERIFYING = 'verifying'
    COMPLETED = 'completed'
    FAILED = 'failed'


TERMINAL_STATES = (ProjectState.COMPLETED, ProjectState.FAILED)

ALLOWED_TRANSITIONS = {
    ProjectState.IDLE: (ProjectState.EXPORTING, ProjectState.FAILED),
    ProjectState.EXPORTING: (ProjectState.AWAITING_EXPORT, ProjectState.FAILED),
    ProjectState.AWAITING_EXPORT: (ProjectState.DOWNLOADING, ProjectState.FAILED),
    ProjectState.DOWNLOADING: (
        ProjectState.IMPORTING,
        ProjectState.COMPLETED,
        ProjectState.FAILED,
    ),
    ProjectState.IMPORTING: (ProjectState.VERIFYING, ProjectState.FAILED),
    ProjectState.VERIFYING: (ProjectState.COMPLETED, ProjectState.FAILED),
    ProjectState.COMPLETED: (),
    ProjectState.FAILED: (),
}


class MigrationJob(BaseModel):
    """Progress of one project through export, transfer and import."""

    project: Project = Field(..., description='Source project')
    state: ProjectState = Field(default=ProjectState.IDLE)
    history: List[ProjectState] = Field(default_factory=lambda: [ProjectState.IDLE])

    export_status: Optional[str] = Field(default=None)
    polls: int = Field(default=0, description='Export status polls performed')
    timed_out: bool = Field(default=False)

    artifact_path: Optional[Path] = Field(default=None)
    metadata_path: Optional[Path] = Field(default=None)

    namespace_id: Optional[int] = Field(default=None)
    namespace_path: Optional[str] = Field(default=None)
    import_status: Optional[str] = Field(default=None)
    destination_id: Optional[int] = Field(default=None)

    skipped: bool = Field(default=False, description='Already present at destination')
    error: Optional[str] = Field(default=None)

    def transition(self, state: ProjectState) -> None:
        if state not in ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(f'Invalid transition {self.state.value} -> {state.value}')
        self.state = state
        self.history.append(state)

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class ProjectMigrationStrategy(MigrationStrategy):
    """Strategy for migrating projects.

    Each project runs through a small state machine::

        IDLE -> EXPORTING -> AWAITING_EXPORT -> DOWNLOADING -> IMPORTING
             -> VERIFYING -> COMPLETED

    and ends in FAILED from any intermediate state. A project already present
    under the destination namespace ends COMPLETED right after the download
    without an import. The downloaded archive and its metadata file are
    removed whatever the outcome.
    """

    phase_name = 'projects'
    entity_type = 'project'
    model = Project

    def __init__(self, context):
        super().__init__(context)
        self.jobs: List[MigrationJob] = []
        self.acting_user: Dict[str, Any] = {}
        self.destination_namespaces: List[Namespace] = []

    def describe(self, project: Project) -> str:
        return project.display_path

    async def verify_project_permissions(self) -> Dict[str, Any]:
        """Check that the destination token can create and delete projects.

        A throwaway private project is created and removed again.

        Returns:
            The acting destination user

        Raises:
            ProjectPermissionError: If projects cannot be created
        """
        client = self.context.destination_client

        try:
            user = (await client.get_async('/user')).data or {}
        except GitLabAPIError as e:
            raise ProjectPermissionError(f'Cannot read the acting user: {e.detail}') from e

        username = user.get('username', 'unknown')
        self.logger.info(
            f'Destination user {username}: admin={bool(user.get("is_admin"))}, '
            f'can_create_project={bool(user.get("can_create_project"))}'
        )
        if not user.get('can_create_project') and not user.get('is_admin'):
            raise ProjectPermissionError(
                f'User {username} is not allowed to create projects at destination'
            )

        probe_name = f'gitlab-org-migrate-permission-probe-{int(time.time())}'
        try:
            response = await client.post_async(
                '/projects',
                data={'name': probe_name, 'path': probe_name, 'visibility': 'private'},
            )
        except GitLabAPIError as e:
            raise ProjectPermissionError(
                f'Creating a probe project failed: {e.detail}'
            ) from e

        probe_id = self._created_id(response)
        try:
            await client.delete_async(f'/projects/{probe_id}')
        except GitLabAPIError as e:
            self.logger.warning(
                f'Probe project {probe_name} (ID {probe_id}) could not be deleted: {e.detail}'
            )

        self.logger.success('Destination token can create projects')
        self.acting_user = user
        return user

    async def load_destination_namespaces(self) -> List[Namespace]:
        """Read the destination namespace listing used to place imports."""
        self.destination_namespaces = await self.context.destination_collector.collect_models(
            '/namespaces', Namespace
        )
        return self.destination_namespaces

    async def migrate_entity(self, project: Project) -> MigrationResult:
        """Migrate a single project.

        Args:
            project: Project to migrate

        Returns:
            Migration result
        """
        if not project.path:
            self.logger.warning(f'Skipping project {project.id}: path missing')
            return self.create_result(
                str(project.id),
                MigrationStatus.SKIPPED,
                metadata={'reason': 'missing_required_fields'},
            )

        job = MigrationJob(project=project)
        self.jobs.append(job)
        self.logger.info(f'Migrating project: {project.display_path} (ID: {project.id})')

        try:
            await self._run(job)
        except MigrationCancelledError:
            self._fail(job, 'cancelled')
        except ExportTimeoutError as e:
            job.timed_out = True
            self._fail(job, str(e))
        except GitLabAPIError as e:
            self._fail(job, e.detail)
        except (MigrationError, MappingConflictError, OSError) as e:
            self._fail(job, str(e))
        finally:
            self._cleanup(job)

        return self._result(job)

    async def _run(self, job: MigrationJob) -> None:
        project = job.project
        source = self.context.source_client
        settings = self.context.settings

        job.transition(ProjectState.EXPORTING)
        await self.context.pacer.wait(settings.export_delay)
        await source.post_async(f'/projects/{project.id}/export')

        job.transition(ProjectState.AWAITING_EXPORT)
        await self._await_export(job)

        job.transition(ProjectState.DOWNLOADING)
        await self._download(job)

        job.namespace_id, job.namespace_path = self._resolve_namespace(project)
        if job.namespace_id is None:
            raise MigrationError(
                f'No destination namespace available for {project.display_path}'
            )

        existing = await self.context.mapper.find_project(job.namespace_path, project.path)
        if existing is not None:
            job.skipped = True
            job.destination_id = existing['id']
            self.context.mapper.record(EntityKind.PROJECT, project.id, existing['id'])
            self.logger.info(
                f'Project {job.namespace_path}/{project.path} already exists, skipping import'
            )
            job.transition(ProjectState.COMPLETED)
            return

        job.transition(ProjectState.IMPORTING)
        if not await self._import(job):
            return

        job.transition(ProjectState.COMPLETED)

    async def _await_export(self, job: MigrationJob) -> None:
        """Poll the export status until it finishes, fails or the budget runs out."""
        project = job.project
        settings = self.context.settings

        for poll in range(1, settings.max_polls + 1):
            job.polls = poll
            try:
                response = await self.context.source_client.get_async(
                    f'/projects/{project.id}/export'
                )
            except GitLabAPIError as e:
                self.logger.warning(
                    f'Export status poll {poll}/{settings.max_polls} for '
                    f'{project.display_path} failed: {e}'
                )
            else:
                data = response.data if isinstance(response.data, dict) else {}
                job.export_status = data.get('export_status')
                self.logger.debug(
                    f'Export of {project.display_path}: {job.export_status} '
                    f'(poll {poll}/{settings.max_polls})'
                )
                if job.export_status == 'finished':
                    return
                if job.export_status == 'failed':
                    raise ExportFailedError(
                        f'Export of {project.display_path} failed at source'
                    )

            if poll < settings.max_polls:
                await self.context.pacer.wait(settings.poll_interval)

        raise ExportTimeoutError(project.id, settings.max_polls)

    async def _download(self, job: MigrationJob) -> None:
        project = job.project
        workspace = self.context.workspace

        job.artifact_path = workspace.artifact_path(project.id, project.display_path)
        job.metadata_path = workspace.metadata_path(project.id)

        await self.context.source_client.download_async(
            f'/projects/{project.id}/export/download', job.artifact_path
        )
        workspace.save_json(
            job.metadata_path.name,
            {
                'project': project.dict(),
                'export_file': str(job.artifact_path),
                'exported_at': datetime.now().isoformat(),
            },
        )
        size = job.artifact_path.stat().st_size
        self.logger.info(f'Downloaded export of {project.display_path} ({size} bytes)')

    def _resolve_namespace(self, project: Project) -> Tuple[Optional[int], Optional[str]]:
        """Pick the destination namespace for ``project``.

        Exact full path match in the destination listing first, then the
        namespace mapped during the namespace phase, then the acting user's
        personal namespace.
        """
        wanted = project.namespace_path
        by_id = {namespace.id: namespace for namespace in self.destination_namespaces}

        for namespace in self.destination_namespaces:
            if wanted and namespace.full_path == wanted:
                return namespace.id, namespace.full_path

        if project.namespace.id is not None:
            mapped = self.context.mapper.get(EntityKind.NAMESPACE, project.namespace.id)
            if mapped is not None and mapped in by_id:
                return mapped, by_id[mapped].hierarchy_path

        username = self.acting_user.get('username')
        fallback_id = self.acting_user.get('namespace_id')
        for namespace in self.destination_namespaces:
            if namespace.is_user_namespace and (
                namespace.id == fallback_id or namespace.full_path == username
            ):
                self.logger.warning(
                    f'Namespace {wanted} not found at destination; importing '
                    f'{project.display_path} into {namespace.full_path}'
                )
                return namespace.id, namespace.hierarchy_path

        return None, None

    async def _import(self, job: MigrationJob) -> bool:
        """Submit the archive; returns False when the job failed."""
        project = job.project
        client = self.context.destination_client

        try:
            namespace = (await client.get_async(f'/namespaces/{job.namespace_id}')).data
        except GitLabAPIError as e:
            self._fail(job, f'Namespace {job.namespace_id} is not accessible: {e.detail}')
            return False
        self.logger.debug(
            f'Importing into namespace {job.namespace_path} '
            f'(kind: {(namespace or {}).get("kind", "unknown")})'
        )

        await self.context.pacer.wait(self.context.settings.import_delay)

        try:
            response = await client.import_project_async(
                job.artifact_path, project.path, job.namespace_id
            )
        except GitLabPermissionError as e:
            self.logger.error(f'Import of {project.display_path} forbidden (403); possible causes:')
            for hint in PERMISSION_HINTS:
                self.logger.error(f'  - {hint}')
            self._fail(job, f'Import forbidden: {e.detail}')
            return False

        job.transition(ProjectState.VERIFYING)
        data = response.data if isinstance(response.data, dict) else {}
        job.import_status = data.get('import_status') or 'scheduled'
        job.destination_id = data.get('id')
        if job.destination_id is not None:
            self.context.mapper.record(EntityKind.PROJECT, project.id, job.destination_id)

        self.logger.success(
            f'Project {project.display_path} imported (status: {job.import_status})'
        )
        return True

    def _fail(self, job: MigrationJob, reason: str) -> None:
        job.error = reason
        if not job.terminal:
            job.transition(ProjectState.FAILED)
        self.logger.error(
            f'Project {job.project.display_path} failed: {reason} '
            f'(after {" -> ".join(state.value for state in job.history[:-1])})'
        )

    def _cleanup(self, job: MigrationJob) -> None:
        self.context.workspace.remove(job.artifact_path, job.metadata_path)

    def _result(self, job: MigrationJob) -> MigrationResult:
        if job.state == ProjectState.FAILED:
            status = MigrationStatus.FAILED
        elif job.skipped:
            status = MigrationStatus.SKIPPED
        else:
            status = MigrationStatus.COMPLETED

        return self.create_result(
            str(job.project.id),
            status,
            error_message=job.error,
            label=job.project.display_path,
            destination_id=job.destination_id,
            metadata={
                'history': [state.value for state in job.history],
                'export_status': job.export_status,
                'import_status': job.import_status,
                'namespace': job.namespace_path,
                'timed_out': job.timed_out,
                'reason': 'already_exists' if job.skipped else None,
            },
        )
