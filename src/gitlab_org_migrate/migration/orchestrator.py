"""Migration orchestrator for coordinating the migration phases."""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..api.exceptions import GitLabAPIError
from ..models.mapping import EntityKind
from ..models.project import Project
from ..utils.report import write_report
from .errors import MigrationCancelledError, PreflightError, ProjectPermissionError
from .hierarchy import (
    GroupMigrationStrategy,
    MembershipMigrationStrategy,
    NamespaceMigrationStrategy,
)
from .project import ProjectMigrationStrategy
from .reconcile import ProjectReconciler, ReconciliationReport
from .strategy import (
    MigrationContext,
    MigrationResult,
    MigrationStatus,
    MigrationStrategy,
    PhaseCounters,
    PhaseOutcome,
    PhaseResult,
    UserMigrationStrategy,
)

PHASES = ('users', 'groups', 'memberships', 'namespaces', 'projects')

SOURCE_LISTINGS = {
    'users': '/users',
    'groups': '/groups',
    'memberships': '/groups',
    'namespaces': '/namespaces',
    'projects': '/projects',
}


class MigrationSummary(BaseModel):
    """Summary of migration results."""

    started_at: datetime = Field(..., description='Migration start time')
    completed_at: Optional[datetime] = Field(
        default=None, description='Migration completion time'
    )
    source_url: str = Field(..., description='Source instance')
    destination_url: str = Field(..., description='Destination instance')

    phases: Dict[str, PhaseResult] = Field(
        default_factory=dict, description='Results by phase, in execution order'
    )
    reconciliation: Optional[ReconciliationReport] = Field(default=None)
    swept_artifacts: int = Field(default=0, description='Leftover files removed')
    mapped: Dict[str, int] = Field(
        default_factory=dict, description='Recorded ID mappings by entity kind'
    )
    cancelled: bool = Field(default=False)

    workspace: Optional[str] = Field(default=None, description='Run directory')
    log_file: Optional[str] = Field(default=None)
    report_file: Optional[str] = Field(default=None)

    @property
    def totals(self) -> PhaseCounters:
        totals = PhaseCounters()
        for phase in self.phases.values():
            totals.merge(phase.counters)
        return totals

    @property
    def failed_results(self) -> List[MigrationResult]:
        return [
            result
            for phase in self.phases.values()
            for result in phase.results
            if result.status == MigrationStatus.FAILED
        ]


class MigrationOrchestrator:
    """Run preflight checks and the migration phases in dependency order.

    Phases run as users, groups, memberships, namespaces, projects. A failing
    phase never stops the run: its outcome is recorded and the next phase
    starts. Only a failed preflight check ends the run early, before anything
    is changed at the destination.
    """

    def __init__(self, context: MigrationContext):
        """Initialize migration orchestrator.

        Args:
            context: Migration context with clients and settings
        """
        self.context = context
        self.logger = logger.bind(component='MigrationOrchestrator')

        self.strategies: Dict[str, MigrationStrategy] = {
            'users': UserMigrationStrategy(context),
            'groups': GroupMigrationStrategy(context),
            'memberships': MembershipMigrationStrategy(context),
            'namespaces': NamespaceMigrationStrategy(context),
            'projects': ProjectMigrationStrategy(context),
        }
        self._listings: Dict[str, List[Dict[str, Any]]] = {}

    async def preflight(self) -> None:
        """Verify both instances and tokens before any change is made.

        Raises:
            PreflightError: If a check fails
        """
        self.logger.info('Running preflight checks')

        for role, client in (
            ('source', self.context.source_client),
            ('destination', self.context.destination_client),
        ):
            try:
                response = await client.get_async('/version')
            except GitLabAPIError as e:
                raise PreflightError(
                    f'Cannot reach {role} instance {client.config.url}: {e}'
                ) from e
            if not isinstance(response.data, dict) or 'version' not in response.data:
                raise PreflightError(
                    f'{role.title()} instance {client.config.url} did not answer '
                    f'/version with a JSON document'
                )
            self.logger.info(
                f'{role.title()} instance {client.config.url}: '
                f'GitLab {response.data["version"]}'
            )

        try:
            await self.context.source_client.get_async('/users', params={'per_page': 1})
        except GitLabAPIError as e:
            raise PreflightError(f'Source token cannot list users: {e}') from e

        try:
            await self.context.destination_client.get_async('/user')
        except GitLabAPIError as e:
            raise PreflightError(f'Destination token is not usable: {e}') from e

        self.logger.success('Preflight checks passed')

    def _enabled(self, phase: str) -> bool:
        return getattr(self.context.settings, phase)

    def _cancel_run(self) -> None:
        self.logger.warning(
            f'Run timeout of {self.context.settings.run_timeout:g}s reached; cancelling'
        )
        self.context.pacer.cancel_event.set()

    async def execute_migration(self) -> MigrationSummary:
        """Execute the whole migration.

        Returns:
            Migration summary with results

        Raises:
            PreflightError: If the instances or tokens are not usable
        """
        self.logger.info('Starting migration execution')
        summary = MigrationSummary(
            started_at=datetime.now(),
            source_url=self.context.source_client.config.url,
            destination_url=self.context.destination_client.config.url,
            workspace=str(self.context.workspace.run_dir),
            log_file=str(self.context.workspace.log_file),
        )

        await self.preflight()

        timer = None
        if self.context.settings.run_timeout:
            timer = asyncio.get_running_loop().call_later(
                self.context.settings.run_timeout, self._cancel_run
            )

        try:
            for phase in PHASES:
                summary.phases[phase] = await self._execute_phase(phase)

            summary.reconciliation = await self._reconcile()
        finally:
            if timer is not None:
                timer.cancel()

        summary.cancelled = self.context.pacer.cancelled
        summary.swept_artifacts = len(self.context.workspace.sweep_artifacts())
        summary.completed_at = datetime.now()
        self._persist(summary)

        totals = summary.totals
        self.logger.info(
            f'Migration finished: {totals.succeeded} succeeded, {totals.skipped} '
            f'skipped, {totals.failed} failed of {totals.attempted}'
        )
        return summary

    async def _execute_phase(self, phase: str) -> PhaseResult:
        if not self._enabled(phase):
            self.logger.info(f'Skipping {phase} migration (disabled in configuration)')
            return PhaseResult(phase=phase, outcome=PhaseOutcome.DISABLED)

        if self.context.pacer.cancelled:
            return PhaseResult(phase=phase, outcome=PhaseOutcome.ABORTED, error='cancelled')

        self.logger.info(f'Starting {phase} migration')
        if phase == 'projects':
            result = await self._execute_project_phase()
        else:
            try:
                records = await self._list_source(phase)
            except GitLabAPIError as e:
                self.logger.error(f'{phase} phase failed: cannot list source: {e}')
                return PhaseResult(
                    phase=phase, outcome=PhaseOutcome.FAILED, error=f'Listing failed: {e}'
                )
            result = await self.strategies[phase].run_phase(records)

        counters = result.counters
        self.logger.info(
            f'Completed {phase} migration ({result.outcome.value}): '
            f'{counters.succeeded} successful, {counters.failed} failed, '
            f'{counters.skipped} skipped'
        )
        return result

    async def _list_source(self, phase: str) -> List[Dict[str, Any]]:
        """List a source collection once per run and keep a copy on disk."""
        endpoint = SOURCE_LISTINGS[phase]
        if endpoint not in self._listings:
            records = await self.context.source_collector.collect_all(endpoint)
            self._listings[endpoint] = records
            self.context.workspace.save_json(f'{endpoint.strip("/")}.json', records)
        return self._listings[endpoint]

    async def _execute_project_phase(self) -> PhaseResult:
        strategy: ProjectMigrationStrategy = self.strategies['projects']
        settings = self.context.settings
        phase = PhaseResult(phase='projects')

        try:
            await strategy.verify_project_permissions()
        except (ProjectPermissionError, GitLabAPIError) as e:
            self.logger.error(f'Project migration aborted: {e}')
            return PhaseResult(
                phase='projects', outcome=PhaseOutcome.ABORTED, error=str(e)
            )

        try:
            records = await self._list_source('projects')
            await strategy.load_destination_namespaces()
        except GitLabAPIError as e:
            self.logger.error(f'projects phase failed: {e}')
            return PhaseResult(
                phase='projects', outcome=PhaseOutcome.FAILED, error=f'Listing failed: {e}'
            )

        projects: List[Project] = []
        for record in records:
            project = strategy.parse(record)
            if project is None:
                phase.add(
                    strategy.create_result(
                        str(record.get('id', 'unknown')),
                        MigrationStatus.SKIPPED,
                        metadata={'reason': 'malformed_record'},
                    )
                )
            else:
                projects.append(project)

        self.logger.info(
            f'Migrating {len(projects)} project(s) with '
            f'{settings.project_workers} worker(s)'
        )
        semaphore = asyncio.Semaphore(settings.project_workers)
        started = 0

        async def migrate(project: Project) -> Optional[MigrationResult]:
            nonlocal started
            async with semaphore:
                try:
                    if started:
                        await self.context.pacer.wait(settings.project_delay)
                    else:
                        self.context.pacer.check()
                except MigrationCancelledError:
                    return None
                started += 1
                return await strategy.migrate_entity(project)

        outcomes = await asyncio.gather(
            *(migrate(project) for project in projects), return_exceptions=True
        )

        not_started = 0
        for project, outcome in zip(projects, outcomes):
            if outcome is None:
                not_started += 1
            elif isinstance(outcome, Exception):
                self.logger.error(
                    f'Project {project.display_path} failed unexpectedly: {outcome!r}'
                )
                phase.add(
                    strategy.create_result(
                        str(project.id),
                        MigrationStatus.FAILED,
                        label=project.display_path,
                        error_message=f'Unexpected error: {outcome!r}',
                    )
                )
            else:
                phase.add(outcome)

        if not_started:
            self.logger.warning(f'{not_started} project(s) not started: run cancelled')
            phase.outcome = PhaseOutcome.ABORTED
            phase.error = f'cancelled; {not_started} project(s) not started'

        return phase

    async def _reconcile(self) -> Optional[ReconciliationReport]:
        jobs = self.strategies['projects'].jobs
        if not jobs or self.context.pacer.cancelled:
            return None

        try:
            return await ProjectReconciler(self.context).reconcile(jobs)
        except MigrationCancelledError:
            self.logger.warning('Import check skipped: run cancelled')
        except GitLabAPIError as e:
            self.logger.error(f'Import check failed: {e}')
        return None

    def _persist(self, summary: MigrationSummary) -> None:
        workspace = self.context.workspace
        table = self.context.mapper.table
        summary.mapped = {kind.value: table.count(kind) for kind in EntityKind}
        self.logger.info(f'{len(table)} ID mapping(s) recorded')
        workspace.save_json(workspace.mapping_file.name, table.to_dict())
        write_report(summary, workspace.report_file)
        summary.report_file = str(workspace.report_file)
        self.logger.info(f'Report written to {workspace.report_file}')
