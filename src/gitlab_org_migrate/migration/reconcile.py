"""Post-run check of submitted project imports."""

from enum import Enum
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..models.project import Project
from .project import MigrationJob
from .strategy import MigrationContext

COMPLETED_IMPORT_STATUSES = ('finished', 'none', None)
PENDING_IMPORT_STATUSES = ('scheduled', 'started')


class ImportOutcome(str, Enum):
    """Classification of a project at the destination after the run."""

    COMPLETED = 'completed'
    PENDING = 'pending'
    FAILED = 'failed'


class ReconciliationEntry(BaseModel):
    """Destination state of one attempted project."""

    project_id: int
    path: str
    namespace_path: Optional[str] = None
    import_status: Optional[str] = None
    outcome: ImportOutcome


class ReconciliationReport(BaseModel):
    """Import outcomes of every attempted project."""

    entries: List[ReconciliationEntry] = Field(default_factory=list)

    def count(self, outcome: ImportOutcome) -> int:
        return sum(1 for entry in self.entries if entry.outcome == outcome)

    @property
    def counts(self) -> Dict[str, int]:
        return {outcome.value: self.count(outcome) for outcome in ImportOutcome}


def classify_import_status(project: Optional[Project]) -> ImportOutcome:
    """Map a destination project record to an import outcome."""
    if project is None:
        return ImportOutcome.FAILED
    if project.import_status in COMPLETED_IMPORT_STATUSES:
        return ImportOutcome.COMPLETED
    if project.import_status in PENDING_IMPORT_STATUSES:
        return ImportOutcome.PENDING
    if project.import_status == 'failed':
        return ImportOutcome.FAILED
    return ImportOutcome.PENDING


class ProjectReconciler:
    """Classify attempted projects against the destination project listing.

    Imports are asynchronous on the destination, so an accepted import may
    still be running or may fail later. The result is reported only; no
    project is migrated again.
    """

    def __init__(self, context: MigrationContext):
        self.context = context
        self.logger = logger.bind(component='ProjectReconciler')

    async def reconcile(self, jobs: List[MigrationJob]) -> ReconciliationReport:
        """Look up every job's project at the destination.

        Args:
            jobs: Project jobs of this run

        Returns:
            Reconciliation report
        """
        report = ReconciliationReport()
        if not jobs:
            return report

        self.logger.info(
            f'Waiting {self.context.settings.reconcile_delay:g}s before checking '
            f'{len(jobs)} project import(s)'
        )
        await self.context.pacer.wait(self.context.settings.reconcile_delay)

        destination = await self.context.destination_collector.collect_models(
            '/projects', Project
        )

        for job in jobs:
            namespace_path = job.namespace_path or job.project.namespace_path
            match = next(
                (
                    project
                    for project in destination
                    if project.matches(job.project.path, namespace_path)
                ),
                None,
            )
            outcome = classify_import_status(match)
            report.entries.append(
                ReconciliationEntry(
                    project_id=job.project.id,
                    path=f'{namespace_path}/{job.project.path}',
                    namespace_path=namespace_path,
                    import_status=match.import_status if match else None,
                    outcome=outcome,
                )
            )
            log = self.logger.warning if outcome != ImportOutcome.COMPLETED else self.logger.info
            log(
                f'Project {namespace_path}/{job.project.path}: {outcome.value}'
                + (f' (import status: {match.import_status})' if match else ' (not found)')
            )

        counts = report.counts
        self.logger.info(
            f'Import check: {counts["completed"]} completed, '
            f'{counts["pending"]} pending, {counts["failed"]} failed'
        )
        return report
