"""Migration engine - main entry point for migration operations."""

from typing import Optional

from loguru import logger

from ..api.backoff import BackoffPolicy
from ..api.client import GitLabClientFactory
from ..api.pagination import PaginatedCollector
from ..config.config import Config
from ..models.mapping import IdMappingTable
from ..utils.logging import add_file_sink
from ..utils.workspace import RunWorkspace
from .mapper import EntityMapper
from .orchestrator import MigrationOrchestrator, MigrationSummary
from .pacing import Pacer
from .strategy import MigrationContext


class MigrationEngine:
    """Main migration engine that coordinates the entire migration process."""

    def __init__(self, config: Config, workspace: Optional[RunWorkspace] = None):
        """Initialize migration engine.

        Args:
            config: Migration configuration
            workspace: Run directory (a new timestamped one by default)
        """
        self.config = config
        self.logger = logger.bind(component='MigrationEngine')
        settings = config.migration

        backoff = BackoffPolicy(
            max_attempts=settings.retry_attempts,
            initial_delay=settings.retry_initial_delay,
        )

        # Initialize GitLab clients
        self.source_client = GitLabClientFactory.create_client(
            config.source, backoff=backoff, transfer_timeout=settings.transfer_timeout
        )
        self.destination_client = GitLabClientFactory.create_client(
            config.destination,
            backoff=backoff,
            transfer_timeout=settings.transfer_timeout,
        )

        self.workspace = workspace or RunWorkspace(settings.work_dir)
        self.mapping = IdMappingTable()

        # Create migration context
        self.context = MigrationContext(
            source_client=self.source_client,
            destination_client=self.destination_client,
            source_collector=PaginatedCollector(self.source_client, settings.page_delay),
            destination_collector=PaginatedCollector(
                self.destination_client, settings.page_delay
            ),
            mapper=EntityMapper(self.destination_client, self.mapping),
            settings=settings,
            workspace=self.workspace,
            pacer=Pacer(),
        )

        self.orchestrator = MigrationOrchestrator(self.context)

    async def migrate(self) -> MigrationSummary:
        """Execute the migration.

        Returns:
            Migration summary

        Raises:
            PreflightError: If the instances or tokens are not usable
        """
        self.workspace.create()
        sink_id = add_file_sink(self.workspace.log_file)

        self.logger.info('Starting GitLab migration')
        self.logger.info(f'Source: {self.config.source.url}')
        self.logger.info(f'Destination: {self.config.destination.url}')
        self.logger.info(f'Workspace: {self.workspace.run_dir}')

        try:
            summary = await self.orchestrator.execute_migration()
            self.logger.info('Migration run completed')
            return summary
        except Exception as e:
            self.logger.error(f'Migration failed: {e}')
            raise
        finally:
            # Clean up clients
            self.source_client.close()
            self.destination_client.close()
            logger.remove(sink_id)
