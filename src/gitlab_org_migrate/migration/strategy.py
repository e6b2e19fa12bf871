"""Migration strategy interfaces and the user migration strategy."""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Type

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from ..api.client import APIResponse, GitLabClient
from ..api.exceptions import GitLabAPIError, MalformedResponseError, is_already_taken
from ..api.pagination import PaginatedCollector
from ..config.config import MigrationConfig
from ..models.mapping import EntityKind, MappingConflictError
from ..models.user import User, UserCreate
from ..utils.workspace import RunWorkspace
from .errors import MigrationCancelledError, MigrationError
from .mapper import EntityMapper
from .pacing import Pacer


class MigrationStatus(str, Enum):
    """Migration status enumeration."""

    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class MigrationResult(BaseModel):
    """Result of a migration operation."""

    entity_type: str = Field(..., description='Type of entity migrated')
    entity_id: str = Field(..., description='ID of the entity')
    status: MigrationStatus = Field(..., description='Migration status')
    label: Optional[str] = Field(default=None, description='Human readable name')

    # Timing information
    started_at: datetime = Field(..., description='Migration start time')
    completed_at: Optional[datetime] = Field(
        default=None, description='Migration completion time'
    )

    destination_id: Optional[int] = Field(
        default=None, description='ID of the entity at the destination'
    )
    error_message: Optional[str] = Field(
        default=None, description='Error message if failed'
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description='Additional metadata'
    )

    @property
    def success(self) -> bool:
        return self.status != MigrationStatus.FAILED


class PhaseOutcome(str, Enum):
    """How a phase ended as a whole."""

    COMPLETED = 'completed'
    FAILED = 'failed'
    ABORTED = 'aborted'
    DISABLED = 'disabled'


class PhaseCounters(BaseModel):
    """Per-phase tallies; ``attempted == succeeded + skipped + failed``."""

    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, status: MigrationStatus) -> None:
        """Count one terminal entity outcome."""
        if status == MigrationStatus.COMPLETED:
            self.succeeded += 1
        elif status == MigrationStatus.SKIPPED:
            self.skipped += 1
        elif status == MigrationStatus.FAILED:
            self.failed += 1
        else:
            raise ValueError(f'Cannot count non-terminal status {status.value}')
        self.attempted += 1

    def merge(self, other: 'PhaseCounters') -> None:
        self.attempted += other.attempted
        self.succeeded += other.succeeded
        self.skipped += other.skipped
        self.failed += other.failed


class PhaseResult(BaseModel):
    """Outcome of one pipeline phase."""

    phase: str = Field(..., description='Phase name')
    outcome: PhaseOutcome = Field(default=PhaseOutcome.COMPLETED)
    counters: PhaseCounters = Field(default_factory=PhaseCounters)
    error: Optional[str] = Field(default=None, description='Phase level failure')
    results: List[MigrationResult] = Field(default_factory=list)

    def add(self, result: MigrationResult) -> None:
        self.results.append(result)
        self.counters.record(result.status)

    def extend(self, results: Iterable[MigrationResult]) -> None:
        for result in results:
            self.add(result)


class MigrationContext(BaseModel):
    """Context for migration operations."""

    source_client: GitLabClient = Field(..., description='Source GitLab client')
    destination_client: GitLabClient = Field(
        ..., description='Destination GitLab client'
    )
    source_collector: PaginatedCollector = Field(
        ..., description='Paged listings from the source'
    )
    destination_collector: PaginatedCollector = Field(
        ..., description='Paged listings from the destination'
    )
    mapper: EntityMapper = Field(..., description='Source to destination resolution')
    settings: MigrationConfig = Field(default_factory=MigrationConfig)
    workspace: RunWorkspace = Field(..., description='Per-run working directory')
    pacer: Pacer = Field(default_factory=Pacer, description='Cancellable pauses')

    class Config:
        """Pydantic configuration."""

        arbitrary_types_allowed = True


class MigrationStrategy(ABC):
    """Abstract base class for migration strategies.

    A strategy turns the records of one source listing into one
    ``PhaseResult``. Entities are processed one at a time; a failing entity
    is recorded and never stops the phase.
    """

    phase_name: str = ''
    entity_type: str = ''
    model: Type[BaseModel] = BaseModel

    def __init__(self, context: MigrationContext):
        """Initialize migration strategy.

        Args:
            context: Migration context with clients and settings
        """
        self.context = context
        self.logger = logger.bind(strategy=self.__class__.__name__)

    @abstractmethod
    async def migrate_entity(self, entity: Any) -> MigrationResult:
        """Migrate a single entity.

        Args:
            entity: Entity to migrate

        Returns:
            Migration result
        """
        pass

    def order(self, entities: List[Any]) -> List[Any]:
        """Order in which entities are processed."""
        return entities

    def describe(self, entity: Any) -> str:
        return str(getattr(entity, 'id', '?'))

    async def process(self, entity: Any) -> List[MigrationResult]:
        """Migrate an entity, producing one or more counted results."""
        return [await self.migrate_entity(entity)]

    async def run_phase(self, records: List[Dict[str, Any]]) -> PhaseResult:
        """Migrate every record of a source listing.

        Args:
            records: Raw listing records

        Returns:
            Phase result with counters
        """
        phase = PhaseResult(phase=self.phase_name)
        entities = []

        for record in records:
            entity = self.parse(record)
            if entity is None:
                phase.add(
                    self.create_result(
                        str(record.get('id', 'unknown')),
                        MigrationStatus.SKIPPED,
                        metadata={'reason': 'malformed_record'},
                    )
                )
                continue
            entities.append(entity)

        for entity in self.order(entities):
            try:
                self.context.pacer.check()
                phase.extend(await self.process(entity))
            except MigrationCancelledError:
                self.logger.warning(f'{self.phase_name} phase cancelled')
                phase.outcome = PhaseOutcome.ABORTED
                phase.error = 'cancelled'
                break
            except (GitLabAPIError, MappingConflictError, MigrationError, OSError) as e:
                phase.add(self._failure(entity, e))

        self.logger.info(
            f'{self.phase_name} phase: {phase.counters.succeeded} succeeded, '
            f'{phase.counters.skipped} skipped, {phase.counters.failed} failed '
            f'of {phase.counters.attempted}'
        )
        return phase

    def _failure(self, entity: Any, error: Exception) -> MigrationResult:
        message = error.detail if isinstance(error, GitLabAPIError) else str(error)
        self.logger.error(f'Failed to migrate {self.entity_type} {self.describe(entity)}: {message}')
        return self.create_result(
            str(entity.id),
            MigrationStatus.FAILED,
            label=self.describe(entity),
            error_message=message,
        )

    def parse(self, record: Dict[str, Any]) -> Optional[Any]:
        """Parse a raw record into the strategy's model, None if malformed."""
        try:
            return self.model(**record)
        except (ValidationError, TypeError) as e:
            self.logger.warning(
                f'Skipping malformed {self.entity_type} record '
                f'{record.get("id", "?") if isinstance(record, dict) else record!r}: {e}'
            )
            return None

    def create_result(
        self,
        entity_id: str,
        status: MigrationStatus,
        error_message: Optional[str] = None,
        **kwargs,
    ) -> MigrationResult:
        """Create a migration result.

        Args:
            entity_id: Entity ID
            status: Migration status
            error_message: Error message if failed
            **kwargs: Additional fields for the result

        Returns:
            Migration result
        """
        return MigrationResult(
            entity_type=self.entity_type,
            entity_id=entity_id,
            status=status,
            started_at=datetime.now(),
            completed_at=datetime.now()
            if status in [MigrationStatus.COMPLETED, MigrationStatus.FAILED]
            else None,
            error_message=error_message,
            **kwargs,
        )

    @staticmethod
    def _created_id(response: APIResponse) -> int:
        data = response.data
        if not isinstance(data, dict) or not isinstance(data.get('id'), int):
            raise MalformedResponseError(
                'Create response carries no entity ID',
                status_code=response.status_code,
                response_data=data,
            )
        return data['id']

    async def _resolve_after_taken(self, kind: EntityKind, entity: Any) -> Optional[int]:
        """Refresh the mapping after the destination reported a duplicate."""
        destination_id = await self.context.mapper.resolve(kind, entity)
        if destination_id is None:
            self.logger.warning(
                f'{self.entity_type} {self.describe(entity)} is reported as taken '
                f'but could not be found at the destination'
            )
        return destination_id


class UserMigrationStrategy(MigrationStrategy):
    """Strategy for migrating users."""

    phase_name = 'users'
    entity_type = 'user'
    model = User

    def describe(self, user: User) -> str:
        return user.username or f'#{user.id}'

    async def migrate_entity(self, user: User) -> MigrationResult:
        """Migrate a single user.

        Args:
            user: User to migrate

        Returns:
            Migration result
        """
        label = self.describe(user)

        if not user.username or not user.email:
            self.logger.warning(f'Skipping user {label}: username or email missing')
            return self.create_result(
                str(user.id),
                MigrationStatus.SKIPPED,
                label=label,
                metadata={'reason': 'missing_required_fields'},
            )

        existing_id = await self.context.mapper.resolve(EntityKind.USER, user)
        if existing_id is not None:
            self.logger.info(f'User {label} already exists in destination (ID {existing_id})')
            return self.create_result(
                str(user.id),
                MigrationStatus.SKIPPED,
                label=label,
                destination_id=existing_id,
                metadata={'reason': 'already_exists'},
            )

        if user.is_system_user:
            self.logger.info(f'Skipping system/bot user: {label}')
            return self.create_result(
                str(user.id),
                MigrationStatus.SKIPPED,
                label=label,
                metadata={'reason': 'system_or_bot_user'},
            )

        await self.context.pacer.wait(self.context.settings.create_delay)
        payload = UserCreate.from_user(user).dict(exclude_none=True)

        try:
            response = await self.context.destination_client.post_async(
                '/users', data=payload
            )
        except GitLabAPIError as e:
            if not is_already_taken(e):
                raise
            self.logger.warning(f'User {label} already taken at destination: {e.detail}')
            return self.create_result(
                str(user.id),
                MigrationStatus.SKIPPED,
                label=label,
                destination_id=await self._resolve_after_taken(EntityKind.USER, user),
                metadata={'reason': 'already_taken'},
            )

        destination_id = self._created_id(response)
        self.context.mapper.record(EntityKind.USER, user.id, destination_id)
        self.logger.success(f'Created user {label} -> ID {destination_id}')
        return self.create_result(
            str(user.id),
            MigrationStatus.COMPLETED,
            label=label,
            destination_id=destination_id,
        )
