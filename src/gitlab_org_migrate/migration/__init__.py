"""Migration engine and strategies."""

from .strategy import (
    MigrationStrategy,
    MigrationResult,
    MigrationContext,
    MigrationStatus,
    PhaseCounters,
    PhaseOutcome,
    PhaseResult,
    UserMigrationStrategy,
)
from .hierarchy import (
    GroupMigrationStrategy,
    MembershipMigrationStrategy,
    NamespaceMigrationStrategy,
)
from .project import MigrationJob, ProjectMigrationStrategy, ProjectState
from .orchestrator import MigrationOrchestrator, MigrationSummary
from .engine import MigrationEngine

__all__ = [
    'MigrationStrategy',
    'MigrationResult',
    'MigrationContext',
    'MigrationStatus',
    'PhaseCounters',
    'PhaseOutcome',
    'PhaseResult',
    'UserMigrationStrategy',
    'GroupMigrationStrategy',
    'MembershipMigrationStrategy',
    'NamespaceMigrationStrategy',
    'MigrationJob',
    'ProjectMigrationStrategy',
    'ProjectState',
    'MigrationOrchestrator',
    'MigrationSummary',
    'MigrationEngine',
]
