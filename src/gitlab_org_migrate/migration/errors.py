"""Errors raised by the migration pipeline."""

from ..models.mapping import MappingConflictError


class MigrationError(Exception):
    """Base exception for pipeline level failures."""

    pass


class PreflightError(MigrationError):
    """A precondition of the run does not hold; nothing was changed."""

    pass


class MigrationCancelledError(MigrationError):
    """The run was cancelled while work was outstanding."""

    pass


class ProjectPermissionError(MigrationError):
    """The destination token cannot create projects."""

    pass


class ExportFailedError(MigrationError):
    """The source instance reported a failed project export."""

    pass


class ExportTimeoutError(MigrationError):
    """A project export did not finish within the polling budget."""

    def __init__(self, project_id: int, polls: int):
        super().__init__(
            f'Export of project {project_id} not finished after {polls} polls'
        )
        self.project_id = project_id
        self.polls = polls


__all__ = [
    'MigrationError',
    'PreflightError',
    'MigrationCancelledError',
    'ExportFailedError',
    'ExportTimeoutError',
    'ProjectPermissionError',
    'MappingConflictError',
]
