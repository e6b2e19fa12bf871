"""GitLab API exceptions."""

from typing import Any, Optional

ALREADY_TAKEN_MARKERS = ('has already been taken', 'already exists', 'already taken')


class GitLabAPIError(Exception):
    """Base exception for GitLab API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Any = None,
    ):
        """Initialize GitLab API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response_data: Response data from API
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data

    @property
    def detail(self) -> str:
        """Server supplied error text, falling back to the exception message."""
        return describe_error(self.response_data) or str(self)

    @property
    def transient(self) -> bool:
        """Whether retrying the same call may succeed."""
        return False


class GitLabAuthenticationError(GitLabAPIError):
    """Authentication error with GitLab API."""

    pass


class GitLabRateLimitError(GitLabAPIError):
    """Rate limit exceeded error."""

    def __init__(self, message: str, retry_after: Optional[int] = None, **kwargs):
        """Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Server hint in seconds, informational only
            **kwargs: Additional arguments for base class
        """
        kwargs.setdefault('status_code', 429)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        return True


class GitLabServerError(GitLabAPIError):
    """Gateway or availability error (502, 503, 504)."""

    @property
    def transient(self) -> bool:
        return True


class GitLabNetworkError(GitLabAPIError):
    """Connection level failure before a response was received."""

    @property
    def transient(self) -> bool:
        return True


class GitLabNotFoundError(GitLabAPIError):
    """Resource not found error."""

    pass


class GitLabPermissionError(GitLabAPIError):
    """Permission denied error."""

    pass


class GitLabConflictError(GitLabAPIError):
    """Resource conflict error (409)."""

    pass


class GitLabValidationError(GitLabAPIError):
    """Validation error for API requests (400, 422)."""

    pass


class RetriesExhaustedError(GitLabAPIError):
    """A transient failure persisted through every allowed attempt."""

    def __init__(self, message: str, last_error: GitLabAPIError, attempts: int):
        super().__init__(
            message,
            status_code=last_error.status_code,
            response_data=last_error.response_data,
        )
        self.last_error = last_error
        self.attempts = attempts


class MalformedResponseError(GitLabAPIError):
    """Response body does not have the expected shape."""

    pass


def describe_error(data: Any) -> str:
    """Extract a readable message from a GitLab error payload.

    GitLab reports failures as ``{"message": ...}``, ``{"error": ...}`` or
    ``{"errors": ...}``; validation messages are dictionaries of field name to
    a list of problems, which are flattened into ``field: problem, problem``.
    """
    if data is None:
        return ''
    if isinstance(data, str):
        return data.strip()
    if isinstance(data, list):
        return '; '.join(filter(None, (describe_error(item) for item in data)))
    if not isinstance(data, dict):
        return str(data)

    for key in ('message', 'error', 'errors'):
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, dict):
            parts = []
            for field, problems in value.items():
                if isinstance(problems, list):
                    problems = ', '.join(str(p) for p in problems)
                parts.append(f'{field}: {problems}')
            return '; '.join(parts)
        return describe_error(value)

    return ''


def is_already_taken(error: GitLabAPIError) -> bool:
    """Check whether the destination rejected a create because it exists."""
    text = f'{error.detail} {error}'.lower()
    return any(marker in text for marker in ALREADY_TAKEN_MARKERS)
