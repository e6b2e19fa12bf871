"""Retry schedule for GitLab API calls."""

from typing import Iterator


class BackoffPolicy:
    """Exponential backoff: wait ``initial_delay`` and double after every failure."""

    def __init__(self, max_attempts: int = 3, initial_delay: float = 1.0):
        """Initialize backoff policy.

        Args:
            max_attempts: Attempts allowed per logical call, including the first
            initial_delay: Seconds to wait after the first failed attempt
        """
        if max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')
        if initial_delay < 0:
            raise ValueError('initial_delay must not be negative')

        self.max_attempts = max_attempts
        self.initial_delay = initial_delay

    def delay_for(self, attempt: int) -> float:
        """Get the wait before the attempt following ``attempt``.

        Args:
            attempt: 1-based number of the attempt that just failed

        Returns:
            Seconds to wait
        """
        return self.initial_delay * (2 ** (attempt - 1))

    def delays(self) -> Iterator[float]:
        """Yield the waits between consecutive attempts."""
        for attempt in range(1, self.max_attempts):
            yield self.delay_for(attempt)

    @property
    def max_total_delay(self) -> float:
        """Upper bound of the cumulative wait for one logical call."""
        return self.initial_delay * (2**self.max_attempts - 1)

    def __repr__(self) -> str:
        return (
            f'BackoffPolicy(max_attempts={self.max_attempts}, '
            f'initial_delay={self.initial_delay})'
        )
