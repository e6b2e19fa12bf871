"""Cancellable pauses between remote calls."""

import asyncio
from typing import Optional

from .errors import MigrationCancelledError


class Pacer:
    """Sleep helper bound to the run's cancellation event."""

    def __init__(self, cancel_event: Optional[asyncio.Event] = None):
        self.cancel_event = cancel_event or asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check(self) -> None:
        """Raise if the run has been cancelled."""
        if self.cancel_event.is_set():
            raise MigrationCancelledError('Migration run was cancelled')

    async def wait(self, seconds: float) -> None:
        """Pause for ``seconds`` unless the run is cancelled first.

        Raises:
            MigrationCancelledError: If cancellation happens before or during the pause
        """
        self.check()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.check()
