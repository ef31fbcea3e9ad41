from typing import Any, Callable, Optional
import asyncio
import inspect
import logging

from ..config import EXTENSION_POLL_SECONDS
from .session_state import SessionState
from .store import DataStore

logger = logging.getLogger(__name__)

EXTENSION_TABLE = "exam_time_extensions"


class TimeExtensionPoller:
    """Picks up extra time granted to an attempt while it is running.

    The delta is always taken against the minutes already applied, so polling
    again without a new grant changes nothing.
    """

    def __init__(self, store: DataStore, attempt_id: str, state: SessionState,
                 on_extension: Callable[[int], Any], interval_seconds: float = EXTENSION_POLL_SECONDS):
        self.store = store
        self.attempt_id = attempt_id
        self.state = state
        self.on_extension = on_extension
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def fetch_total_minutes(self) -> int:
        rows = await self.store.read(EXTENSION_TABLE, {'attempt_id': self.attempt_id})
        return sum(int(r.get('extension_minutes') or 0) for r in rows)

    async def poll_once(self) -> int:
        if not self.state.in_progress:
            return 0
        try:
            total = await self.fetch_total_minutes()
        except Exception as e:
            logger.warning("Could not fetch time extensions for attempt %s: %s", self.attempt_id, e)
            return 0
        # the session may have ended while the read was in flight
        if not self.state.in_progress:
            return 0

        delta = total - self.state.applied_extension_minutes
        if delta <= 0:
            return 0
        result = self.on_extension(delta)
        if inspect.isawaitable(result):
            await result
        return delta

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def stop(self):
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.poll_once()
