from typing import Callable, Optional
import asyncio
import logging

from ..schemas.proctoring_schema import ViolationType
from .client_surface import ClientSurface
from .media_devices import MediaConstraints, MediaStream, VideoSink
from .session_state import SessionState
from .snapshot_service import SnapshotCapturer
from .violation_logger import ViolationLogger

logger = logging.getLogger(__name__)


class WebcamController:
    """Owns the camera stream of one attempt and its periodic snapshots."""

    def __init__(self, surface: ClientSurface, state: SessionState, violation_logger: ViolationLogger,
                 capturer: SnapshotCapturer, snapshot_interval_seconds: float,
                 is_active: Optional[Callable[[], bool]] = None,
                 constraints: MediaConstraints = MediaConstraints()):
        self.surface = surface
        self.state = state
        self.violation_logger = violation_logger
        self.capturer = capturer
        self.snapshot_interval_seconds = snapshot_interval_seconds
        self.is_active = is_active or (lambda: state.active)
        self.constraints = constraints
        self.error: Optional[str] = None
        self.sink: Optional[VideoSink] = None
        self._snapshot_task: Optional[asyncio.Task] = None

    @property
    def stream(self) -> Optional[MediaStream]:
        return self.state.stream

    async def acquire(self) -> Optional[MediaStream]:
        try:
            stream = await self.surface.media.get_user_media(self.constraints)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            self.error = f"Webcam access denied: {message}"
            logger.warning("Webcam unavailable for attempt %s: %s", self.violation_logger.attempt_id, message)
            await self.violation_logger.log(ViolationType.WEBCAM_ERROR, message)
            await self.surface.notify("error", "Webcam access is required for this exam. Please allow camera access.")
            return None

        self.state.stream = stream
        self.error = None
        if self.sink is not None:
            self.attach_sink(self.sink)
        return stream

    def attach_sink(self, sink: Optional[VideoSink]):
        self.sink = sink
        if sink is None or self.stream is None:
            return
        if sink.stream is not self.stream:
            sink.attach(self.stream)
        sink.play()

    async def capture_snapshot(self) -> Optional[str]:
        path = await self.capturer.capture(self.sink)
        if path:
            self.state.snapshot_count += 1
        return path

    def start_periodic(self):
        if self._snapshot_task is None and self.stream is not None:
            self._snapshot_task = asyncio.create_task(self._run_periodic())

    async def _run_periodic(self):
        while True:
            await asyncio.sleep(self.snapshot_interval_seconds)
            await self.snapshot_tick()

    async def snapshot_tick(self) -> Optional[str]:
        # cancellation can race a queued tick, so the guard lives here
        if not self.is_active() or self.stream is None:
            return None
        path = await self.capture_snapshot()
        if path:
            await self.violation_logger.log(ViolationType.PERIODIC_SNAPSHOT, "Periodic proctoring snapshot", path)
        return path

    def release(self):
        task, self._snapshot_task = self._snapshot_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        stream, self.state.stream = self.state.stream, None
        if stream is not None:
            for track in stream.get_tracks():
                try:
                    track.stop()
                except Exception:
                    logger.exception("Failed to stop %s track", track.kind)
        if self.sink is not None:
            self.sink.detach()
