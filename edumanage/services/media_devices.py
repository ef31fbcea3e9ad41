"""Camera access: stream acquisition, tracks and the preview sink."""
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
import asyncio
import logging
import threading

import cv2
import numpy as np

from ..config import CAMERA_START_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class MediaPermissionError(Exception):
    """Camera access was denied or no camera is available."""


@dataclass(frozen=True)
class MediaConstraints:
    facing_mode: str = "user"
    width: int = 640
    height: int = 480
    audio: bool = False


class MediaTrack(ABC):
    kind = "video"

    @abstractmethod
    def stop(self):
        ...

    @property
    @abstractmethod
    def live(self) -> bool:
        ...


class MediaStream(ABC):

    @abstractmethod
    def get_tracks(self) -> List[MediaTrack]:
        ...

    @abstractmethod
    def read_frame(self) -> Optional[np.ndarray]:
        """Latest BGR frame, or None when nothing can be read."""

    @property
    def dimensions(self) -> Tuple[int, int]:
        return (0, 0)


class MediaDevices(ABC):

    @abstractmethod
    async def get_user_media(self, constraints: MediaConstraints) -> MediaStream:
        """Open a stream matching ``constraints``; raise MediaPermissionError on failure."""


class VideoSink:
    """Where a stream is played for preview and where snapshots are taken from."""

    def __init__(self):
        self.stream: Optional[MediaStream] = None
        self.playing = False

    def attach(self, stream: Optional[MediaStream]):
        self.stream = stream
        self.playing = False

    def play(self):
        if self.stream is not None:
            self.playing = True

    def detach(self):
        self.stream = None
        self.playing = False

    @property
    def natural_size(self) -> Tuple[int, int]:
        if self.stream is None:
            return (0, 0)
        return self.stream.dimensions

    def current_frame(self) -> Optional[np.ndarray]:
        if self.stream is None or not self.playing:
            return None
        return self.stream.read_frame()


class OpenCVVideoTrack(MediaTrack):

    def __init__(self, capture: "cv2.VideoCapture", lock: threading.Lock):
        self.capture = capture
        self.lock = lock

    @property
    def live(self) -> bool:
        return self.capture.isOpened()

    def stop(self):
        # a snapshot may be reading on a worker thread
        with self.lock:
            if self.capture.isOpened():
                self.capture.release()


class OpenCVMediaStream(MediaStream):

    def __init__(self, capture: "cv2.VideoCapture"):
        self.capture = capture
        self.lock = threading.Lock()
        self.track = OpenCVVideoTrack(capture, self.lock)

    def get_tracks(self) -> List[MediaTrack]:
        return [self.track]

    def read_frame(self) -> Optional[np.ndarray]:
        with self.lock:
            if not self.capture.isOpened():
                return None
            ok, frame = self.capture.read()
        return frame if ok else None

    @property
    def dimensions(self) -> Tuple[int, int]:
        with self.lock:
            if not self.capture.isOpened():
                return (0, 0)
            return (int(self.capture.get(cv2.CAP_PROP_FRAME_WIDTH)), int(self.capture.get(cv2.CAP_PROP_FRAME_HEIGHT)))


class OpenCVMediaDevices(MediaDevices):
    """Camera attached to this host, for a single exam station running the service."""

    def __init__(self, camera_index: int = 0):
        self.camera_index = camera_index

    def _open(self, constraints: MediaConstraints) -> "cv2.VideoCapture":
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            raise MediaPermissionError("Requested device not found")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        return cap

    async def get_user_media(self, constraints: MediaConstraints) -> MediaStream:
        if constraints.audio:
            raise MediaPermissionError("Audio capture is not supported")
        cap = await asyncio.to_thread(self._open, constraints)
        logger.info("Camera %s opened", self.camera_index)
        return OpenCVMediaStream(cap)


def decode_jpeg(data: bytes) -> Optional[np.ndarray]:
    if not data:
        return None
    return cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)


class BrowserVideoTrack(MediaTrack):

    def __init__(self, on_stop: Optional[Callable[[], None]] = None):
        self._live = True
        self._on_stop = on_stop

    @property
    def live(self) -> bool:
        return self._live

    def stop(self):
        if not self._live:
            return
        self._live = False
        if self._on_stop is not None:
            self._on_stop()


class BrowserFrameStream(MediaStream):
    """Holds the latest frame the student's browser pushed."""

    def __init__(self, constraints: MediaConstraints, on_stop: Optional[Callable[[], None]] = None):
        self.track = BrowserVideoTrack(on_stop)
        self._frame: Optional[np.ndarray] = None
        self._size = (constraints.width, constraints.height)

    def get_tracks(self) -> List[MediaTrack]:
        return [self.track]

    def push_frame(self, frame: np.ndarray):
        if not self.track.live:
            return
        self._frame = frame
        self._size = (int(frame.shape[1]), int(frame.shape[0]))

    def read_frame(self) -> Optional[np.ndarray]:
        if not self.track.live:
            return None
        return self._frame

    @property
    def dimensions(self) -> Tuple[int, int]:
        return self._size


class BrowserMediaDevices(MediaDevices):
    """The student's own camera, driven over the attempt's socket.

    ``get_user_media`` asks the browser to open its camera and waits for a
    ``camera_ready`` or ``camera_error`` answer. Frames then arrive as JPEG
    bytes through ``push_jpeg``.
    """

    def __init__(self, send: Callable[[Dict[str, Any]], Awaitable[None]],
                 timeout_seconds: float = CAMERA_START_TIMEOUT_SECONDS):
        self.send = send
        self.timeout_seconds = timeout_seconds
        self.stream: Optional[BrowserFrameStream] = None
        self._answer: Optional[asyncio.Future] = None
        self._pending = set()

    async def get_user_media(self, constraints: MediaConstraints) -> MediaStream:
        if constraints.audio:
            raise MediaPermissionError("Audio capture is not supported")
        self._answer = asyncio.get_running_loop().create_future()
        try:
            await self.send({'type': 'start_camera', 'constraints': asdict(constraints)})
            await asyncio.wait_for(self._answer, self.timeout_seconds)
        except asyncio.TimeoutError:
            raise MediaPermissionError("Camera did not start in time")
        finally:
            self._answer = None
        self.stream = BrowserFrameStream(constraints, on_stop=self._stopped)
        logger.info("Browser camera started")
        return self.stream

    def camera_ready(self):
        if self._answer is not None and not self._answer.done():
            self._answer.set_result(None)

    def camera_error(self, message: Optional[str]):
        if self._answer is not None and not self._answer.done():
            self._answer.set_exception(MediaPermissionError(message or "Permission denied"))

    async def push_jpeg(self, data: bytes) -> bool:
        stream = self.stream
        if stream is None or not stream.track.live:
            return False
        frame = await asyncio.to_thread(decode_jpeg, data)
        if frame is None:
            logger.debug("Dropping undecodable camera frame (%d bytes)", len(data))
            return False
        stream.push_frame(frame)
        return True

    def _stopped(self):
        self.stream = None
        task = asyncio.ensure_future(self.send({'type': 'stop_camera'}))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
