from typing import Callable, Optional
import asyncio
import logging
import time

import cv2

from .media_devices import VideoSink
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

FALLBACK_SIZE = (640, 480)
JPEG_QUALITY = 70


def snapshot_path(user_id: str, student_id: str, attempt_id: str, epoch_ms: int) -> str:
    # existing evidence rows reference this layout
    return f"{user_id}/{student_id}/{attempt_id}/{epoch_ms}.jpg"


class SnapshotCapturer:
    """Grabs one still from a video sink and uploads it as a JPEG."""

    def __init__(self, storage: ObjectStorage, bucket: str, user_id: str, student_id: str, attempt_id: str,
                 clock: Callable[[], float] = time.time):
        self.storage = storage
        self.bucket = bucket
        self.user_id = user_id
        self.student_id = student_id
        self.attempt_id = attempt_id
        self.clock = clock

    def _encode(self, sink: VideoSink) -> Optional[bytes]:
        frame = sink.current_frame()
        if frame is None:
            return None
        width, height = sink.natural_size
        if not width or not height:
            width, height = FALLBACK_SIZE
        if frame.shape[1] != width or frame.shape[0] != height:
            frame = cv2.resize(frame, (width, height))
        ok, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, JPEG_QUALITY])
        if not ok:
            return None
        return buffer.tobytes()

    async def capture(self, sink: Optional[VideoSink]) -> Optional[str]:
        if sink is None:
            logger.debug("No video sink attached; skipping snapshot")
            return None
        try:
            data = await asyncio.to_thread(self._encode, sink)
            if data is None:
                logger.warning("Could not grab a frame for attempt %s", self.attempt_id)
                return None
            path = snapshot_path(self.user_id, self.student_id, self.attempt_id, int(self.clock() * 1000))
            return await self.storage.upload(self.bucket, path, data, "image/jpeg")
        except Exception:
            logger.exception("Snapshot capture failed for attempt %s", self.attempt_id)
            return None
