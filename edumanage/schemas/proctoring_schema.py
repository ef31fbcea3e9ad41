from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
import enum

from ..config import DEFAULT_SNAPSHOT_INTERVAL_SECONDS


class ViolationType(str, enum.Enum):
    """Vocabulary stored in exam_proctoring_logs.violation_type."""
    FULLSCREEN_EXIT = "fullscreen_exit"
    TAB_SWITCH = "tab_switch"
    WINDOW_BLUR = "window_blur"
    RIGHT_CLICK = "right_click"
    COPY_ATTEMPT = "copy_attempt"
    DEV_TOOLS = "dev_tools"
    WEBCAM_ERROR = "webcam_error"
    PERIODIC_SNAPSHOT = "periodic_snapshot"


class ProctoringConfig(BaseModel):
    enabled: bool = False
    fullscreen_required: bool = False
    tab_switch_limit: int = Field(3, ge=0)
    webcam_required: bool = False
    snapshot_interval_seconds: int = Field(DEFAULT_SNAPSHOT_INTERVAL_SECONDS, gt=0)
    attempt_id: Optional[str] = None
    student_id: Optional[str] = None
    user_id: Optional[str] = None

    class Config:
        frozen = True


class ViolationRecord(BaseModel):
    violation_type: ViolationType
    description: str
    snapshot_url: Optional[str] = None
    created_at: datetime
    attempt_id: str
    student_id: str

    def to_row(self) -> Dict[str, Any]:
        return {
            'attempt_id': self.attempt_id,
            'student_id': self.student_id,
            'violation_type': self.violation_type.value,
            'description': self.description,
            'snapshot_url': self.snapshot_url,
            'created_at': self.created_at,
        }


class ProctoringLogRead(BaseModel):
    id: str
    attempt_id: Optional[str]
    student_id: Optional[str]
    violation_type: str
    description: Optional[str]
    snapshot_url: Optional[str]
    snapshot_public_url: Optional[str] = None
    created_at: Optional[datetime]


class ClientEventMessage(BaseModel):
    """A browser event forwarded over the proctoring WebSocket.

    ``type`` uses the DOM event names (visibilitychange, blur, contextmenu,
    keydown, fullscreenchange, selectstart, dragstart) plus the camera answers
    camera_ready and camera_error.
    """
    type: str
    hidden: Optional[bool] = None
    fullscreen: Optional[bool] = None
    key: Optional[str] = None
    ctrl_key: bool = False
    meta_key: bool = False
    shift_key: bool = False
    message: Optional[str] = None
