from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
import enum


class MonitorPhase(str, enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    ACTIVE = "active"
    TORN_DOWN = "torn_down"


class ExamPhase(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


@dataclass
class SessionState:
    """Everything one attempt keeps in memory while it runs.

    Owned by the ExamSessionController; the monitor, the webcam controller and
    the fullscreen controller each write only their own fields.
    """
    monitor_phase: MonitorPhase = MonitorPhase.IDLE
    exam_phase: ExamPhase = ExamPhase.NOT_STARTED

    is_fullscreen: bool = False
    tab_switch_count: int = 0
    # "type: description" lines for the UI, not the persisted log
    violations: List[str] = field(default_factory=list)
    stream: Optional[Any] = None
    snapshot_count: int = 0

    remaining_seconds: int = 0
    applied_extension_minutes: int = 0

    current_question: int = 0
    answers: Dict[str, str] = field(default_factory=dict)
    flagged: Set[str] = field(default_factory=set)

    @property
    def monitoring(self) -> bool:
        return self.monitor_phase in (MonitorPhase.ARMED, MonitorPhase.ACTIVE)

    @property
    def active(self) -> bool:
        return self.monitor_phase == MonitorPhase.ACTIVE

    @property
    def in_progress(self) -> bool:
        return self.exam_phase == ExamPhase.IN_PROGRESS
