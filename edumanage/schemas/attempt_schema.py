from pydantic import BaseModel, Field, validator
from typing import Optional, Dict, List, Any
from datetime import datetime
from uuid import UUID


class OnlineExamRead(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    total_marks: int
    show_result_immediately: bool = False
    proctoring_enabled: bool = False
    # status label for the student list: Completed / Upcoming / Available / Expired
    availability: Optional[str] = None
    attempt_status: Optional[str] = None
    total_marks_obtained: Optional[float] = None

    class Config:
        from_attributes = True


class AttemptStartResponse(BaseModel):
    attempt_id: str
    exam_id: str
    remaining_seconds: int
    proctoring: Dict[str, Any]
    questions: List[Dict[str, Any]]


class AnswerPayload(BaseModel):
    answers: Dict[str, str]


class NavigatePayload(BaseModel):
    # either an absolute index or a relative step
    index: Optional[int] = None
    step: Optional[int] = None

    @validator("step")
    def step_is_unit(cls, v):
        if v is not None and v not in (-1, 1):
            raise ValueError("step must be -1 or 1")
        return v


class FlagPayload(BaseModel):
    question_id: str


class AttemptState(BaseModel):
    attempt_id: Optional[str]
    phase: str
    monitor_phase: str
    current_question: int
    answers: Dict[str, str]
    flagged: List[str]
    remaining_seconds: int
    applied_extension_minutes: int
    tab_switch_count: int
    is_fullscreen: bool
    snapshot_count: int
    violations: List[str]


class SubmissionResult(BaseModel):
    attempt_id: str
    reason: str
    obtained: float
    total: float
    percentage: float
    grade: Optional[str] = None
    question_marks: Dict[str, float] = {}
    submitted_at: datetime


class ExtensionCreate(BaseModel):
    extension_minutes: int = Field(10, gt=0, le=120)
    reason: Optional[str] = None


class ExtensionRead(BaseModel):
    id: str
    attempt_id: str
    extension_minutes: int
    reason: Optional[str] = None
    extended_by: Optional[str] = None
    created_at: Optional[datetime] = None
