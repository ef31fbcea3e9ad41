from edumanage.db import Base
from sqlalchemy import Column, Integer, Float, String, Boolean, DateTime, ForeignKey, Text, Uuid
import uuid
import enum
from datetime import datetime


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


class OnlineExamAttempt(Base):
    __tablename__ = "online_exam_attempts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    online_exam_id = Column(Uuid, ForeignKey("online_exams.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=False)

    started_at = Column(DateTime, default=datetime.utcnow)
    submitted_at = Column(DateTime, nullable=True)
    # stored as plain text so existing rows keep their values
    status = Column(String, default=AttemptStatus.IN_PROGRESS.value, nullable=False)
    total_marks_obtained = Column(Float, nullable=True)


class OnlineExamAnswer(Base):
    __tablename__ = "online_exam_answers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id = Column(Uuid, ForeignKey("online_exam_attempts.id", ondelete="CASCADE"), nullable=False)
    question_id = Column(Uuid, ForeignKey("question_bank.id"), nullable=False)
    student_answer = Column(Text, nullable=True)
    is_correct = Column(Boolean, nullable=True)
    marks_obtained = Column(Integer, nullable=True)
