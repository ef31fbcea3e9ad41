from edumanage.db import Base
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Uuid
import uuid
from datetime import datetime


class ExamProctoringLog(Base):
    # append-only; one row per violation or periodic snapshot
    __tablename__ = "exam_proctoring_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id = Column(Uuid, ForeignKey("online_exam_attempts.id", ondelete="CASCADE"), nullable=True)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=True)
    violation_type = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    snapshot_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class ExamTimeExtension(Base):
    __tablename__ = "exam_time_extensions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id = Column(Uuid, ForeignKey("online_exam_attempts.id", ondelete="CASCADE"), nullable=False)
    extension_minutes = Column(Integer, nullable=False, default=10)
    reason = Column(Text, nullable=True)
    extended_by = Column(Uuid, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
