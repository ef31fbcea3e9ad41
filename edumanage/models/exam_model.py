from edumanage.db import Base
from sqlalchemy import String


"""
Online exam tables
| Table | Notes |
| :--- | :--- |
| `online_exams` | exam window, duration and proctoring switches |
| `online_exam_questions` | junction with `question_bank`, carries `marks` and `question_order` |
| `question_bank` | question text, options and the authoritative `correct_answer` |
"""

from sqlalchemy import Column, Boolean, Integer, DateTime, ForeignKey, Text, JSON, Uuid
from sqlalchemy.orm import relationship
import uuid


class OnlineExam(Base):
    __tablename__ = "online_exams"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    class_id = Column(Uuid, nullable=True)
    subject_id = Column(Uuid, nullable=True)
    school_id = Column(Uuid, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)  # in minutes
    total_marks = Column(Integer, nullable=False, default=0)
    passing_marks = Column(Integer, nullable=True)
    show_result_immediately = Column(Boolean, default=False)
    proctoring_enabled = Column(Boolean, default=False)
    fullscreen_required = Column(Boolean, default=False)
    webcam_required = Column(Boolean, default=False)
    tab_switch_limit = Column(Integer, nullable=True)
    created_by = Column(Uuid, nullable=True)

    questions = relationship(
        "OnlineExamQuestion",
        order_by="OnlineExamQuestion.question_order",
        passive_deletes=True,
    )


class QuestionBank(Base):
    __tablename__ = "question_bank"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    question_text = Column(Text, nullable=False)
    question_type = Column(String, nullable=False, default="multiple_choice")
    options = Column(JSON, nullable=True)
    correct_answer = Column(String, nullable=False)
    marks = Column(Integer, default=1)
    difficulty = Column(String, nullable=True)
    subject_id = Column(Uuid, nullable=True)
    school_id = Column(Uuid, nullable=True)


class OnlineExamQuestion(Base):
    __tablename__ = "online_exam_questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    online_exam_id = Column(Uuid, ForeignKey("online_exams.id", ondelete="CASCADE"), nullable=False)
    question_id = Column(Uuid, ForeignKey("question_bank.id"), nullable=False)
    question_order = Column(Integer, nullable=True)
    marks = Column(Integer, nullable=False, default=1)
