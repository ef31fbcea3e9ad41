from edumanage.db import Base
from sqlalchemy import Column, Float, String, DateTime, Uuid
import uuid
from datetime import datetime


class GradeScale(Base):
    # one band of a school's grading scale, e.g. 80-89 -> "B"
    __tablename__ = "grade_scales"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    grade = Column(String, nullable=False)
    grade_point = Column(Float, nullable=True)
    min_score = Column(Float, nullable=False)
    max_score = Column(Float, nullable=False)
    school_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
