from typing import Any, Dict, List, Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from ..models.attempt_model import OnlineExamAttempt, OnlineExamAnswer
from ..models.exam_model import OnlineExam, OnlineExamQuestion, QuestionBank
from ..models.grade_scale_model import GradeScale
from ..models.proctoring_model import ExamProctoringLog, ExamTimeExtension
from ..models.user_model import Student
from .store import DataStore, StoreError

logger = logging.getLogger(__name__)


TABLES = {
    "online_exams": OnlineExam,
    "online_exam_questions": OnlineExamQuestion,
    "question_bank": QuestionBank,
    "online_exam_attempts": OnlineExamAttempt,
    "online_exam_answers": OnlineExamAnswer,
    "exam_proctoring_logs": ExamProctoringLog,
    "exam_time_extensions": ExamTimeExtension,
    "grade_scales": GradeScale,
    "students": Student,
}


def _coerce(model, column: str, value):
    # ids arrive as strings from the API and the session controller
    col = getattr(model, column).property.columns[0]
    if isinstance(value, str) and col.type.python_type is UUID:
        try:
            return UUID(value)
        except ValueError:
            raise StoreError(f"Malformed id for {model.__tablename__}.{column}: {value!r}")
    return value


def _to_dict(obj) -> Dict[str, Any]:
    out = {}
    for col in obj.__table__.columns:
        value = getattr(obj, col.key)
        out[col.key] = str(value) if isinstance(value, UUID) else value
    return out


class SQLAlchemyDataStore(DataStore):
    """DataStore over async SQLAlchemy sessions; one short session per call."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise StoreError(f"Unknown table: {table}")

    async def create(self, table: str, record: Dict[str, Any]) -> str:
        model = self._model(table)
        values = {k: _coerce(model, k, v) for k, v in record.items()}
        try:
            async with self.session_maker() as session:
                obj = model(**values)
                session.add(obj)
                await session.commit()
                await session.refresh(obj)
                return str(obj.id)
        except SQLAlchemyError as e:
            logger.exception("Insert into %s failed", table)
            raise StoreError(str(e)) from e

    async def read(self, table: str, filters: Optional[Dict[str, Any]] = None, order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        model = self._model(table)
        stmt = select(model)
        try:
            for column, value in (filters or {}).items():
                attr = getattr(model, column)
                if isinstance(value, (list, tuple, set)):
                    stmt = stmt.where(attr.in_([_coerce(model, column, v) for v in value]))
                else:
                    stmt = stmt.where(attr == _coerce(model, column, value))
        except StoreError as e:
            # a malformed id cannot match any row
            logger.debug("No match in %s: %s", table, e)
            return []
        if order_by:
            stmt = stmt.order_by(getattr(model, order_by))
        try:
            async with self.session_maker() as session:
                res = await session.execute(stmt)
                return [_to_dict(row) for row in res.scalars().all()]
        except SQLAlchemyError as e:
            logger.exception("Read from %s failed", table)
            raise StoreError(str(e)) from e

    async def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> None:
        model = self._model(table)
        try:
            async with self.session_maker() as session:
                obj = await session.get(model, _coerce(model, "id", record_id))
                if obj is None:
                    raise StoreError(f"{table} record {record_id} not found")
                for k, v in patch.items():
                    setattr(obj, k, _coerce(model, k, v))
                await session.commit()
        except SQLAlchemyError as e:
            logger.exception("Update of %s %s failed", table, record_id)
            raise StoreError(str(e)) from e
