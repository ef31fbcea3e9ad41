from datetime import datetime
from typing import Optional
import logging

from ..schemas.proctoring_schema import ViolationRecord, ViolationType
from .session_state import SessionState
from .store import DataStore

logger = logging.getLogger(__name__)

PROCTORING_LOG_TABLE = "exam_proctoring_logs"


class ViolationLogger:
    """Appends proctoring records for one attempt.

    A failed insert is logged and dropped; callers never see the error.
    """

    def __init__(self, store: DataStore, state: SessionState, attempt_id: Optional[str], student_id: Optional[str]):
        self.store = store
        self.state = state
        self.attempt_id = attempt_id
        self.student_id = student_id

    async def log(self, violation_type: ViolationType, description: str, snapshot_url: Optional[str] = None) -> Optional[ViolationRecord]:
        if not self.attempt_id or not self.student_id:
            return None

        record = ViolationRecord(
            violation_type=violation_type,
            description=description,
            snapshot_url=snapshot_url,
            created_at=datetime.utcnow(),
            attempt_id=self.attempt_id,
            student_id=self.student_id,
        )
        if violation_type != ViolationType.PERIODIC_SNAPSHOT:
            self.state.violations.append(f"{violation_type.value}: {description}")

        try:
            await self.store.create(PROCTORING_LOG_TABLE, record.to_row())
        except Exception:
            logger.exception("Failed to log %s violation for attempt %s", violation_type.value, self.attempt_id)
        return record
