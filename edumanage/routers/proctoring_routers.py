from fastapi import APIRouter, Depends, HTTPException, status
from typing import List, Optional
from datetime import datetime
import logging

from ..dependencies import current_staff, get_store, get_storage
from ..schemas.attempt_schema import ExtensionCreate, ExtensionRead
from ..schemas.proctoring_schema import ProctoringLogRead
from ..services.exam_service import load_exam
from ..services.report_service import exam_attempts, proctoring_logs, summarize_violations

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Proctoring"])


async def _attempt_or_404(store, attempt_id: str) -> dict:
    rows = await store.read("online_exam_attempts", {'id': attempt_id})
    if not rows:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attempt not found")
    return rows[0]


async def _exam_or_404(store, exam_id: str) -> dict:
    exam = await load_exam(store, exam_id)
    if not exam:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam not found")
    return exam


@router.post("/attempts/{attempt_id}/extensions", response_model=ExtensionRead)
async def grant_extension(attempt_id: str, payload: ExtensionCreate, user = Depends(current_staff), store = Depends(get_store)):
    attempt = await _attempt_or_404(store, attempt_id)
    if attempt.get('status') != "in_progress":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Attempt is not in progress")

    record = {
        'attempt_id': attempt_id,
        'extension_minutes': payload.extension_minutes,
        'reason': payload.reason or None,
        'extended_by': str(user.id),
        'created_at': datetime.utcnow(),
    }
    extension_id = await store.create("exam_time_extensions", record)
    logger.info("Granted %d minutes to attempt %s", payload.extension_minutes, attempt_id)
    return {**record, 'id': extension_id}


@router.get("/attempts/{attempt_id}/extensions", response_model=List[ExtensionRead])
async def list_extensions(attempt_id: str, user = Depends(current_staff), store = Depends(get_store)):
    await _attempt_or_404(store, attempt_id)
    rows = await store.read("exam_time_extensions", {'attempt_id': attempt_id}, order_by="created_at")
    return list(reversed(rows))


@router.get("/online-exams/{exam_id}/active-attempts")
async def active_attempts(exam_id: str, user = Depends(current_staff), store = Depends(get_store)):
    await _exam_or_404(store, exam_id)
    attempts = await exam_attempts(store, exam_id, status="in_progress")
    if not attempts:
        return []
    extensions = await store.read("exam_time_extensions", {'attempt_id': [a['id'] for a in attempts]})

    out = []
    for a in attempts:
        granted = [e for e in extensions if str(e['attempt_id']) == str(a['id'])]
        out.append({
            'id': a['id'],
            'student_id': a['student_id'],
            'started_at': a.get('started_at'),
            'extensions': len(granted),
            'total_extension_minutes': sum(int(e.get('extension_minutes') or 0) for e in granted),
        })
    return out


@router.get("/online-exams/{exam_id}/proctoring-logs", response_model=List[ProctoringLogRead])
async def list_proctoring_logs(exam_id: str, student_id: Optional[str] = None, user = Depends(current_staff),
                               store = Depends(get_store), storage = Depends(get_storage)):
    await _exam_or_404(store, exam_id)
    return await proctoring_logs(store, storage, exam_id, student_id=student_id)


@router.get("/online-exams/{exam_id}/proctoring-summary")
async def proctoring_summary(exam_id: str, user = Depends(current_staff), store = Depends(get_store),
                             storage = Depends(get_storage)):
    await _exam_or_404(store, exam_id)
    attempts = await exam_attempts(store, exam_id)
    logs = await proctoring_logs(store, storage, exam_id)
    return summarize_violations(logs, attempts)
