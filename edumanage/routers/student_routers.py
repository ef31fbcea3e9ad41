from fastapi import APIRouter, Depends, HTTPException, status
from typing import List
import logging

from ..dependencies import current_student, get_store, get_storage, get_media_devices
from ..schemas.attempt_schema import (
    OnlineExamRead, AttemptStartResponse, AnswerPayload, NavigatePayload, FlagPayload, AttemptState,
)
from ..services.client_surface import WebSocketSurface
from ..services.exam_service import load_exam, load_exam_questions, exam_availability, _sanitize_question
from ..services.session_service import ExamSessionController, sessions
from ..services.store import StoreError

logger = logging.getLogger(__name__)

router = APIRouter()


def _owned_session(attempt_id: str, student: dict) -> ExamSessionController:
    controller = sessions.get(attempt_id)
    if not controller or controller.student_id != str(student['id']):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attempt not found")
    return controller


def _start_response(controller: ExamSessionController) -> dict:
    config = controller.config
    return {
        'attempt_id': controller.attempt_id,
        'exam_id': str(controller.exam['id']),
        'remaining_seconds': controller.state.remaining_seconds,
        'proctoring': config.model_dump(include={'enabled', 'fullscreen_required', 'tab_switch_limit', 'webcam_required'}),
        'questions': [_sanitize_question(q) for q in controller.questions],
    }


@router.get("/student/online-exams", response_model=List[OnlineExamRead])
async def list_online_exams(student = Depends(current_student), store = Depends(get_store)):
    if not student.get('class_id'):
        return []
    exams = await store.read("online_exams", {'class_id': student['class_id']}, order_by="start_time")
    attempts = await store.read("online_exam_attempts", {'student_id': student['id']})
    by_exam = {str(a['online_exam_id']): a for a in attempts}

    out = []
    for ex in reversed(exams):
        attempt = by_exam.get(str(ex['id']))
        label, _ = exam_availability(ex, attempt)
        out.append({
            **ex,
            'availability': label,
            'attempt_status': attempt.get('status') if attempt else None,
            'total_marks_obtained': attempt.get('total_marks_obtained') if attempt else None,
        })
    return out


@router.post("/online-exams/{exam_id}/start", response_model=AttemptStartResponse)
async def start_online_exam(exam_id: str, student = Depends(current_student), store = Depends(get_store),
                            storage = Depends(get_storage), media = Depends(get_media_devices)):
    exam = await load_exam(store, exam_id)
    if not exam:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam not available")

    existing = await store.read("online_exam_attempts", {'online_exam_id': exam_id, 'student_id': student['id']})
    if any(a.get('status') == "submitted" for a in existing):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You have already submitted this exam")
    resume_from = None
    if existing:
        # the live attempt of this process keeps its timers
        live = sessions.find(exam_id, student['id'])
        if live:
            return _start_response(live)
        # its controller did not survive a restart; pick it up where the saved state left it
        resume_from = existing[0]
    else:
        label, can_take = exam_availability(exam, None)
        if not can_take:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Exam is {label.lower()}")

    questions = await load_exam_questions(store, exam_id)
    if not questions:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No questions available for this exam")

    controller = ExamSessionController(store, storage, WebSocketSurface(media), exam, questions,
                                       student_id=student['id'], user_id=student['user_id'], resume_from=resume_from)
    try:
        await controller.start()
    except StoreError as e:
        logger.exception("Could not start exam_id=%s student_id=%s: %s", exam_id, student['id'], e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to start exam")
    sessions.add(controller)
    return _start_response(controller)


@router.get("/attempts/{attempt_id}", response_model=AttemptState)
async def get_attempt_state(attempt_id: str, student = Depends(current_student)):
    return _owned_session(attempt_id, student).snapshot()


@router.put("/attempts/{attempt_id}/answers", response_model=AttemptState)
async def save_answers(attempt_id: str, payload: AnswerPayload, student = Depends(current_student)):
    controller = _owned_session(attempt_id, student)
    try:
        for question_id, answer in payload.answers.items():
            if not controller.record_answer(question_id, answer):
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Attempt is no longer in progress")
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    await controller.save_answers()
    return controller.snapshot()


@router.post("/attempts/{attempt_id}/navigate", response_model=AttemptState)
async def navigate(attempt_id: str, payload: NavigatePayload, student = Depends(current_student)):
    controller = _owned_session(attempt_id, student)
    try:
        if payload.index is not None:
            controller.go_to_question(payload.index)
        elif payload.step == 1:
            controller.next_question()
        elif payload.step == -1:
            controller.previous_question()
    except IndexError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return controller.snapshot()


@router.post("/attempts/{attempt_id}/flags", response_model=AttemptState)
async def toggle_flag(attempt_id: str, payload: FlagPayload, student = Depends(current_student)):
    controller = _owned_session(attempt_id, student)
    try:
        controller.toggle_flag(payload.question_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return controller.snapshot()


@router.post("/attempts/{attempt_id}/submit")
async def submit_attempt(attempt_id: str, student = Depends(current_student)):
    controller = _owned_session(attempt_id, student)
    result = await controller.submit(reason="manual")
    if result is None:
        if controller.phase.value == "submitting":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Submission already in progress")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to submit exam")

    if controller.exam.get('show_result_immediately'):
        return {'status': "submitted", 'result': result}
    return {'status': "submitted", 'result': None}
